"""
Faddl Match — Embedding Service

Produces the five facet embeddings of a profile:

* ``profile_text`` — holistic description (demographics, practice, bio);
* ``values``       — religious and family values;
* ``interests``    — declared interests plus interests mentioned in the bio;
* ``lifestyle``    — practice and community life;
* ``personality``  — traits mentioned in the bio plus fixed virtues.

Facet texts are built deterministically from the profile (no clock, no
randomness), so identical profiles always hit the same cache keys.  Every
upstream call is budget-checked by ``CostBudgetGuard``, bounded by a
process-wide concurrency limiter, and routed through ``ResilientCaller``.
"""

from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime, timezone
from typing import Any

import structlog

from faddl_match.config import Settings, get_settings
from faddl_match.errors import (
    AIIntegrationError,
    BudgetExceededError,
    CircuitOpenError,
    EmbeddingError,
    ErrorCategory,
)
from faddl_match.schemas.embedding import FACETS, EmbeddingMetadata, ProfileEmbeddings
from faddl_match.schemas.profile import PartnerPreferences, Profile
from faddl_match.services.cost_guard import (
    CostBudgetGuard,
    CostCategory,
    CostRequest,
    estimate_tokens,
)
from faddl_match.services.embedding_provider import EmbeddingProvider
from faddl_match.services.embedding_store import EmbeddingStore
from faddl_match.services.resilience import ResilientCaller
from faddl_match.services.vector_cache import VectorCache

logger = structlog.get_logger(__name__)


# ── Facet vocabulary ─────────────────────────────────────────────────────────

_PROFILE_CLOSING = (
    "Seeking Allah-fearing spouse for halal marriage",
    "Family-oriented with Islamic values",
)

_VALUES_PHRASES = (
    "Islamic marriage intentions",
    "Halal relationship seeking",
    "Muslim community engagement",
    "Islamic knowledge seeking",
    "Charitable giving (Zakat)",
    "Sunnah following lifestyle",
    "Mutual Islamic growth",
    "Family integration important",
    "Islamic wedding planning",
)

_INTEREST_PHRASES = (
    "Quran reading and study",
    "Islamic history and knowledge",
    "Community service and volunteering",
    "Halal food and cooking",
    "Travel to Islamic historical sites",
    "Family gatherings and celebrations",
    "Islamic art and culture",
)

_LIFESTYLE_PHRASES = (
    "Halal lifestyle adherent",
    "Islamic calendar observer",
    "Muslim community participant",
    "Family-oriented individual",
    "Marriage-seeking Muslim",
)

_PERSONALITY_PHRASES = (
    "God-fearing and humble",
    "Family-loving and caring",
    "Community-minded individual",
    "Knowledge-seeking Muslim",
    "Patient and understanding",
    "Respectful of Islamic values",
)

_BIO_INTEREST_KEYWORDS = (
    "reading", "travel", "cooking", "sports", "music", "art", "photography",
    "hiking", "fitness", "learning", "volunteering", "gardening", "writing",
)

_BIO_TRAIT_KEYWORDS = {
    "kind": "Kind and compassionate",
    "funny": "Humorous and lighthearted",
    "serious": "Serious and focused",
    "outgoing": "Outgoing and social",
    "quiet": "Quiet and reflective",
    "ambitious": "Ambitious and driven",
    "patient": "Patient and understanding",
}

_MAX_INTEREST_ITEMS = 10
_MAX_PERSONALITY_ITEMS = 8


def _sentence(parts: list[str]) -> str:
    return ". ".join(p for p in parts if p) + "."


def _label(value: Any) -> str:
    raw = getattr(value, "value", value)
    return str(raw).replace("_", " ")


def bio_interests(bio: str | None) -> list[str]:
    if not bio:
        return []
    lowered = bio.lower()
    return [f"Enjoys {kw}" for kw in _BIO_INTEREST_KEYWORDS if kw in lowered]


def bio_traits(bio: str | None) -> list[str]:
    if not bio:
        return []
    lowered = bio.lower()
    return [trait for kw, trait in _BIO_TRAIT_KEYWORDS.items() if kw in lowered]


def build_facet_texts(profile: Profile, preferences: PartnerPreferences | None = None) -> dict[str, str]:
    """Render the five facet texts for *profile*."""
    prefs = preferences or PartnerPreferences()
    location = ", ".join(p for p in (profile.location_city, profile.location_country) if p)

    if profile.has_children is None:
        children = ""
    else:
        children = "Has children" if profile.has_children else "No children"

    profile_text = _sentence([
        f"{_label(profile.gender)} Muslim seeking marriage",
        f"Age {profile.age}" if profile.age is not None else "",
        f"{_label(profile.marital_status)} status" if profile.marital_status else "",
        children,
        f"Religious practice: {_label(profile.religious_level)}" if profile.religious_level else "",
        f"Ethnicity: {profile.ethnicity}" if profile.ethnicity else "",
        f"Languages: {', '.join(profile.languages)}" if profile.languages else "",
        f"Location: {location}" if location else "",
        f"Education: {_label(profile.education_level)}" if profile.education_level else "",
        f"Profession: {profile.profession}" if profile.profession else "",
        f"About: {profile.bio}" if profile.bio else "",
        *_PROFILE_CLOSING,
    ])

    values_text = _sentence([
        f"Practice: {_label(profile.religious_level)}" if profile.religious_level else "",
        *(f"Values {v}" for v in profile.family_values),
        "Open to blended families" if profile.has_children else "Ready for family building",
        "Desires children" if prefs.wants_children else "Family planning flexible",
        *_VALUES_PHRASES,
    ])

    interest_items = [
        *(f"Enjoys {i}" for i in profile.interests),
        *bio_interests(profile.bio),
        *_INTEREST_PHRASES,
    ]
    interests_text = _sentence(list(dict.fromkeys(interest_items))[:_MAX_INTEREST_ITEMS])

    lifestyle_text = _sentence([
        f"{_label(profile.religious_level)} practitioner" if profile.religious_level else "",
        f"{location} resident" if location else "",
        f"Speaks {', '.join(profile.languages)}" if profile.languages else "",
        *_LIFESTYLE_PHRASES,
    ])

    trait_items = [*bio_traits(profile.bio), *_PERSONALITY_PHRASES]
    personality_text = _sentence(list(dict.fromkeys(trait_items))[:_MAX_PERSONALITY_ITEMS])

    return {
        "profile_text": profile_text,
        "values": values_text,
        "interests": interests_text,
        "lifestyle": lifestyle_text,
        "personality": personality_text,
    }


# ── Service ──────────────────────────────────────────────────────────────────


class EmbeddingService:
    """Generates, caches and persists multi-facet profile embeddings."""

    VERSION = "1.0"

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: VectorCache,
        cost_guard: CostBudgetGuard,
        caller: ResilientCaller,
        store: EmbeddingStore,
        settings: Settings | None = None,
        limiter: asyncio.Semaphore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.provider = provider
        self.cache = cache
        self.cost_guard = cost_guard
        self.caller = caller
        self.store = store
        self.model = self.settings.EMBEDDING_MODEL
        self.dimensions = self.settings.EMBEDDING_DIMENSIONS
        self._limiter = limiter or asyncio.Semaphore(self.settings.EMBEDDING_MAX_CONCURRENCY)
        self._inflight: dict[str, asyncio.Task] = {}

    # ── Keys ──────────────────────────────────────────────────────────────

    @staticmethod
    def facet_cache_key(facet: str, text: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
        return VectorCache.make_key("embedding", facet, digest)

    @staticmethod
    def profile_cache_key(profile_id: str) -> str:
        return VectorCache.make_key("embeddings", profile_id)

    @staticmethod
    def content_hash(texts: dict[str, str]) -> str:
        """Digest of the five facet texts, in facet order."""
        digest = hashlib.sha256()
        for facet in FACETS:
            digest.update(facet.encode("utf-8"))
            digest.update(b"\x00")
            digest.update(texts[facet].encode("utf-8"))
            digest.update(b"\x00")
        return digest.hexdigest()

    # ── Public API ────────────────────────────────────────────────────────

    async def embed_profile(
        self,
        profile: Profile,
        preferences: PartnerPreferences | None = None,
    ) -> ProfileEmbeddings:
        """Embed all five facets of *profile*, persist and cache the record.

        The facets are embedded concurrently.  If any facet fails the whole
        call fails and nothing is persisted; facets that already succeeded
        stay in the per-facet cache.

        Raises
        ------
        BudgetExceededError
            The embedding budget cannot cover a facet.
        CircuitOpenError
            The upstream circuit is open.
        EmbeddingError
            Any other facet failure, or the store write failed.
        """
        log = logger.bind(profile_id=profile.user_id)
        texts = build_facet_texts(profile, preferences)

        results = await asyncio.gather(
            *(self._embed_facet(facet, texts[facet]) for facet in FACETS),
            return_exceptions=True,
        )

        failed = {f: r for f, r in zip(FACETS, results) if isinstance(r, BaseException)}
        if failed:
            log.warning(
                "profile_embedding_failed",
                failed_facets=sorted(failed),
                error_types=sorted({type(e).__name__ for e in failed.values()}),
            )
            raise self._combine_failures(profile.user_id, failed)

        vectors = {f: r[0] for f, r in zip(FACETS, results)}
        facet_models = {f: r[1] for f, r in zip(FACETS, results)}
        record = ProfileEmbeddings(
            profile_id=profile.user_id,
            **vectors,
            metadata=EmbeddingMetadata(
                model=self.model,
                dimensions=self.dimensions,
                generated_at=datetime.now(timezone.utc),
                version=self.VERSION,
                token_count=sum(estimate_tokens(t) for t in texts.values()),
                facet_models=facet_models,
                content_hash=self.content_hash(texts),
            ),
        )

        try:
            await self.store.upsert(profile.user_id, record)
        except Exception as exc:
            log.exception("embedding_store_upsert_failed")
            raise EmbeddingError(
                "Failed to store embeddings",
                details={"profile_id": profile.user_id, "error_type": type(exc).__name__},
            ) from exc

        self.cache.set(self.profile_cache_key(profile.user_id), record)
        log.info("profile_embedded", token_count=record.metadata.token_count)
        return record

    async def get_embeddings(self, profile_id: str) -> ProfileEmbeddings | None:
        """Read-through lookup: composite cache, then store (repopulating the cache)."""
        key = self.profile_cache_key(profile_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            record = await self.store.fetch(profile_id)
        except Exception as exc:
            logger.exception("embedding_store_fetch_failed", profile_id=profile_id)
            raise EmbeddingError(
                "Database error retrieving embeddings",
                details={"profile_id": profile_id, "error_type": type(exc).__name__},
            ) from exc

        if record is not None:
            self.cache.set(key, record)
        return record

    async def get_or_embed(
        self,
        profile: Profile,
        preferences: PartnerPreferences | None = None,
    ) -> ProfileEmbeddings:
        """Return the stored record while it still matches *profile*, else re-embed.

        A record whose content hash differs from the profile's current facet
        texts is stale; unchanged facets are still served from the facet cache.
        """
        existing = await self.get_embeddings(profile.user_id)
        if existing is not None:
            current = self.content_hash(build_facet_texts(profile, preferences))
            if existing.metadata.content_hash == current:
                return existing
            logger.info(
                "profile_embeddings_stale",
                profile_id=profile.user_id,
                generated_at=existing.metadata.generated_at.isoformat(),
            )
        return await self.embed_profile(profile, preferences)

    def invalidate(self, profile_id: str) -> bool:
        return self.cache.delete(self.profile_cache_key(profile_id))

    def cache_stats(self) -> dict[str, Any]:
        return self.cache.stats()

    # ── Facet pipeline ────────────────────────────────────────────────────

    async def _embed_facet(self, facet: str, text: str) -> tuple[list[float], str]:
        key = self.facet_cache_key(facet, text)
        tokens = estimate_tokens(text)

        cached = self.cache.get(key)
        if cached is not None:
            self.cost_guard.charge(
                CostCategory.EMBEDDING,
                self.cost_guard.estimate_cost(CostCategory.EMBEDDING, tokens, cached["model"]),
                cached=True,
            )
            return cached["vector"], cached["model"]

        task = self._inflight.get(key)
        if task is not None:
            vector, model = await asyncio.shield(task)
            self.cost_guard.charge(
                CostCategory.EMBEDDING,
                self.cost_guard.estimate_cost(CostCategory.EMBEDDING, tokens, model),
                deduplicated=True,
            )
            return vector, model

        # Cancelling the caller that started the call never cancels the call.
        task = asyncio.create_task(self._fetch_and_cache(key, facet, text))
        self._inflight[key] = task
        task.add_done_callback(lambda done: self._release_inflight(key, done))
        return await asyncio.shield(task)

    async def _fetch_and_cache(self, key: str, facet: str, text: str) -> tuple[list[float], str]:
        vector, model = await self._call_upstream(facet, text)
        self.cache.set(
            key,
            {"vector": vector, "model": model},
            ttl_seconds=self.settings.CACHE_FACET_TTL_SECONDS,
        )
        return vector, model

    def _release_inflight(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            # Retrieved here so a call with no awaiters left does not warn on GC.
            logger.debug("embedding_call_failed", key=key, error_type=type(task.exception()).__name__)

    async def _call_upstream(self, facet: str, text: str) -> tuple[list[float], str]:
        plan = self.cost_guard.optimize(
            CostRequest(category=CostCategory.EMBEDDING, model=self.model, input_text=text)
        )
        if plan.skip:
            raise BudgetExceededError(
                "Embedding budget cannot cover this request",
                details={
                    "facet": facet,
                    "optimizations": plan.applied_optimizations,
                    "estimated_cost": plan.estimated_cost,
                    "remaining": self.cost_guard.remaining_budget(CostCategory.EMBEDDING),
                },
            )

        request = plan.request
        async with self._limiter:
            vector = await self.caller.execute(
                lambda: self.provider.embed(
                    request.input_text, model=request.model, dimensions=self.dimensions
                ),
                context=f"embedding:{facet}",
                timeout=self.settings.EMBEDDING_CALL_TIMEOUT_SECONDS,
            )

        # A completed upstream call is billed whether or not its output is usable.
        self.cost_guard.charge(
            CostCategory.EMBEDDING,
            plan.estimated_cost,
            model=request.model,
            units=estimate_tokens(request.input_text),
        )

        if len(vector) != self.dimensions:
            raise EmbeddingError(
                "Provider returned a vector of unexpected dimension",
                details={"facet": facet, "expected": self.dimensions, "received": len(vector)},
                category=ErrorCategory.VALIDATION_ERROR,
            )

        if plan.applied_optimizations:
            logger.info(
                "embedding_request_optimized",
                facet=facet,
                optimizations=plan.applied_optimizations,
                model=request.model,
            )
        return vector, request.model

    @staticmethod
    def _combine_failures(profile_id: str, failed: dict[str, BaseException]) -> BaseException:
        for exc in failed.values():
            if not isinstance(exc, Exception):
                return exc
        for exc in failed.values():
            if isinstance(exc, (BudgetExceededError, CircuitOpenError)):
                return exc
        first_facet, first = next(iter(failed.items()))
        category = first.category if isinstance(first, AIIntegrationError) else ErrorCategory.API_ERROR
        error = EmbeddingError(
            "Failed to generate profile embeddings",
            details={
                "profile_id": profile_id,
                "failed_facets": list(failed),
                "first_failure": first_facet,
                "error_type": type(first).__name__,
            },
            category=category,
        )
        error.__cause__ = first
        return error
