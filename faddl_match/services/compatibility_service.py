"""
Faddl Match — Compatibility scoring and candidate ranking.

The overall score is a fixed-weight sum of seven subscores, each on 0–100:

    religious        0.25   100 − 30 per step on the practice scale
    education        0.15   100 − 20 per step on the education scale
    age              0.15   100 − 5 per year of difference
    location         0.10   100 same city / 70 same country / 30 otherwise
    shared_interests 0.15   100 × shared / |requester interests|
    timeline         0.10   100 same marriage timeline / 50 otherwise
    bio_similarity   0.10   cosine of the holistic embeddings × 100

Missing data never fails a score: the affected subscore falls back to a
neutral 50.  Facet cosine scores, demographic, Islamic-alignment and cultural
figures are reported alongside for explanation but do not change the overall
score.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Mapping, Sequence

import numpy as np
import structlog

from faddl_match.config import Settings, get_settings
from faddl_match.errors import AIIntegrationError
from faddl_match.schemas.embedding import ProfileEmbeddings
from faddl_match.schemas.match import (
    MatchCandidate,
    MatchFilters,
    RuleScores,
    SimilarityScore,
    SubScores,
)
from faddl_match.schemas.profile import (
    EDUCATION_SCALE,
    RELIGIOUS_SCALE,
    CandidateSummary,
    PartnerPreferences,
    Profile,
)
from faddl_match.services.embedding_service import EmbeddingService

logger = structlog.get_logger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between *a* and *b*; 0.0 if either is a zero vector."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector shapes differ: {va.shape} vs {vb.shape}")
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def _norm(value: str | None) -> str:
    return (value or "").strip().casefold()


class CompatibilityScorer:
    """Score requester/candidate pairs and rank candidate pools."""

    # ── Policy constants ────────────────────────────────────────────
    WEIGHTS: dict[str, float] = {
        "religious": 0.25,
        "education": 0.15,
        "age": 0.15,
        "location": 0.10,
        "shared_interests": 0.15,
        "timeline": 0.10,
        "bio_similarity": 0.10,
    }

    NEUTRAL: float = 50.0
    RELIGIOUS_STEP_PENALTY: float = 30.0
    EDUCATION_STEP_PENALTY: float = 20.0
    AGE_YEAR_PENALTY: float = 5.0
    SAME_CITY: float = 100.0
    SAME_COUNTRY: float = 70.0
    ELSEWHERE: float = 30.0

    REASON_THRESHOLD: float = 70.0
    MAX_REASONS: int = 4
    MAX_LISTED_INTERESTS: int = 3

    # Checked in this order; the first MAX_REASONS above threshold are kept
    REASON_PRIORITY: tuple[str, ...] = (
        "religious",
        "education",
        "shared_interests",
        "location",
        "age",
        "timeline",
        "bio_similarity",
    )

    REASON_TEXT: dict[str, str] = {
        "religious": "Similar religious commitment level",
        "education": "Similar education levels",
        "location": "Same city",
        "age": "Compatible age range",
        "timeline": "Similar marriage timeline",
        "bio_similarity": "Similar life values and goals",
    }

    FACET_LABELS: dict[str, str] = {
        "values": "Islamic values",
        "interests": "shared interests",
        "lifestyle": "lifestyle",
        "personality": "personality",
    }

    def __init__(
        self,
        embedding_service: EmbeddingService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.embedding_service = embedding_service
        self.min_score = self.settings.MATCH_MIN_SCORE

    # ══════════════════════════════════════════════════════════════════
    # Pairwise scoring
    # ══════════════════════════════════════════════════════════════════

    def score(
        self,
        requester: Profile,
        requester_preferences: PartnerPreferences | None,
        candidate: Profile,
        candidate_preferences: PartnerPreferences | None,
        requester_embeddings: ProfileEmbeddings | None = None,
        candidate_embeddings: ProfileEmbeddings | None = None,
    ) -> SimilarityScore:
        """Score *candidate* for *requester*.  Pure and deterministic.

        Parameters
        ----------
        requester, candidate:
            The two profiles.
        requester_preferences, candidate_preferences:
            Partner preferences, used for the demographic and family-values
            figures.  May be ``None``.
        requester_embeddings, candidate_embeddings:
            Facet embeddings.  When either is missing every embedding-based
            subscore is neutral.

        Returns
        -------
        SimilarityScore
            Overall score (0–100, two decimals) with the full breakdown,
            reasons and explanation.
        """
        shared = self.shared_interests(requester, candidate)
        embeddings_used = requester_embeddings is not None and candidate_embeddings is not None

        facets = {
            name: self._facet_score(requester_embeddings, candidate_embeddings, name)
            for name in ("profile_text", "values", "interests", "lifestyle", "personality")
        }

        rules = {
            "religious": self.religious_score(requester, candidate),
            "education": self.education_score(requester, candidate),
            "age": self.age_score(requester, candidate),
            "location": self.location_score(requester, candidate),
            "shared_interests": self._interest_score(requester, shared),
            "timeline": self.timeline_score(requester, candidate),
            "bio_similarity": facets["profile_text"],
        }

        overall = round(sum(self.WEIGHTS[k] * rules[k] for k in self.WEIGHTS), 2)

        demographics = float(np.mean([
            rules["age"],
            rules["location"],
            rules["education"],
            self._preference_fit(requester, requester_preferences, candidate, candidate_preferences),
        ]))
        islamic = (
            0.5 * rules["religious"]
            + 0.3 * self._family_values_score(
                requester, requester_preferences, candidate, candidate_preferences
            )
            + 0.2 * rules["timeline"]
        )

        subscores = SubScores(
            values=facets["values"],
            interests=facets["interests"],
            lifestyle=facets["lifestyle"],
            personality=facets["personality"],
            profile_text=facets["profile_text"],
            demographics=round(demographics, 2),
        )

        return SimilarityScore(
            overall_score=overall,
            subscores=subscores,
            rule_scores=RuleScores(**{k: round(v, 2) for k, v in rules.items()}),
            islamic_alignment=round(islamic, 2),
            cultural_compatibility=round(self._cultural_score(requester, candidate), 2),
            shared_interests=shared,
            reasons=self.reasons(rules, shared),
            explanation=self._explanation(subscores, rules, islamic, embeddings_used),
            embeddings_used=embeddings_used,
        )

    # ── Rule subscores ──────────────────────────────────────────────

    def religious_score(self, a: Profile, b: Profile) -> float:
        if a.religious_level is None or b.religious_level is None:
            return self.NEUTRAL
        steps = abs(RELIGIOUS_SCALE.index(a.religious_level) - RELIGIOUS_SCALE.index(b.religious_level))
        return max(0.0, 100.0 - self.RELIGIOUS_STEP_PENALTY * steps)

    def education_score(self, a: Profile, b: Profile) -> float:
        if a.education_level is None or b.education_level is None:
            return self.NEUTRAL
        steps = abs(EDUCATION_SCALE.index(a.education_level) - EDUCATION_SCALE.index(b.education_level))
        return max(0.0, 100.0 - self.EDUCATION_STEP_PENALTY * steps)

    def age_score(self, a: Profile, b: Profile) -> float:
        if a.age is None or b.age is None:
            return self.NEUTRAL
        return max(0.0, 100.0 - self.AGE_YEAR_PENALTY * abs(a.age - b.age))

    def location_score(self, a: Profile, b: Profile) -> float:
        city_a, city_b = _norm(a.location_city), _norm(b.location_city)
        country_a, country_b = _norm(a.location_country), _norm(b.location_country)
        if not (city_a and city_b) and not (country_a and country_b):
            return self.NEUTRAL
        countries_agree = not (country_a and country_b) or country_a == country_b
        if city_a and city_a == city_b and countries_agree:
            return self.SAME_CITY
        if country_a and country_a == country_b:
            return self.SAME_COUNTRY
        return self.ELSEWHERE

    def timeline_score(self, a: Profile, b: Profile) -> float:
        if a.marriage_timeline is None or b.marriage_timeline is None:
            return self.NEUTRAL
        return 100.0 if a.marriage_timeline == b.marriage_timeline else 50.0

    @staticmethod
    def shared_interests(a: Profile, b: Profile) -> list[str]:
        """Requester interests (in the requester's order) also held by the candidate."""
        theirs = {_norm(i) for i in b.interests}
        seen: set[str] = set()
        shared: list[str] = []
        for interest in a.interests:
            key = _norm(interest)
            if key and key in theirs and key not in seen:
                seen.add(key)
                shared.append(interest)
        return shared

    def _interest_score(self, requester: Profile, shared: list[str]) -> float:
        if not requester.interests:
            return self.NEUTRAL
        return 100.0 * len(shared) / max(len(requester.interests), 1)

    def _facet_score(
        self,
        a: ProfileEmbeddings | None,
        b: ProfileEmbeddings | None,
        facet: str,
    ) -> float:
        if a is None or b is None:
            return self.NEUTRAL
        try:
            similarity = cosine_similarity(a.facet(facet), b.facet(facet))
        except ValueError:
            logger.warning(
                "embedding_dimension_mismatch",
                facet=facet,
                profile_a=a.profile_id,
                profile_b=b.profile_id,
            )
            return self.NEUTRAL
        return round(max(0.0, similarity) * 100.0, 2)

    # ── Supplementary figures ───────────────────────────────────────

    def _preference_fit(
        self,
        a: Profile,
        a_prefs: PartnerPreferences | None,
        b: Profile,
        b_prefs: PartnerPreferences | None,
    ) -> float:
        checks: list[float] = []
        for prefs, other in ((a_prefs, b), (b_prefs, a)):
            if prefs is None or other.age is None:
                continue
            if prefs.min_age is None and prefs.max_age is None:
                continue
            low = prefs.min_age if prefs.min_age is not None else 0
            high = prefs.max_age if prefs.max_age is not None else 200
            checks.append(100.0 if low <= other.age <= high else 0.0)
        return float(np.mean(checks)) if checks else self.NEUTRAL

    def _family_values_score(
        self,
        a: Profile,
        a_prefs: PartnerPreferences | None,
        b: Profile,
        b_prefs: PartnerPreferences | None,
    ) -> float:
        parts: list[float] = []
        values_a = {_norm(v) for v in a.family_values if v.strip()}
        values_b = {_norm(v) for v in b.family_values if v.strip()}
        if values_a and values_b:
            parts.append(100.0 * len(values_a & values_b) / len(values_a | values_b))
        if (
            a_prefs is not None
            and b_prefs is not None
            and a_prefs.wants_children is not None
            and b_prefs.wants_children is not None
        ):
            parts.append(100.0 if a_prefs.wants_children == b_prefs.wants_children else 40.0)
        return float(np.mean(parts)) if parts else self.NEUTRAL

    def _cultural_score(self, a: Profile, b: Profile) -> float:
        parts: list[float] = []
        if a.ethnicity and b.ethnicity:
            parts.append(100.0 if _norm(a.ethnicity) == _norm(b.ethnicity) else 60.0)
        if a.languages and b.languages:
            common = {_norm(x) for x in a.languages} & {_norm(x) for x in b.languages}
            parts.append(min(100.0, 30.0 * len(common)) if common else 20.0)
        return float(np.mean(parts)) if parts else self.NEUTRAL

    # ── Reasons & explanation ───────────────────────────────────────

    def reasons(self, rules: Mapping[str, float], shared: list[str]) -> list[str]:
        out: list[str] = []
        for key in self.REASON_PRIORITY:
            if len(out) >= self.MAX_REASONS:
                break
            if rules[key] <= self.REASON_THRESHOLD:
                continue
            if key == "shared_interests":
                if not shared:
                    continue
                out.append("Shared interests: " + ", ".join(shared[: self.MAX_LISTED_INTERESTS]))
            else:
                out.append(self.REASON_TEXT[key])
        return out

    def _explanation(
        self,
        subscores: SubScores,
        rules: Mapping[str, float],
        islamic: float,
        embeddings_used: bool,
    ) -> str:
        if embeddings_used:
            area, value = max(
                ((label, getattr(subscores, facet)) for facet, label in self.FACET_LABELS.items()),
                key=lambda item: item[1],
            )
        else:
            key = max(self.REASON_PRIORITY, key=lambda k: rules[k])
            area, value = key.replace("_", " "), rules[key]
        return (
            f"Strongest compatibility in {area} ({value:.0f}%), "
            f"with an Islamic alignment of {islamic:.0f}%."
        )

    # ══════════════════════════════════════════════════════════════════
    # Ranking
    # ══════════════════════════════════════════════════════════════════

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            limit = self.settings.MATCH_DEFAULT_LIMIT
        return max(1, min(limit, self.settings.MATCH_MAX_LIMIT))

    @staticmethod
    def passes_filters(candidate: Profile, filters: MatchFilters | None) -> bool:
        if filters is None:
            return True
        if filters.age_range is not None:
            if candidate.age is None or not filters.age_range.min <= candidate.age <= filters.age_range.max:
                return False
        if filters.education_levels and candidate.education_level not in filters.education_levels:
            return False
        if filters.religious_levels and candidate.religious_level not in filters.religious_levels:
            return False
        return True

    def eligible(
        self,
        requester: Profile,
        candidate: Profile,
        filters: MatchFilters | None,
        excluded_ids: Iterable[str],
    ) -> bool:
        return (
            candidate.user_id != requester.user_id
            and candidate.gender != requester.gender
            and candidate.user_id not in excluded_ids
            and self.passes_filters(candidate, filters)
        )

    async def rank(
        self,
        requester: Profile,
        candidates: Sequence[Profile],
        *,
        requester_preferences: PartnerPreferences | None = None,
        candidate_preferences: Mapping[str, PartnerPreferences] | None = None,
        filters: MatchFilters | None = None,
        excluded_ids: Iterable[str] = (),
        limit: int | None = None,
    ) -> list[MatchCandidate]:
        """Return the top candidates for *requester*, best first.

        Same-gender, previously interacted, filtered-out and below-threshold
        candidates are dropped.  Ties are broken by candidate id.
        """
        excluded = frozenset(excluded_ids)
        candidate_preferences = candidate_preferences or {}
        pool = [c for c in candidates if self.eligible(requester, c, filters, excluded)]

        embeddings = await self._resolve_embeddings(
            [(requester, requester_preferences)]
            + [(c, candidate_preferences.get(c.user_id)) for c in pool]
        )

        scored: list[tuple[Profile, SimilarityScore]] = []
        for candidate in pool:
            result = self.score(
                requester,
                requester_preferences,
                candidate,
                candidate_preferences.get(candidate.user_id),
                embeddings.get(requester.user_id),
                embeddings.get(candidate.user_id),
            )
            if result.overall_score >= self.min_score:
                scored.append((candidate, result))

        scored.sort(key=lambda pair: (-pair[1].overall_score, pair[0].user_id))
        top = scored[: self.clamp_limit(limit)]

        logger.info(
            "candidates_ranked",
            requester_id=requester.user_id,
            pool=len(candidates),
            eligible=len(pool),
            above_threshold=len(scored),
            returned=len(top),
        )

        return [
            MatchCandidate(
                candidate=CandidateSummary.from_profile(candidate),
                compatibility_score=result.overall_score,
                shared_interests=result.shared_interests,
                reasons=result.reasons,
                score=result,
            )
            for candidate, result in top
        ]

    async def _resolve_embeddings(
        self,
        profiles: list[tuple[Profile, PartnerPreferences | None]],
    ) -> dict[str, ProfileEmbeddings]:
        if self.embedding_service is None:
            return {}

        service = self.embedding_service

        async def resolve(profile: Profile, prefs: PartnerPreferences | None) -> ProfileEmbeddings | None:
            try:
                return await service.get_or_embed(profile, prefs)
            except AIIntegrationError as exc:
                logger.warning(
                    "embeddings_unavailable",
                    profile_id=profile.user_id,
                    code=exc.code,
                    category=exc.category.value,
                )
                return None

        results = await asyncio.gather(*(resolve(p, prefs) for p, prefs in profiles))
        return {p.user_id: r for (p, _), r in zip(profiles, results) if r is not None}
