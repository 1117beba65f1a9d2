"""
Faddl Match — Service wiring

Builds one instance of every component per process and hands them to each
other explicitly.  The FastAPI app keeps the container on ``app.state``;
tests build their own with fakes swapped in.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from faddl_match.config import Settings, get_settings
from faddl_match.services.compatibility_service import CompatibilityScorer
from faddl_match.services.cost_guard import CostBudgetGuard
from faddl_match.services.embedding_provider import EmbeddingProvider, GeminiEmbeddingProvider
from faddl_match.services.embedding_service import EmbeddingService
from faddl_match.services.embedding_store import (
    EmbeddingStore,
    InMemoryEmbeddingStore,
    RedisEmbeddingStore,
    SqlEmbeddingStore,
)
from faddl_match.services.matching_service import MatchGenerationService
from faddl_match.services.profile_source import InMemoryProfileSource, ProfileSource, SqlProfileSource
from faddl_match.services.resilience import ResilientCaller
from faddl_match.services.scheduler import MaintenanceScheduler
from faddl_match.services.telemetry import StructlogTelemetrySink, TelemetrySink
from faddl_match.services.vector_cache import VectorCache

logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    telemetry: TelemetrySink
    cache: VectorCache
    cost_guard: CostBudgetGuard
    caller: ResilientCaller
    provider: EmbeddingProvider
    store: EmbeddingStore
    embedding_service: EmbeddingService
    scorer: CompatibilityScorer
    profile_source: ProfileSource
    matching_service: MatchGenerationService
    scheduler: MaintenanceScheduler

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        *,
        telemetry: TelemetrySink | None = None,
        provider: EmbeddingProvider | None = None,
        store: EmbeddingStore | None = None,
        profile_source: ProfileSource | None = None,
    ) -> "ServiceContainer":
        settings = settings or get_settings()
        telemetry = telemetry or StructlogTelemetrySink()

        cache = VectorCache.from_settings(settings)
        cost_guard = CostBudgetGuard(settings, telemetry=telemetry)
        caller = ResilientCaller(settings, telemetry=telemetry)
        provider = provider or GeminiEmbeddingProvider(settings)
        store = store or _build_store(settings)
        embedding_service = EmbeddingService(
            provider=provider,
            cache=cache,
            cost_guard=cost_guard,
            caller=caller,
            store=store,
            settings=settings,
            limiter=asyncio.Semaphore(settings.EMBEDDING_MAX_CONCURRENCY),
        )
        scorer = CompatibilityScorer(embedding_service, settings)
        profile_source = profile_source or _build_profile_source(settings)
        matching_service = MatchGenerationService(profile_source, scorer, settings)
        scheduler = MaintenanceScheduler(
            cost_guard,
            [cache],
            interval_seconds=settings.MAINTENANCE_INTERVAL_SECONDS,
        )

        logger.info(
            "service_container_built",
            embedding_store=type(store).__name__,
            profile_source=type(profile_source).__name__,
            provider=provider.provider_name,
        )
        return cls(
            settings=settings,
            telemetry=telemetry,
            cache=cache,
            cost_guard=cost_guard,
            caller=caller,
            provider=provider,
            store=store,
            embedding_service=embedding_service,
            scorer=scorer,
            profile_source=profile_source,
            matching_service=matching_service,
            scheduler=scheduler,
        )

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.store.close()


def _build_store(settings: Settings) -> EmbeddingStore:
    if settings.EMBEDDING_STORE_BACKEND == "sql":
        from faddl_match.database import get_session_factory

        return SqlEmbeddingStore(get_session_factory(settings))
    if settings.EMBEDDING_STORE_BACKEND == "redis":
        import redis.asyncio as aioredis

        if not settings.REDIS_URL:
            raise RuntimeError("REDIS_URL is required for the redis embedding store")
        client = aioredis.from_url(settings.REDIS_URL, decode_responses=True, socket_connect_timeout=5)
        return RedisEmbeddingStore(client)
    return InMemoryEmbeddingStore()


def _build_profile_source(settings: Settings) -> ProfileSource:
    if settings.PROFILE_SOURCE_BACKEND == "sql":
        from faddl_match.database import get_session_factory

        return SqlProfileSource(get_session_factory(settings))
    return InMemoryProfileSource()
