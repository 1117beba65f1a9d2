"""Integration tests for the full match-generation pipeline.

These tests wire the real container (cache, cost guard, resilient caller,
embedding service, scorer) around a deterministic fake embedding provider
and an in-memory profile source, then exercise whole requests.
"""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from faddl_match.container import ServiceContainer
from faddl_match.errors import ErrorCategory
from faddl_match.services.cost_guard import CostCategory
from faddl_match.services.embedding_store import InMemoryEmbeddingStore
from faddl_match.services.profile_source import InMemoryProfileSource


@pytest.fixture
def store():
    return InMemoryEmbeddingStore()


@pytest.fixture
def container(settings, telemetry, fake_provider, store, requester, requester_preferences,
              candidate_close, candidate_distant, candidate_middle, same_gender_profile):
    source = InMemoryProfileSource(
        [requester, candidate_close, candidate_distant, candidate_middle, same_gender_profile],
        preferences={requester.user_id: requester_preferences},
    )
    return ServiceContainer.build(
        settings,
        telemetry=telemetry,
        provider=fake_provider,
        store=store,
        profile_source=source,
    )


class TestPipeline:
    """Generate matches end to end."""

    @pytest.mark.asyncio
    async def test_first_request_embeds_everyone_and_persists(self, container, fake_provider, store):
        response = await container.matching_service.generate_matches("user-requester")

        assert [m.candidate.user_id for m in response.matches] == ["cand-a", "cand-c"]
        assert all(m.score.embeddings_used for m in response.matches)
        # Requester plus three eligible candidates, five facets each; facet
        # texts shared between profiles are embedded once.
        texts = [text for text, _ in fake_provider.calls]
        assert len(texts) == len(set(texts))
        assert 15 < len(texts) <= 20
        assert len(store) == 4
        assert container.cost_guard.spent(CostCategory.EMBEDDING) > 0

    @pytest.mark.asyncio
    async def test_repeat_request_is_served_from_cache(self, container, fake_provider):
        first = await container.matching_service.generate_matches("user-requester")
        calls_after_first = len(fake_provider.calls)

        second = await container.matching_service.generate_matches("user-requester")
        assert len(fake_provider.calls) == calls_after_first
        assert [m.compatibility_score for m in second.matches] == [
            m.compatibility_score for m in first.matches
        ]
        assert container.cache.stats()["hits"] > 0

    @pytest.mark.asyncio
    async def test_embeddings_survive_cache_loss(self, container, fake_provider):
        await container.matching_service.generate_matches("user-requester")
        container.cache.clear()
        calls = len(fake_provider.calls)

        await container.matching_service.generate_matches("user-requester")
        assert len(fake_provider.calls) == calls


class TestDegradation:
    """AI failures degrade scoring but never fail the request."""

    @pytest.mark.asyncio
    async def test_provider_outage_falls_back_to_rule_scores(self, container, fake_provider, telemetry):
        fake_provider.embed = AsyncMock(side_effect=Exception("403 Forbidden"))

        response = await container.matching_service.generate_matches("user-requester")

        assert [m.candidate.user_id for m in response.matches] == ["cand-a", "cand-c"]
        assert [m.compatibility_score for m in response.matches] == [93.5, 69.0]
        assert not any(m.score.embeddings_used for m in response.matches)

        stats = container.caller.error_stats()
        assert stats["errors_by_category"]["api_error"] >= 5
        assert stats["circuit_breakers"][ErrorCategory.API_ERROR.value]["state"] == "open"
        assert telemetry.named("circuit_breaker_open")

    @pytest.mark.asyncio
    async def test_exhausted_budget_falls_back_to_rule_scores(self, container, fake_provider):
        container.cost_guard.charge(CostCategory.EMBEDDING, 50)

        response = await container.matching_service.generate_matches("user-requester")

        assert fake_provider.calls == []
        assert [m.compatibility_score for m in response.matches] == [93.5, 69.0]

    @pytest.mark.asyncio
    async def test_exclusions_apply_with_embeddings(self, container):
        container.profile_source.add_interaction("user-requester", "cand-a")
        response = await container.matching_service.generate_matches("user-requester")
        assert [m.candidate.user_id for m in response.matches] == ["cand-c"]
