"""HTTP tests for the matching and telemetry routers (httpx against the ASGI app)."""
from __future__ import annotations

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import httpx
import pytest

from faddl_match.container import ServiceContainer
from faddl_match.errors import BudgetExceededError, CircuitOpenError, EmbeddingError, ErrorCategory
from faddl_match.main import _status_for, create_app
from faddl_match.services.profile_source import InMemoryProfileSource


@pytest.fixture
def container(settings, telemetry, fake_provider, requester, requester_preferences,
              candidate_close, candidate_distant, candidate_middle):
    source = InMemoryProfileSource(
        [requester, candidate_close, candidate_distant, candidate_middle],
        preferences={requester.user_id: requester_preferences},
    )
    return ServiceContainer.build(
        settings, telemetry=telemetry, provider=fake_provider, profile_source=source
    )


@asynccontextmanager
async def api_client(container):
    app = create_app(container=container)
    # The lifespan is not run by ASGITransport; attach the container directly.
    app.state.container = container
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, container):
        async with api_client(container) as client:
            response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestGenerateEndpoint:
    """POST /api/v1/match/generate"""

    @pytest.mark.asyncio
    async def test_returns_ranked_matches(self, container):
        async with api_client(container) as client:
            response = await client.post("/api/v1/match/generate", json={"user_id": "user-requester"})
        assert response.status_code == 200
        body = response.json()
        assert [m["candidate"]["user_id"] for m in body["matches"]] == ["cand-a", "cand-c"]
        assert body["total_candidates_evaluated"] == 3
        first = body["matches"][0]
        assert first["score"]["embeddings_used"] is True
        assert first["compatibility_score"] >= 88.5
        assert "Shared interests: reading, travel" in first["reasons"]

    @pytest.mark.asyncio
    async def test_limit_and_filters(self, container):
        payload = {
            "user_id": "user-requester",
            "limit": 1,
            "filters": {"religious_levels": ["practicing"]},
        }
        async with api_client(container) as client:
            response = await client.post("/api/v1/match/generate", json=payload)
        assert response.status_code == 200
        assert [m["candidate"]["user_id"] for m in response.json()["matches"]] == ["cand-a"]

    @pytest.mark.asyncio
    async def test_unknown_user_is_404(self, container):
        async with api_client(container) as client:
            response = await client.post("/api/v1/match/generate", json={"user_id": "ghost"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_incomplete_profile_is_400(self, container, requester):
        container.profile_source.add_profile(requester.model_copy(update={"profile_completion": 10}))
        async with api_client(container) as client:
            response = await client.post("/api/v1/match/generate", json={"user_id": "user-requester"})
        assert response.status_code == 400
        assert "10%" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_invalid_limit_is_422(self, container):
        async with api_client(container) as client:
            response = await client.post(
                "/api/v1/match/generate", json={"user_id": "user-requester", "limit": 0}
            )
        assert response.status_code == 422


class TestEmbeddingsEndpoint:
    @pytest.mark.asyncio
    async def test_summary_after_generation(self, container):
        async with api_client(container) as client:
            await client.post("/api/v1/match/generate", json={"user_id": "user-requester"})
            response = await client.get("/api/v1/match/embeddings/user-requester")
        assert response.status_code == 200
        body = response.json()
        assert body["profile_id"] == "user-requester"
        assert body["metadata"]["dimensions"] == 8
        assert "values" not in body

    @pytest.mark.asyncio
    async def test_missing_embeddings_404(self, container):
        async with api_client(container) as client:
            response = await client.get("/api/v1/match/embeddings/nobody")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_store_failure_rendered_as_redacted_error(self, container):
        container.store.fetch = AsyncMock(side_effect=RuntimeError("password=hunter2 connection lost"))
        async with api_client(container) as client:
            response = await client.get("/api/v1/match/embeddings/user-x")
        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "EMBEDDING_ERROR"
        assert body["recommended_action"] == "contact_support_if_persistent"
        assert "hunter2" not in response.text


class TestTelemetryEndpoints:
    @pytest.mark.asyncio
    async def test_cache_costs_and_errors(self, container):
        async with api_client(container) as client:
            await client.post("/api/v1/match/generate", json={"user_id": "user-requester"})
            cache = await client.get("/api/v1/telemetry/cache")
            costs = await client.get("/api/v1/telemetry/costs")
            errors = await client.get("/api/v1/telemetry/errors")

        assert cache.status_code == 200
        assert cache.json()["sets"] > 0

        assert costs.status_code == 200
        assert costs.json()["current_spend"]["embedding"] > 0
        assert costs.json()["budget_limits"]["total"] == 175

        assert errors.status_code == 200
        assert errors.json()["total_errors"] == 0
        assert errors.json()["open_breakers"] == 0


class TestErrorStatus:
    def test_status_mapping(self):
        assert _status_for(CircuitOpenError("open")) == 503
        assert _status_for(BudgetExceededError("spent")) == 503
        assert _status_for(EmbeddingError("bad", category=ErrorCategory.VALIDATION_ERROR)) == 422
        assert _status_for(EmbeddingError("down", category=ErrorCategory.NETWORK_ERROR)) == 502
