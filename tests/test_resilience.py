"""Unit tests for ResilientCaller — classification, retry, circuit breaking, typed errors."""
from __future__ import annotations

import asyncio

import pytest

from faddl_match.errors import (
    AIIntegrationError,
    CircuitOpenError,
    ConversationError,
    EmbeddingError,
    ErrorCategory,
    ModerationError,
)
from faddl_match.services.resilience import (
    CircuitBreaker,
    CircuitState,
    ResilientCaller,
    RetryPolicy,
    classify_error,
)


class ResourceExhausted(Exception):
    """Stand-in for the Google API core exception of the same name."""


@pytest.fixture
def caller(settings, telemetry, no_sleep, clock):
    return ResilientCaller(settings, telemetry=telemetry, sleep=no_sleep, clock=clock)


def failing(exc_factory, calls):
    async def operation():
        calls.append(1)
        raise exc_factory()

    return operation


class TestClassification:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (Exception("429 Too Many Requests"), ErrorCategory.RATE_LIMIT),
            (Exception("Rate limit reached for requests"), ErrorCategory.RATE_LIMIT),
            (ResourceExhausted("quota"), ErrorCategory.RATE_LIMIT),
            (asyncio.TimeoutError(), ErrorCategory.TIMEOUT),
            (TimeoutError("read timed out"), ErrorCategory.TIMEOUT),
            (Exception("504 Deadline Exceeded"), ErrorCategory.TIMEOUT),
            (ConnectionError("connection reset by peer"), ErrorCategory.NETWORK_ERROR),
            (Exception("503 Service Unavailable"), ErrorCategory.NETWORK_ERROR),
            (ValueError("invalid input"), ErrorCategory.VALIDATION_ERROR),
            (Exception("400 Request payload validation failed"), ErrorCategory.VALIDATION_ERROR),
            (Exception("401 Unauthorized: API key not valid"), ErrorCategory.API_ERROR),
            (Exception("something unexpected"), ErrorCategory.API_ERROR),
        ],
    )
    def test_classify(self, error, expected):
        assert classify_error(error) is expected

    def test_typed_error_keeps_its_category(self):
        err = EmbeddingError("x", category=ErrorCategory.TIMEOUT)
        assert classify_error(err) is ErrorCategory.TIMEOUT


class TestRetry:
    """Category-specific retry with exponential backoff."""

    @pytest.mark.asyncio
    async def test_success_returns_result(self, caller):
        async def operation():
            return [0.1, 0.2]

        assert await caller.execute(operation, "embedding:values") == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_rate_limit_retried_three_times_with_backoff(self, caller, no_sleep):
        calls: list[int] = []
        with pytest.raises(EmbeddingError) as exc_info:
            await caller.execute(failing(lambda: Exception("429 Too Many Requests"), calls), "embedding:values")

        assert len(calls) == 4
        assert len(no_sleep.delays) == 3
        for delay, base in zip(no_sleep.delays, (1.0, 2.0, 4.0)):
            assert base <= delay <= base * 1.1
        err = exc_info.value
        assert err.category is ErrorCategory.RATE_LIMIT
        assert err.code == "EMBEDDING_ERROR"
        assert err.details["attempts"] == 4
        assert err.details["fallback_action"] == "cache_or_delay"

    @pytest.mark.asyncio
    async def test_network_error_recovers(self, caller, no_sleep):
        calls: list[int] = []

        async def operation():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("connection reset")
            return "ok"

        assert await caller.execute(operation, "embedding:interests") == "ok"
        assert len(calls) == 3
        assert 0.5 <= no_sleep.delays[0] <= 0.55
        assert 0.75 <= no_sleep.delays[1] <= 0.825

    @pytest.mark.asyncio
    async def test_validation_error_not_retried(self, caller, no_sleep):
        calls: list[int] = []
        with pytest.raises(EmbeddingError) as exc_info:
            await caller.execute(failing(lambda: ValueError("invalid input"), calls), "embedding:values")
        assert len(calls) == 1
        assert no_sleep.delays == []
        assert exc_info.value.category is ErrorCategory.VALIDATION_ERROR
        assert exc_info.value.recommended_action == "fix_input_and_retry"

    @pytest.mark.asyncio
    async def test_api_error_not_retried(self, caller):
        calls: list[int] = []
        with pytest.raises(AIIntegrationError) as exc_info:
            await caller.execute(failing(lambda: Exception("403 Forbidden"), calls), "profile-sync")
        assert len(calls) == 1
        assert type(exc_info.value) is AIIntegrationError
        assert exc_info.value.code == "UNKNOWN_ERROR"

    @pytest.mark.asyncio
    async def test_max_retries_override(self, caller):
        calls: list[int] = []
        with pytest.raises(EmbeddingError):
            await caller.execute(
                failing(lambda: ConnectionError("network down"), calls), "embedding:values", max_retries=1
            )
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_per_attempt_timeout(self, caller):
        calls: list[int] = []

        async def slow():
            calls.append(1)
            await asyncio.sleep(1)

        with pytest.raises(EmbeddingError) as exc_info:
            await caller.execute(slow, "embedding:values", timeout=0.01)
        assert exc_info.value.category is ErrorCategory.TIMEOUT
        assert len(calls) == 3

    def test_backoff_capped_at_max_delay(self, caller):
        policy = RetryPolicy(True, 10, 20.0, 2.0, "cache_or_fail")
        assert caller.compute_backoff(policy, 5) == 30.0


class TestTypedErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "context, error_cls, code",
        [
            ("embedding:values", EmbeddingError, "EMBEDDING_ERROR"),
            ("similarity-check", EmbeddingError, "EMBEDDING_ERROR"),
            ("moderation:bio", ModerationError, "MODERATION_ERROR"),
            ("compliance-scan", ModerationError, "MODERATION_ERROR"),
            ("conversation:starter", ConversationError, "CONVERSATION_ERROR"),
            ("suggestion", ConversationError, "CONVERSATION_ERROR"),
        ],
    )
    async def test_context_selects_error_type(self, caller, context, error_cls, code):
        with pytest.raises(error_cls) as exc_info:
            await caller.execute(failing(lambda: Exception("403"), []), context)
        assert exc_info.value.code == code

    @pytest.mark.asyncio
    async def test_details_are_redacted(self, caller, telemetry):
        with pytest.raises(EmbeddingError) as exc_info:
            await caller.execute(
                failing(lambda: ValueError("invalid request api_key=sk-secret-123"), []), "embedding:values"
            )
        assert "sk-secret-123" not in str(exc_info.value.details)
        assert "sk-secret-123" not in str(telemetry.events)
        payload = exc_info.value.to_response()
        assert payload["error"] == "EMBEDDING_ERROR"
        assert "Traceback" not in str(payload)

    @pytest.mark.asyncio
    async def test_cause_is_chained(self, caller):
        with pytest.raises(EmbeddingError) as exc_info:
            await caller.execute(failing(lambda: ValueError("invalid"), []), "embedding:values")
        assert isinstance(exc_info.value.__cause__, ValueError)


class TestCircuitBreaking:
    """Breakers trip after consecutive failures and recover after cooldown."""

    async def _fail_times(self, caller, n, message="403 Forbidden"):
        for _ in range(n):
            with pytest.raises(AIIntegrationError):
                await caller.execute(failing(lambda: Exception(message), []), "embedding:values")

    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_fails_fast(self, caller, telemetry):
        await self._fail_times(caller, 5)
        assert caller.breakers[ErrorCategory.API_ERROR].state is CircuitState.OPEN

        calls: list[int] = []

        async def operation():
            calls.append(1)
            return "never"

        with pytest.raises(CircuitOpenError) as exc_info:
            await caller.execute(operation, "embedding:values")
        assert calls == []
        assert exc_info.value.code == "CIRCUIT_BREAKER_OPEN"
        assert len(telemetry.named("circuit_breaker_open")) == 1

    @pytest.mark.asyncio
    async def test_cooldown_allows_probe_and_success_closes(self, caller, clock):
        await self._fail_times(caller, 5)
        clock.advance(60)

        async def operation():
            return "recovered"

        assert await caller.execute(operation, "embedding:values") == "recovered"
        breaker = caller.breakers[ErrorCategory.API_ERROR]
        assert breaker.state is CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_failed_probe_reopens(self, caller, clock):
        await self._fail_times(caller, 5)
        clock.advance(61)
        await self._fail_times(caller, 1)
        assert caller.breakers[ErrorCategory.API_ERROR].state is CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_validation_errors_never_trip_a_breaker(self, caller):
        await self._fail_times(caller, 10, message="invalid payload")
        assert all(b.state is CircuitState.CLOSED for b in caller.breakers.values())

    @pytest.mark.asyncio
    async def test_error_stats(self, caller):
        await self._fail_times(caller, 2)
        await self._fail_times(caller, 1, message="invalid payload")
        stats = caller.error_stats()
        assert stats["total_errors"] == 3
        assert stats["errors_by_category"]["api_error"] == 2
        assert stats["errors_by_category"]["validation_error"] == 1
        assert stats["recent_errors"] == 3
        assert stats["open_breakers"] == 0

        caller.reset()
        assert caller.error_stats()["total_errors"] == 0


class TestCircuitBreakerUnit:
    def test_state_machine(self, clock):
        transitions = []
        breaker = CircuitBreaker(
            "network_error",
            failure_threshold=3,
            cooldown_seconds=10,
            clock=clock,
            on_transition=lambda name, old, new: transitions.append((old, new)),
        )
        for _ in range(2):
            breaker.record_failure()
        assert not breaker.is_open()
        breaker.record_failure()
        assert breaker.is_open()

        clock.advance(9)
        assert breaker.is_open()
        clock.advance(1)
        assert not breaker.is_open()
        assert breaker.state is CircuitState.HALF_OPEN

        breaker.record_success()
        assert breaker.state is CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert transitions == [
            (CircuitState.CLOSED, CircuitState.OPEN),
            (CircuitState.OPEN, CircuitState.HALF_OPEN),
            (CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]

    def test_success_resets_consecutive_count(self, clock):
        breaker = CircuitBreaker("timeout", failure_threshold=3, clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state is CircuitState.CLOSED
