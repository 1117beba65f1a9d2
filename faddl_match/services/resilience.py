"""
Faddl Match — Resilient Caller

Wraps every upstream AI call with:

* error classification into ``ErrorCategory``;
* category-specific retry with exponential backoff and jitter (tenacity);
* per-category circuit breakers
  (CLOSED → OPEN → HALF_OPEN → CLOSED | OPEN);
* conversion of the final failure into a typed ``AIIntegrationError``;
* telemetry on every failure and every breaker transition.

Breakers exist for the upstream-health categories only.  Validation errors
describe the caller's input, so they never trip a breaker.
"""

from __future__ import annotations

import asyncio
import random
import re
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception

from faddl_match.config import Settings, get_settings
from faddl_match.errors import (
    AIIntegrationError,
    CircuitOpenError,
    ConversationError,
    EmbeddingError,
    ErrorCategory,
    ModerationError,
    recommended_action,
    redact,
)
from faddl_match.services.telemetry import StructlogTelemetrySink, TelemetrySink

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# ── Classification ───────────────────────────────────────────────────────────

_SERVER_STATUS = re.compile(r"\b50[0234]\b")
_BAD_REQUEST = re.compile(r"\b(400|422)\b")
_AUTH_STATUS = re.compile(r"\b(401|403)\b")


def classify_error(error: BaseException) -> ErrorCategory:
    """Map an upstream exception onto an ``ErrorCategory``.

    SDKs wrap HTTP failures in assorted exception types, so both the type
    name and the message are inspected.  Timeouts are checked before network
    errors because ``TimeoutError`` is itself an ``OSError``.
    """
    if isinstance(error, AIIntegrationError):
        return error.category

    message = str(error).lower()
    type_name = type(error).__name__.lower()

    if (
        "429" in message
        or "rate limit" in message
        or "rate_limit" in message
        or "resource_exhausted" in message
        or "resource exhausted" in message
        or "resourceexhausted" in type_name
        or "toomanyrequests" in type_name
    ):
        return ErrorCategory.RATE_LIMIT

    if (
        isinstance(error, TimeoutError)
        or "timeout" in message
        or "timed out" in message
        or "deadline" in message
        or "timeout" in type_name
        or "deadlineexceeded" in type_name
    ):
        return ErrorCategory.TIMEOUT

    if (
        isinstance(error, ConnectionError)
        or "network" in message
        or "connection" in message
        or "unavailable" in message
        or _SERVER_STATUS.search(message)
        or "serviceunavailable" in type_name
        or "connecterror" in type_name
    ):
        return ErrorCategory.NETWORK_ERROR

    if _AUTH_STATUS.search(message) or "api key" in message or "unauthorized" in message:
        return ErrorCategory.API_ERROR

    if (
        isinstance(error, (ValueError, TypeError))
        or "validation" in message
        or "invalid" in message
        or _BAD_REQUEST.search(message)
        or "invalidargument" in type_name
    ):
        return ErrorCategory.VALIDATION_ERROR

    return ErrorCategory.API_ERROR


# ── Retry policy ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RetryPolicy:
    retryable: bool
    max_retries: int
    initial_delay_seconds: float
    multiplier: float
    fallback_action: str


DEFAULT_RETRY_POLICIES: dict[ErrorCategory, RetryPolicy] = {
    ErrorCategory.RATE_LIMIT: RetryPolicy(True, 3, 1.0, 2.0, "cache_or_delay"),
    ErrorCategory.NETWORK_ERROR: RetryPolicy(True, 2, 0.5, 1.5, "cache_or_fail"),
    ErrorCategory.TIMEOUT: RetryPolicy(True, 2, 1.0, 1.5, "cache_or_fail"),
    ErrorCategory.VALIDATION_ERROR: RetryPolicy(False, 0, 0.0, 1.0, "user_feedback"),
    ErrorCategory.API_ERROR: RetryPolicy(False, 0, 0.0, 1.0, "fail_gracefully"),
}

BREAKER_CATEGORIES: tuple[ErrorCategory, ...] = (
    ErrorCategory.RATE_LIMIT,
    ErrorCategory.NETWORK_ERROR,
    ErrorCategory.TIMEOUT,
    ErrorCategory.API_ERROR,
)


# ── Circuit breaker ──────────────────────────────────────────────────────────


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker for one upstream category."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        on_transition: Callable[[str, CircuitState, CircuitState], None] | None = None,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._on_transition = on_transition
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at: float | None = None

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    def is_open(self) -> bool:
        """True while calls must be rejected.

        An OPEN breaker whose cooldown has elapsed moves to HALF_OPEN and lets
        the next call through as a probe.
        """
        transition = None
        with self._lock:
            if (
                self._state is CircuitState.OPEN
                and self._last_failure_at is not None
                and self._clock() - self._last_failure_at >= self.cooldown_seconds
            ):
                transition = self._set_state(CircuitState.HALF_OPEN)
            is_open = self._state is CircuitState.OPEN
        self._notify(transition)
        return is_open

    def record_failure(self) -> None:
        transition = None
        with self._lock:
            self._failures += 1
            self._last_failure_at = self._clock()
            if self._state is CircuitState.HALF_OPEN or (
                self._state is CircuitState.CLOSED and self._failures >= self.failure_threshold
            ):
                transition = self._set_state(CircuitState.OPEN)
        self._notify(transition)

    def record_success(self) -> None:
        transition = None
        with self._lock:
            self._failures = 0
            if self._state is not CircuitState.CLOSED:
                transition = self._set_state(CircuitState.CLOSED)
        self._notify(transition)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "failures": self._failures,
                "last_failure_at": self._last_failure_at,
            }

    def _set_state(self, new: CircuitState) -> tuple[CircuitState, CircuitState]:
        old, self._state = self._state, new
        return old, new

    def _notify(self, transition: tuple[CircuitState, CircuitState] | None) -> None:
        if transition and self._on_transition is not None:
            self._on_transition(self.name, *transition)


# ── Resilient caller ─────────────────────────────────────────────────────────


class ResilientCaller:
    """Execute upstream operations with retry, circuit breaking and typing."""

    RECENT_WINDOW_SECONDS = 3600

    def __init__(
        self,
        settings: Settings | None = None,
        telemetry: TelemetrySink | None = None,
        policies: dict[ErrorCategory, RetryPolicy] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or get_settings()
        self.telemetry = telemetry or StructlogTelemetrySink()
        self.policies = {**DEFAULT_RETRY_POLICIES, **(policies or {})}
        self.max_delay_seconds = self.settings.RETRY_MAX_DELAY_SECONDS
        self._sleep = sleep
        self._clock = clock
        self.breakers: dict[ErrorCategory, CircuitBreaker] = {
            category: CircuitBreaker(
                category.value,
                failure_threshold=self.settings.CIRCUIT_FAILURE_THRESHOLD,
                cooldown_seconds=self.settings.CIRCUIT_COOLDOWN_SECONDS,
                clock=clock,
                on_transition=self._on_breaker_transition,
            )
            for category in BREAKER_CATEGORIES
        }
        self._stats_lock = threading.Lock()
        self._error_counts: dict[ErrorCategory, int] = {c: 0 for c in ErrorCategory}
        self._recent: deque[float] = deque(maxlen=1000)

    classify = staticmethod(classify_error)

    def compute_backoff(self, policy: RetryPolicy, attempt: int) -> float:
        """``initial × multiplier^attempt`` plus up to 10% jitter, capped."""
        delay = policy.initial_delay_seconds * (policy.multiplier ** attempt)
        jitter = random.random() * 0.1 * delay
        return min(self.max_delay_seconds, delay + jitter)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: str,
        max_retries: int | None = None,
        timeout: float | None = None,
    ) -> T:
        """Run *operation* under the retry and circuit-breaker policy.

        Parameters
        ----------
        operation:
            Zero-argument coroutine factory; called once per attempt.
        context:
            Label such as ``"embedding:values"``; selects the typed error.
        max_retries:
            Overrides the category's retry count for retryable categories.
        timeout:
            Per-attempt timeout in seconds.

        Raises
        ------
        CircuitOpenError
            A breaker is open; the operation was not attempted.
        AIIntegrationError
            Typed error once retries are exhausted or the failure is
            non-retryable.
        """
        attempts = 0

        def should_retry(exc: BaseException) -> bool:
            if isinstance(exc, AIIntegrationError):
                return False
            return self.policies[classify_error(exc)].retryable

        def stop(retry_state: RetryCallState) -> bool:
            category = classify_error(retry_state.outcome.exception())
            limit = self.policies[category].max_retries if max_retries is None else max_retries
            return retry_state.attempt_number > limit

        def wait(retry_state: RetryCallState) -> float:
            category = classify_error(retry_state.outcome.exception())
            return self.compute_backoff(self.policies[category], retry_state.attempt_number - 1)

        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception()
            logger.info(
                "ai_call_retry",
                context=context,
                attempt=retry_state.attempt_number,
                category=classify_error(exc).value,
                delay_seconds=round(retry_state.next_action.sleep, 3),
            )

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(should_retry),
                stop=stop,
                wait=wait,
                sleep=self._sleep,
                before_sleep=before_sleep,
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self._guard_breakers(context)
                    try:
                        if timeout is not None:
                            result = await asyncio.wait_for(operation(), timeout=timeout)
                        else:
                            result = await operation()
                    except Exception as exc:
                        self._record_failure(exc, context, attempts)
                        raise
                    self._record_success()
                    return result
        except AIIntegrationError:
            raise
        except Exception as exc:
            raise self._to_typed_error(exc, context, attempts) from exc
        raise AssertionError("unreachable")  # pragma: no cover

    # ── Breakers ──────────────────────────────────────────────────────────

    def _guard_breakers(self, context: str) -> None:
        for category, breaker in self.breakers.items():
            if breaker.is_open():
                raise CircuitOpenError(
                    f"Circuit breaker open for {category.value}",
                    details={
                        "context": context,
                        "breaker": category.value,
                        "cooldown_seconds": breaker.cooldown_seconds,
                    },
                    category=category,
                )

    def _record_success(self) -> None:
        for breaker in self.breakers.values():
            breaker.record_success()

    def _record_failure(self, exc: BaseException, context: str, attempt: int) -> None:
        category = classify_error(exc)
        with self._stats_lock:
            self._error_counts[category] += 1
            self._recent.append(self._clock())
        breaker = self.breakers.get(category)
        if breaker is not None:
            breaker.record_failure()
        self.telemetry.emit(
            "ai_call_failed",
            {
                "severity": "warning",
                "context": context,
                "category": category.value,
                "attempt": attempt,
                "error_type": type(exc).__name__,
                "error": redact(str(exc)),
            },
        )

    def _on_breaker_transition(self, name: str, old: CircuitState, new: CircuitState) -> None:
        payload = {
            "severity": "critical" if new is CircuitState.OPEN else "info",
            "breaker": name,
            "from_state": old.value,
            "to_state": new.value,
        }
        self.telemetry.emit("circuit_breaker_transition", payload)
        if new is CircuitState.OPEN:
            self.telemetry.emit("circuit_breaker_open", payload)

    # ── Typed errors ──────────────────────────────────────────────────────

    def _to_typed_error(self, exc: BaseException, context: str, attempts: int) -> AIIntegrationError:
        category = classify_error(exc)
        details = {
            "category": category.value,
            "context": context,
            "attempts": attempts,
            "upstream_error": type(exc).__name__,
            "upstream_message": str(exc),
            "recommended_action": recommended_action(category),
            "fallback_action": self.policies[category].fallback_action,
        }
        lowered = context.lower()
        if "embedding" in lowered or "similarity" in lowered:
            error_cls: type[AIIntegrationError] = EmbeddingError
        elif "moderation" in lowered or "compliance" in lowered:
            error_cls = ModerationError
        elif "conversation" in lowered or "suggestion" in lowered:
            error_cls = ConversationError
        else:
            error_cls = AIIntegrationError

        logger.error(
            "ai_call_exhausted",
            context=context,
            category=category.value,
            attempts=attempts,
            error_type=type(exc).__name__,
        )
        return error_cls(f"{context} failed: {category.value}", details=details, category=category)

    # ── Introspection ─────────────────────────────────────────────────────

    def error_stats(self) -> dict[str, Any]:
        cutoff = self._clock() - self.RECENT_WINDOW_SECONDS
        with self._stats_lock:
            by_category = {c.value: n for c, n in self._error_counts.items()}
            recent = sum(1 for t in self._recent if t >= cutoff)
        breakers = {c.value: b.snapshot() for c, b in self.breakers.items()}
        return {
            "total_errors": sum(by_category.values()),
            "errors_by_category": by_category,
            "recent_errors": recent,
            "circuit_breakers": breakers,
            "open_breakers": sum(1 for b in breakers.values() if b["state"] == CircuitState.OPEN.value),
        }

    def reset(self) -> None:
        for breaker in self.breakers.values():
            breaker.record_success()
        with self._stats_lock:
            self._error_counts = {c: 0 for c in ErrorCategory}
            self._recent.clear()
