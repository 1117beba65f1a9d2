"""
Faddl Match — Error Taxonomy

Every failure that crosses a service boundary is one of the types below.
AI-integration errors carry a stable ``code``, a user-facing message, a
recommended action and a *redacted* ``details`` bag that is safe to return
to clients and to ship to telemetry (no secrets, no tracebacks, long strings
truncated).
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Upstream failure categories used for retry and circuit-breaker policy."""

    RATE_LIMIT = "rate_limit"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    VALIDATION_ERROR = "validation_error"
    API_ERROR = "api_error"


_USER_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.RATE_LIMIT: "The service is experiencing high demand. Please try again in a few moments.",
    ErrorCategory.NETWORK_ERROR: "Connection issue detected. Please check your internet connection and try again.",
    ErrorCategory.TIMEOUT: "The request is taking longer than expected. Please try again.",
    ErrorCategory.VALIDATION_ERROR: "Please check your input and try again.",
    ErrorCategory.API_ERROR: "Service temporarily unavailable. Please try again later.",
}

_RECOMMENDED_ACTIONS: dict[ErrorCategory, str] = {
    ErrorCategory.RATE_LIMIT: "wait_and_retry",
    ErrorCategory.NETWORK_ERROR: "check_connection_and_retry",
    ErrorCategory.TIMEOUT: "retry_with_simpler_request",
    ErrorCategory.VALIDATION_ERROR: "fix_input_and_retry",
    ErrorCategory.API_ERROR: "contact_support_if_persistent",
}

_SECRET_KEY_PATTERN = re.compile(r"(api[_-]?key|authorization|token|secret|password)", re.IGNORECASE)
_SECRET_VALUE_PATTERN = re.compile(
    r"((?:api[_-]?key|key|token|secret|password)\s*[=:]\s*)[^\s,;&]+",
    re.IGNORECASE,
)
_MAX_DETAIL_CHARS = 200


def redact(value: Any) -> Any:
    """Strip secrets and truncate long strings in an arbitrary details value."""
    if isinstance(value, dict):
        return {
            str(k): ("[REDACTED]" if _SECRET_KEY_PATTERN.search(str(k)) else redact(v))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    if isinstance(value, str):
        cleaned = _SECRET_VALUE_PATTERN.sub(r"\1[REDACTED]", value)
        if len(cleaned) > _MAX_DETAIL_CHARS:
            cleaned = cleaned[:_MAX_DETAIL_CHARS] + "..."
        return cleaned
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return redact(str(value))


def user_friendly_message(category: ErrorCategory) -> str:
    return _USER_MESSAGES[category]


def recommended_action(category: ErrorCategory) -> str:
    return _RECOMMENDED_ACTIONS[category]


# ── AI-integration errors ────────────────────────────────────────────────────


class AIIntegrationError(Exception):
    """Base class for failures talking to (or guarding) an AI provider."""

    default_code = "UNKNOWN_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        category: ErrorCategory = ErrorCategory.API_ERROR,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.category = category
        self.details: dict[str, Any] = redact(details or {})

    @property
    def user_message(self) -> str:
        return user_friendly_message(self.category)

    @property
    def recommended_action(self) -> str:
        return recommended_action(self.category)

    @property
    def is_recoverable(self) -> bool:
        return self.category in (
            ErrorCategory.RATE_LIMIT,
            ErrorCategory.NETWORK_ERROR,
            ErrorCategory.TIMEOUT,
        )

    def to_response(self) -> dict[str, Any]:
        """Client-safe representation of the error."""
        return {
            "error": self.code,
            "message": self.user_message,
            "category": self.category.value,
            "recommended_action": self.recommended_action,
            "details": self.details,
        }


class EmbeddingError(AIIntegrationError):
    default_code = "EMBEDDING_ERROR"


class ModerationError(AIIntegrationError):
    default_code = "MODERATION_ERROR"


class ConversationError(AIIntegrationError):
    default_code = "CONVERSATION_ERROR"


class BudgetExceededError(AIIntegrationError):
    """The daily budget does not cover the request; callers should fall back
    to a cached or degraded result."""

    default_code = "BUDGET_EXCEEDED"

    @property
    def user_message(self) -> str:
        return "Daily AI budget reached. Showing cached or simplified results."

    @property
    def recommended_action(self) -> str:
        return "use_cache_or_reject"

    @property
    def is_recoverable(self) -> bool:
        return False


class CircuitOpenError(AIIntegrationError):
    """The circuit breaker for an upstream category is open."""

    default_code = "CIRCUIT_BREAKER_OPEN"

    @property
    def user_message(self) -> str:
        return "Service temporarily unavailable due to repeated failures. Please try again shortly."

    @property
    def recommended_action(self) -> str:
        return "wait_for_recovery"


# ── Match-generation domain errors ───────────────────────────────────────────


class MatchGenerationError(Exception):
    """Base class for request-level failures of match generation."""


class ProfileNotFoundError(MatchGenerationError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"Profile not found: {user_id}")
        self.user_id = user_id


class IncompleteProfileError(MatchGenerationError):
    def __init__(self, user_id: str, completion: int, required: int) -> None:
        super().__init__(
            f"Profile {user_id} is {completion}% complete; "
            f"at least {required}% is required to generate matches"
        )
        self.user_id = user_id
        self.completion = completion
        self.required = required
