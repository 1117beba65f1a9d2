"""Unit tests for the error taxonomy and redaction."""
from __future__ import annotations

from faddl_match.errors import (
    AIIntegrationError,
    BudgetExceededError,
    CircuitOpenError,
    EmbeddingError,
    ErrorCategory,
    IncompleteProfileError,
    ProfileNotFoundError,
    redact,
)


class TestRedact:
    def test_secret_keys_are_masked(self):
        cleaned = redact({"api_key": "sk-123", "Authorization": "Bearer x", "facet": "values"})
        assert cleaned == {"api_key": "[REDACTED]", "Authorization": "[REDACTED]", "facet": "values"}

    def test_secret_values_inside_strings_are_masked(self):
        assert redact("call failed: key=AIzaSyABC token: abc.def") == (
            "call failed: key=[REDACTED] token: [REDACTED]"
        )

    def test_long_strings_truncated(self):
        cleaned = redact("x" * 500)
        assert len(cleaned) == 203
        assert cleaned.endswith("...")

    def test_nested_structures(self):
        cleaned = redact({"outer": [{"password": "p"}, "ok"], "count": 3, "flag": None})
        assert cleaned == {"outer": [{"password": "[REDACTED]"}, "ok"], "count": 3, "flag": None}


class TestAIIntegrationError:
    def test_defaults(self):
        err = AIIntegrationError("boom")
        assert err.code == "UNKNOWN_ERROR"
        assert err.category is ErrorCategory.API_ERROR
        assert err.details == {}
        assert not err.is_recoverable

    def test_subclass_codes_and_recoverability(self):
        err = EmbeddingError("slow", category=ErrorCategory.TIMEOUT)
        assert err.code == "EMBEDDING_ERROR"
        assert err.is_recoverable
        assert err.recommended_action == "retry_with_simpler_request"

    def test_details_redacted_on_construction(self):
        err = EmbeddingError("x", details={"token": "abc", "facet": "values"})
        assert err.details == {"token": "[REDACTED]", "facet": "values"}

    def test_to_response(self):
        err = EmbeddingError("x", details={"facet": "values"}, category=ErrorCategory.RATE_LIMIT)
        assert err.to_response() == {
            "error": "EMBEDDING_ERROR",
            "message": "The service is experiencing high demand. Please try again in a few moments.",
            "category": "rate_limit",
            "recommended_action": "wait_and_retry",
            "details": {"facet": "values"},
        }

    def test_budget_and_circuit_actions(self):
        assert BudgetExceededError("b").recommended_action == "use_cache_or_reject"
        assert BudgetExceededError("b").code == "BUDGET_EXCEEDED"
        assert CircuitOpenError("c").recommended_action == "wait_for_recovery"
        assert CircuitOpenError("c").code == "CIRCUIT_BREAKER_OPEN"


class TestDomainErrors:
    def test_profile_not_found(self):
        err = ProfileNotFoundError("u-1")
        assert err.user_id == "u-1"
        assert "u-1" in str(err)

    def test_incomplete_profile(self):
        err = IncompleteProfileError("u-1", 40, 60)
        assert (err.completion, err.required) == (40, 60)
        assert "40%" in str(err)
