"""
Faddl Match — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection (and any other call-site) always receives the same
validated instance without re-parsing the environment on every request.

Every service also accepts an explicit ``settings`` argument, so tests and
scripts can build components against a hand-made ``Settings(...)``.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Faddl Match engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Gemini embeddings
    # ------------------------------------------------------------------ #
    GEMINI_API_KEY: str = ""
    EMBEDDING_MODEL: str = "text-embedding-004"
    EMBEDDING_MODEL_LARGE: str = "gemini-embedding-001"
    EMBEDDING_DIMENSIONS: int = 768
    EMBEDDING_MAX_CONCURRENCY: int = 10
    EMBEDDING_CALL_TIMEOUT_SECONDS: float = 30.0

    # ------------------------------------------------------------------ #
    # Vector cache
    # ------------------------------------------------------------------ #
    CACHE_DEFAULT_TTL_SECONDS: int = 24 * 60 * 60
    CACHE_FACET_TTL_SECONDS: int = 7 * 24 * 60 * 60
    CACHE_MAX_ENTRIES: int = 10_000
    CACHE_MAX_MEMORY_MB: float = 100.0

    # ------------------------------------------------------------------ #
    # Daily cost budgets (USD)
    # ------------------------------------------------------------------ #
    DAILY_BUDGET_EMBEDDING: float = 50.0
    DAILY_BUDGET_COMPLETION: float = 100.0
    DAILY_BUDGET_MODERATION: float = 25.0
    DAILY_BUDGET_TOTAL: float = 175.0

    # Remaining-budget thresholds that trigger optimisations
    LOW_BUDGET_EMBEDDING: float = 10.0
    LOW_BUDGET_COMPLETION: float = 20.0
    MEDIUM_BUDGET_COMPLETION: float = 50.0
    TIGHT_OUTPUT_BUDGET: float = 30.0

    BUDGET_ALERT_THRESHOLDS: list[int] = [50, 75, 90]

    # ------------------------------------------------------------------ #
    # Resilience
    # ------------------------------------------------------------------ #
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_COOLDOWN_SECONDS: float = 60.0
    RETRY_MAX_DELAY_SECONDS: float = 30.0

    # ------------------------------------------------------------------ #
    # Matching
    # ------------------------------------------------------------------ #
    MATCH_MIN_SCORE: float = 50.0
    MATCH_DEFAULT_LIMIT: int = 10
    MATCH_MAX_LIMIT: int = 20
    MATCH_CANDIDATE_POOL_SIZE: int = 100
    MIN_PROFILE_COMPLETION: int = 60

    # ------------------------------------------------------------------ #
    # Storage
    # ------------------------------------------------------------------ #
    DATABASE_URL: str = ""
    REDIS_URL: str = ""
    EMBEDDING_STORE_BACKEND: Literal["memory", "sql", "redis"] = "memory"
    PROFILE_SOURCE_BACKEND: Literal["memory", "sql"] = "memory"

    # ------------------------------------------------------------------ #
    # Background maintenance
    # ------------------------------------------------------------------ #
    MAINTENANCE_INTERVAL_SECONDS: float = 300.0

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    REQUEST_TIMEOUT_SECONDS: float = 70.0

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def cache_max_memory_bytes(self) -> int:
        return int(self.CACHE_MAX_MEMORY_MB * 1024 * 1024)

    @field_validator(
        "DAILY_BUDGET_EMBEDDING",
        "DAILY_BUDGET_COMPLETION",
        "DAILY_BUDGET_MODERATION",
        "DAILY_BUDGET_TOTAL",
    )
    @classmethod
    def _budget_must_be_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"Budget must be non-negative, got {v}")
        return v

    @field_validator("BUDGET_ALERT_THRESHOLDS")
    @classmethod
    def _thresholds_must_ascend(cls, v: list[int]) -> list[int]:
        if any(not 0 < t <= 100 for t in v):
            raise ValueError(f"Alert thresholds must be percentages in (0, 100], got {v}")
        if v != sorted(set(v)):
            raise ValueError(f"Alert thresholds must be strictly ascending, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime::

        from faddl_match.config import get_settings
        settings = get_settings()
    """
    return Settings()
