"""Shared pytest fixtures for Faddl Match tests."""
from __future__ import annotations

import asyncio
import hashlib
from typing import Any, Callable

import pytest

from faddl_match.config import Settings
from faddl_match.schemas.profile import PartnerPreferences, Profile
from faddl_match.services.embedding_provider import EmbeddingProvider
from faddl_match.services.telemetry import TelemetrySink


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTelemetrySink(TelemetrySink):
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def named(self, event: str) -> list[dict[str, Any]]:
        return [p for e, p in self.events if e == event]


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic provider: the vector is derived from a hash of the text.

    ``errors`` is a queue of exceptions raised by successive calls;
    ``fail_when`` raises for any text it returns True for.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.errors: list[BaseException] = []
        self.fail_when: Callable[[str], bool] | None = None
        self.delay = 0.0
        self.active = 0
        self.max_active = 0

    @property
    def provider_name(self) -> str:
        return "fake"

    async def embed(self, text: str, *, model: str, dimensions: int) -> list[float]:
        self.calls.append((text, model))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.errors:
                raise self.errors.pop(0)
            if self.fail_when is not None and self.fail_when(text):
                raise ConnectionError("connection reset by peer")
            digest = hashlib.sha256(text.encode("utf-8")).digest()
            return [b / 255.0 for b in digest[:dimensions]]
        finally:
            self.active -= 1


@pytest.fixture
def settings():
    """Settings isolated from the environment, with small vectors."""
    return Settings(
        _env_file=None,
        GEMINI_API_KEY="",
        EMBEDDING_DIMENSIONS=8,
        EMBEDDING_CALL_TIMEOUT_SECONDS=5.0,
        ENVIRONMENT="test",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def telemetry():
    return RecordingTelemetrySink()


@pytest.fixture
def fake_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def no_sleep():
    """Async sleep replacement that records requested delays."""
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep


# ── Profiles ─────────────────────────────────────────────────────────────────


@pytest.fixture
def requester():
    """Practising, bachelors-educated woman in London, 30."""
    return Profile(
        user_id="user-requester",
        first_name="Aisha",
        gender="female",
        age=30,
        location_city="London",
        location_country="United Kingdom",
        religious_level="practicing",
        education_level="bachelors",
        bio="Kind and patient teacher who loves reading and travel.",
        interests=["reading", "travel"],
        languages=["English", "Arabic"],
        family_values=["close family", "community"],
        marriage_timeline="within_1_year",
        ethnicity="Arab",
        profile_completion=90,
    )


@pytest.fixture
def requester_preferences():
    return PartnerPreferences(min_age=27, max_age=38, wants_children=True)


@pytest.fixture
def candidate_close():
    """Same city, practice and education; two years older; both interests shared."""
    return Profile(
        user_id="cand-a",
        first_name="Yusuf",
        gender="male",
        age=32,
        location_city="London",
        location_country="United Kingdom",
        religious_level="practicing",
        education_level="bachelors",
        bio="Outgoing engineer, enjoys reading and hiking.",
        interests=["reading", "travel", "hiking"],
        languages=["English", "Arabic"],
        family_values=["close family"],
        marriage_timeline="within_1_year",
        ethnicity="Arab",
        profile_completion=95,
    )


@pytest.fixture
def candidate_distant():
    """Two practice steps away, different country, education, timeline; 15 years older."""
    return Profile(
        user_id="cand-b",
        first_name="Omar",
        gender="male",
        age=45,
        location_city="Toronto",
        location_country="Canada",
        religious_level="cultural",
        education_level="doctorate",
        interests=["gaming"],
        languages=["French"],
        marriage_timeline="within_2_years",
        profile_completion=80,
    )


@pytest.fixture
def candidate_middle():
    """Same practice, one shared interest, ten years older, same country."""
    return Profile(
        user_id="cand-c",
        first_name="Bilal",
        gender="male",
        age=40,
        location_city="Manchester",
        location_country="United Kingdom",
        religious_level="practicing",
        education_level="masters",
        interests=["reading", "football"],
        marriage_timeline="within_2_years",
        profile_completion=85,
    )


@pytest.fixture
def same_gender_profile():
    return Profile(
        user_id="cand-f",
        gender="female",
        age=30,
        location_city="London",
        location_country="United Kingdom",
        religious_level="practicing",
        education_level="bachelors",
        interests=["reading", "travel"],
        marriage_timeline="within_1_year",
    )
