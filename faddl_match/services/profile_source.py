"""
Faddl Match — Profile sources

Read-side adapter over wherever member profiles and interactions live.  The
match-generation service only needs four queries, so that is all the
interface exposes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from faddl_match.models.match import MatchInteraction
from faddl_match.models.profile import UserProfileRecord
from faddl_match.schemas.match import MatchFilters
from faddl_match.schemas.profile import PartnerPreferences, Profile

logger = structlog.get_logger(__name__)


class ProfileSource(ABC):
    @abstractmethod
    async def get_profile(self, user_id: str) -> Profile | None: ...

    @abstractmethod
    async def get_preferences(self, user_id: str) -> PartnerPreferences | None: ...

    @abstractmethod
    async def find_candidates(
        self,
        requester: Profile,
        filters: MatchFilters | None,
        limit: int,
        min_completion: int = 0,
    ) -> list[Profile]:
        """Opposite-gender profiles matching *filters*, at most *limit*."""

    @abstractmethod
    async def interacted_ids(self, user_id: str) -> set[str]:
        """Ids of members *user_id* has interacted with, in either direction."""


class InMemoryProfileSource(ProfileSource):
    """Dictionary-backed source for development, demos and tests."""

    def __init__(
        self,
        profiles: Iterable[Profile] = (),
        preferences: dict[str, PartnerPreferences] | None = None,
        interactions: Iterable[tuple[str, str]] = (),
    ) -> None:
        self._profiles: dict[str, Profile] = {p.user_id: p for p in profiles}
        self._preferences: dict[str, PartnerPreferences] = dict(preferences or {})
        self._interactions: set[tuple[str, str]] = set(interactions)

    def add_profile(self, profile: Profile, preferences: PartnerPreferences | None = None) -> None:
        self._profiles[profile.user_id] = profile
        if preferences is not None:
            self._preferences[profile.user_id] = preferences

    def add_interaction(self, user_id: str, other_id: str) -> None:
        self._interactions.add((user_id, other_id))

    async def get_profile(self, user_id: str) -> Profile | None:
        return self._profiles.get(user_id)

    async def get_preferences(self, user_id: str) -> PartnerPreferences | None:
        return self._preferences.get(user_id)

    async def find_candidates(
        self,
        requester: Profile,
        filters: MatchFilters | None,
        limit: int,
        min_completion: int = 0,
    ) -> list[Profile]:
        found: list[Profile] = []
        for user_id in sorted(self._profiles):
            profile = self._profiles[user_id]
            if profile.user_id == requester.user_id or profile.gender == requester.gender:
                continue
            if profile.profile_completion is not None and profile.profile_completion < min_completion:
                continue
            if filters is not None:
                if filters.age_range is not None and (
                    profile.age is None
                    or not filters.age_range.min <= profile.age <= filters.age_range.max
                ):
                    continue
                if filters.education_levels and profile.education_level not in filters.education_levels:
                    continue
                if filters.religious_levels and profile.religious_level not in filters.religious_levels:
                    continue
            found.append(profile)
            if len(found) >= limit:
                break
        return found

    async def interacted_ids(self, user_id: str) -> set[str]:
        ids: set[str] = set()
        for a, b in self._interactions:
            if a == user_id:
                ids.add(b)
            elif b == user_id:
                ids.add(a)
        return ids


class SqlProfileSource(ProfileSource):
    """``user_profiles`` / ``match_interactions`` via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _get_record(self, user_id: str) -> UserProfileRecord | None:
        async with self._session_factory() as session:
            return await session.get(UserProfileRecord, user_id)

    async def get_profile(self, user_id: str) -> Profile | None:
        record = await self._get_record(user_id)
        return record.to_profile() if record is not None else None

    async def get_preferences(self, user_id: str) -> PartnerPreferences | None:
        record = await self._get_record(user_id)
        return record.to_preferences() if record is not None else None

    async def find_candidates(
        self,
        requester: Profile,
        filters: MatchFilters | None,
        limit: int,
        min_completion: int = 0,
    ) -> list[Profile]:
        stmt = (
            select(UserProfileRecord)
            .where(UserProfileRecord.user_id != requester.user_id)
            .where(UserProfileRecord.gender != requester.gender.value)
            .where(
                or_(
                    UserProfileRecord.profile_completion.is_(None),
                    UserProfileRecord.profile_completion >= min_completion,
                )
            )
        )
        if filters is not None:
            if filters.age_range is not None:
                stmt = stmt.where(
                    UserProfileRecord.age.between(filters.age_range.min, filters.age_range.max)
                )
            if filters.education_levels:
                stmt = stmt.where(
                    UserProfileRecord.education_level.in_([e.value for e in filters.education_levels])
                )
            if filters.religious_levels:
                stmt = stmt.where(
                    UserProfileRecord.religious_level.in_([r.value for r in filters.religious_levels])
                )
        stmt = stmt.order_by(UserProfileRecord.user_id).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            records = result.scalars().all()

        logger.debug("candidates_fetched", requester_id=requester.user_id, count=len(records))
        return [r.to_profile() for r in records]

    async def interacted_ids(self, user_id: str) -> set[str]:
        stmt = select(MatchInteraction.user_id, MatchInteraction.matched_user_id).where(
            or_(MatchInteraction.user_id == user_id, MatchInteraction.matched_user_id == user_id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()
        return {b if a == user_id else a for a, b in rows}
