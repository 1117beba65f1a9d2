"""
Faddl Match — Match Generation

Request-level orchestration for "generate matches for this member":

  1. Load the requester's profile (must exist and be complete enough).
  2. Load their partner preferences.
  3. Fetch a bounded, pre-filtered candidate pool.
  4. Load everyone the requester has already interacted with.
  5. Rank the pool with ``CompatibilityScorer`` (which resolves embeddings
     and degrades to rule-only scoring when AI calls are unavailable).
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from faddl_match.config import Settings, get_settings
from faddl_match.errors import IncompleteProfileError, ProfileNotFoundError
from faddl_match.schemas.match import MatchFilters, MatchGenerationResponse
from faddl_match.services.compatibility_service import CompatibilityScorer
from faddl_match.services.profile_source import ProfileSource

logger = structlog.get_logger(__name__)


class MatchGenerationService:
    """Generate ranked match suggestions for one member.

    Dependencies are injected at construction so the service can be tested
    with in-memory collaborators.
    """

    def __init__(
        self,
        profile_source: ProfileSource,
        scorer: CompatibilityScorer,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.profile_source = profile_source
        self.scorer = scorer

    async def generate_matches(
        self,
        user_id: str,
        limit: int | None = None,
        filters: MatchFilters | None = None,
    ) -> MatchGenerationResponse:
        """Return up to *limit* ranked candidates for *user_id*.

        Raises
        ------
        ProfileNotFoundError
            No profile exists for *user_id*.
        IncompleteProfileError
            The profile is below the minimum completion percentage.
        """
        log = logger.bind(user_id=user_id)
        log.info("match_generation_start", limit=limit, has_filters=filters is not None)

        requester = await self.profile_source.get_profile(user_id)
        if requester is None:
            raise ProfileNotFoundError(user_id)

        required = self.settings.MIN_PROFILE_COMPLETION
        if requester.profile_completion is not None and requester.profile_completion < required:
            raise IncompleteProfileError(user_id, requester.profile_completion, required)

        preferences = await self.profile_source.get_preferences(user_id)
        candidates = await self.profile_source.find_candidates(
            requester,
            filters,
            self.settings.MATCH_CANDIDATE_POOL_SIZE,
            min_completion=required,
        )
        interacted = await self.profile_source.interacted_ids(user_id)

        candidate_preferences = {}
        for candidate in candidates:
            prefs = await self.profile_source.get_preferences(candidate.user_id)
            if prefs is not None:
                candidate_preferences[candidate.user_id] = prefs

        matches = await self.scorer.rank(
            requester,
            candidates,
            requester_preferences=preferences,
            candidate_preferences=candidate_preferences,
            filters=filters,
            excluded_ids=interacted,
            limit=limit,
        )

        log.info(
            "match_generation_complete",
            candidates_evaluated=len(candidates),
            excluded=len(interacted),
            returned=len(matches),
        )

        return MatchGenerationResponse(
            matches=matches,
            total_candidates_evaluated=len(candidates),
            generated_at=datetime.now(timezone.utc),
        )
