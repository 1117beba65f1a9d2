"""
Faddl Match — Matching API

Endpoints for generating ranked match suggestions and inspecting a profile's
stored embeddings.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from faddl_match.api.deps import get_container
from faddl_match.container import ServiceContainer
from faddl_match.errors import IncompleteProfileError, ProfileNotFoundError
from faddl_match.schemas.embedding import EmbeddingSummary
from faddl_match.schemas.match import MatchGenerationRequest, MatchGenerationResponse

logger = structlog.get_logger("faddl_match.api.matching")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST /generate — Ranked suggestions for one member
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/generate",
    response_model=MatchGenerationResponse,
    summary="Generate ranked match suggestions",
)
async def generate_matches(
    body: MatchGenerationRequest,
    container: ServiceContainer = Depends(get_container),
) -> MatchGenerationResponse:
    """Score the candidate pool for ``user_id`` and return the best matches.

    Same-gender and previously interacted members are excluded, as are
    candidates scoring below the minimum threshold.  ``limit`` defaults to
    10 and is capped at 20.  AI failures degrade scoring; they do not fail
    the request.
    """
    try:
        return await container.matching_service.generate_matches(
            body.user_id,
            limit=body.limit,
            filters=body.filters,
        )
    except ProfileNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except IncompleteProfileError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


# ──────────────────────────────────────────────────────────────────────────────
# GET /embeddings/{profile_id} — Stored embedding metadata
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/embeddings/{profile_id}",
    response_model=EmbeddingSummary,
    summary="Metadata of a profile's stored embeddings",
)
async def get_embedding_summary(
    profile_id: str,
    container: ServiceContainer = Depends(get_container),
) -> EmbeddingSummary:
    record = await container.embedding_service.get_embeddings(profile_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No embeddings stored for {profile_id}",
        )
    return EmbeddingSummary(profile_id=record.profile_id, metadata=record.metadata)
