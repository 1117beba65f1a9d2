"""
Faddl Match — Main API Router

Aggregates all sub-routers under a single prefix so that ``faddl_match.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from faddl_match.api import matching, telemetry

router = APIRouter()

router.include_router(matching.router, prefix="/match", tags=["Matching"])
router.include_router(telemetry.router, prefix="/telemetry", tags=["Telemetry"])
