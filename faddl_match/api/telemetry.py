"""
Faddl Match — Telemetry API

Read-only operational views of the cache, the cost ledger and upstream error
handling.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from faddl_match.api.deps import get_container
from faddl_match.container import ServiceContainer
from faddl_match.schemas.telemetry import CacheStatsResponse, CostReportResponse, ErrorStatsResponse

router = APIRouter()


@router.get("/cache", response_model=CacheStatsResponse)
async def cache_stats(container: ServiceContainer = Depends(get_container)) -> CacheStatsResponse:
    return CacheStatsResponse(**container.cache.stats())


@router.get("/costs", response_model=CostReportResponse)
async def cost_report(container: ServiceContainer = Depends(get_container)) -> CostReportResponse:
    return CostReportResponse(**container.cost_guard.report())


@router.get("/errors", response_model=ErrorStatsResponse)
async def error_stats(container: ServiceContainer = Depends(get_container)) -> ErrorStatsResponse:
    return ErrorStatsResponse(**container.caller.error_stats())
