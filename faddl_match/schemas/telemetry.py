from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class CacheStatsResponse(BaseModel):
    hits: int
    misses: int
    sets: int
    deletes: int
    evictions: int
    expirations: int
    entry_count: int
    estimated_bytes: int
    hit_ratio: float


class CostReportResponse(BaseModel):
    ledger_day: str
    current_spend: dict[str, float]
    budget_limits: dict[str, float]
    remaining: dict[str, float]
    savings: dict[str, float]
    recommendations: list[str]


class ErrorStatsResponse(BaseModel):
    total_errors: int
    errors_by_category: dict[str, int]
    recent_errors: int
    circuit_breakers: dict[str, dict[str, Any]]
    open_breakers: int
