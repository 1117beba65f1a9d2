"""
Faddl Match — Cost Budget Guard

Tracks daily AI spend per category against configured budgets and rewrites
outgoing requests to stay inside them.

``optimize`` applies, in order:

1. skip outright when the category (or total) budget is already spent;
2. truncate over-long input text;
3. downgrade to a cheaper model tier when the remaining budget is low;
4. reduce the output-token cap when the remaining budget is tight;
5. skip when the estimated cost exceeds the remaining budget.

Cached and deduplicated operations are recorded as savings, not spend.  Total
spend is always the sum of the category ledgers.  Each alert threshold fires
at most once per ledger day; the ledger is rolled over at local midnight by
the maintenance scheduler.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time as dtime, timedelta
from enum import Enum
from typing import Any

import structlog

from faddl_match.config import Settings, get_settings
from faddl_match.services.telemetry import StructlogTelemetrySink, TelemetrySink

logger = structlog.get_logger(__name__)


class CostCategory(str, Enum):
    EMBEDDING = "embedding"
    COMPLETION = "completion"
    MODERATION = "moderation"


@dataclass(frozen=True)
class ModelRate:
    """USD per token."""

    input: float
    output: float = 0.0


# Ordered cheapest → most expensive within each category.
PRICING: dict[CostCategory, dict[str, ModelRate]] = {
    CostCategory.EMBEDDING: {
        "text-embedding-004": ModelRate(input=0.00002 / 1000),
        "gemini-embedding-001": ModelRate(input=0.00013 / 1000),
    },
    CostCategory.COMPLETION: {
        "gemini-2.5-flash": ModelRate(input=0.0015 / 1000, output=0.002 / 1000),
        "gemini-3-flash-preview": ModelRate(input=0.01 / 1000, output=0.03 / 1000),
        "gemini-3-pro-preview": ModelRate(input=0.03 / 1000, output=0.06 / 1000),
    },
    CostCategory.MODERATION: {
        "default": ModelRate(input=0.002 / 1000),
    },
}

_ALERT_SEVERITY = {50: "info", 75: "warning", 90: "critical"}


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    return math.ceil(len(text) / 4)


@dataclass
class CostRequest:
    """An outgoing AI request, as seen by the budget guard."""

    category: CostCategory
    model: str
    input_text: str = ""
    max_output_tokens: int | None = None
    temperature: float | None = None
    enable_caching: bool = False
    simple: bool = False


@dataclass
class OptimizationResult:
    request: CostRequest
    applied_optimizations: list[str] = field(default_factory=list)
    estimated_cost: float = 0.0
    skip: bool = False
    fallback_action: str = "execute"


class CostBudgetGuard:
    """Daily budget ledger with request optimisation and threshold alerts."""

    # (ceiling, truncate-to) in characters; roughly 2000 and 1000 tokens
    INPUT_LIMITS: dict[CostCategory, tuple[int, int]] = {
        CostCategory.EMBEDDING: (8000, 7500),
        CostCategory.MODERATION: (4000, 3500),
    }
    MAX_OUTPUT_TOKENS_WHEN_TIGHT = 500
    LARGE_OUTPUT_TOKENS = 1000
    CACHEABLE_TEMPERATURE = 0.1
    CACHEABLE_TEMPERATURE_CEILING = 0.3

    def __init__(
        self,
        settings: Settings | None = None,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.telemetry = telemetry or StructlogTelemetrySink()
        self.budgets: dict[CostCategory, float] = {
            CostCategory.EMBEDDING: self.settings.DAILY_BUDGET_EMBEDDING,
            CostCategory.COMPLETION: self.settings.DAILY_BUDGET_COMPLETION,
            CostCategory.MODERATION: self.settings.DAILY_BUDGET_MODERATION,
        }
        self.total_budget = self.settings.DAILY_BUDGET_TOTAL
        self._low_budget: dict[CostCategory, float] = {
            CostCategory.EMBEDDING: self.settings.LOW_BUDGET_EMBEDDING,
            CostCategory.COMPLETION: self.settings.LOW_BUDGET_COMPLETION,
        }
        self._lock = threading.Lock()
        self._ledger_day: date = datetime.now().astimezone().date()
        self._zero_ledger()

    def _zero_ledger(self) -> None:
        self._spent: dict[CostCategory, float] = {c: 0.0 for c in CostCategory}
        self._savings: dict[str, float] = {
            "cache_hits": 0,
            "cache_savings": 0.0,
            "deduplication": 0.0,
            "model_downgrades": 0.0,
        }
        self._alerted: set[int] = set()

    # ── Pricing ───────────────────────────────────────────────────────────

    @staticmethod
    def model_tiers(category: CostCategory) -> list[str]:
        return list(PRICING[category])

    def estimate_cost(
        self,
        category: CostCategory,
        units: int,
        model: str,
        output_units: int = 0,
    ) -> float:
        """Price *units* input tokens (and *output_units*) for *model*.

        Unknown models are priced at the category's most expensive tier.
        """
        rates = PRICING[category]
        rate = rates.get(model) or rates[self.model_tiers(category)[-1]]
        return units * rate.input + output_units * rate.output

    def estimate_request_cost(self, request: CostRequest) -> float:
        return self.estimate_cost(
            request.category,
            estimate_tokens(request.input_text),
            request.model,
            request.max_output_tokens or 0,
        )

    # ── Ledger ────────────────────────────────────────────────────────────

    def spent(self, category: CostCategory) -> float:
        with self._lock:
            return self._spent[category]

    @property
    def total_spent(self) -> float:
        with self._lock:
            return sum(self._spent.values())

    def remaining_budget(self, category: CostCategory) -> float:
        """What may still be spent in *category* today, bounded by the total."""
        with self._lock:
            total = sum(self._spent.values())
            category_left = self.budgets[category] - self._spent[category]
            total_left = self.total_budget - total
        return max(0.0, min(category_left, total_left))

    def is_exceeded(self, category: CostCategory) -> bool:
        with self._lock:
            total = sum(self._spent.values())
            return self._spent[category] >= self.budgets[category] or total >= self.total_budget

    def charge(
        self,
        category: CostCategory,
        amount: float,
        *,
        cached: bool = False,
        deduplicated: bool = False,
        model: str | None = None,
        units: int | None = None,
    ) -> None:
        """Record *amount* USD against *category*.

        ``cached`` and ``deduplicated`` operations are booked as savings and
        leave the spend ledgers untouched.
        """
        if amount < 0:
            raise ValueError(f"Charge amount must be non-negative, got {amount}")

        with self._lock:
            if cached:
                self._savings["cache_hits"] += 1
                self._savings["cache_savings"] += amount
                return
            if deduplicated:
                self._savings["deduplication"] += amount
                return

            self._spent[category] += amount
            total = sum(self._spent.values())
            crossed = self._newly_crossed_thresholds(total)

        logger.debug(
            "cost_charged",
            category=category.value,
            amount=amount,
            model=model,
            units=units,
            total=total,
        )
        for threshold in crossed:
            self._emit_alert(threshold, total)

    def _newly_crossed_thresholds(self, total: float) -> list[int]:
        if self.total_budget <= 0:
            return []
        pct = total / self.total_budget * 100
        crossed = [
            t for t in self.settings.BUDGET_ALERT_THRESHOLDS
            if pct >= t and t not in self._alerted
        ]
        self._alerted.update(crossed)
        return crossed

    def _emit_alert(self, threshold: int, total: float) -> None:
        severity = _ALERT_SEVERITY.get(threshold, "critical" if threshold >= 90 else "warning")
        payload = {
            "severity": severity,
            "threshold_pct": threshold,
            "spent": round(total, 6),
            "budget": self.total_budget,
            "remaining": round(max(0.0, self.total_budget - total), 6),
        }
        self.telemetry.emit("cost_budget_alert", payload)

    # ── Optimisation ──────────────────────────────────────────────────────

    def optimize(self, request: CostRequest) -> OptimizationResult:
        """Rewrite *request* to fit the remaining budget, or mark it skipped."""
        category = request.category

        if self.is_exceeded(category):
            logger.warning("cost_budget_exceeded", category=category.value)
            return OptimizationResult(
                request=request,
                applied_optimizations=["budget_exceeded"],
                estimated_cost=0.0,
                skip=True,
                fallback_action="use_cache_or_reject",
            )

        optimized = replace(request)
        applied: list[str] = []
        remaining = self.remaining_budget(category)

        limits = self.INPUT_LIMITS.get(category)
        if limits and len(optimized.input_text) > limits[0]:
            optimized.input_text = optimized.input_text[: limits[1]] + "..."
            applied.append("text_truncation")

        tiers = self.model_tiers(category)
        low = self._low_budget.get(category)
        if low is not None and remaining < low and optimized.model != tiers[0]:
            before = self.estimate_request_cost(optimized)
            optimized.model = tiers[0]
            saved = before - self.estimate_request_cost(optimized)
            with self._lock:
                self._savings["model_downgrades"] += max(0.0, saved)
            applied.append("model_downgrade")
        elif (
            category is CostCategory.COMPLETION
            and optimized.simple
            and remaining < self.settings.MEDIUM_BUDGET_COMPLETION
            and optimized.model == tiers[-1]
        ):
            optimized.model = tiers[len(tiers) // 2]
            applied.append("model_optimization")

        if (
            optimized.max_output_tokens is not None
            and optimized.max_output_tokens > self.LARGE_OUTPUT_TOKENS
            and remaining < self.settings.TIGHT_OUTPUT_BUDGET
        ):
            optimized.max_output_tokens = self.MAX_OUTPUT_TOKENS_WHEN_TIGHT
            applied.append("token_limit_reduction")

        if (
            optimized.enable_caching
            and optimized.temperature is not None
            and optimized.temperature > self.CACHEABLE_TEMPERATURE_CEILING
        ):
            optimized.temperature = self.CACHEABLE_TEMPERATURE
            applied.append("temperature_optimization")

        estimated = self.estimate_request_cost(optimized)
        if estimated > remaining:
            logger.warning(
                "cost_budget_protection",
                category=category.value,
                estimated_cost=estimated,
                remaining=remaining,
            )
            applied.append("budget_protection")
            return OptimizationResult(
                request=optimized,
                applied_optimizations=applied,
                estimated_cost=estimated,
                skip=True,
                fallback_action="use_cache_or_reject",
            )

        return OptimizationResult(
            request=optimized,
            applied_optimizations=applied,
            estimated_cost=estimated,
        )

    # ── Daily rollover ────────────────────────────────────────────────────

    def reset(self) -> None:
        """Zero every ledger, savings counter and alert flag."""
        with self._lock:
            self._zero_ledger()
            self._ledger_day = datetime.now().astimezone().date()
        logger.info("daily_costs_reset", ledger_day=self._ledger_day.isoformat())

    def roll_over(self, now: datetime | None = None) -> bool:
        """Reset the ledger if *now* falls on a later local day; at most once per day."""
        today = (now or datetime.now().astimezone()).date()
        with self._lock:
            if today <= self._ledger_day:
                return False
            self._zero_ledger()
            self._ledger_day = today
        logger.info("daily_costs_reset", ledger_day=today.isoformat())
        return True

    @staticmethod
    def next_reset_at(now: datetime | None = None) -> datetime:
        """The next local midnight after *now*."""
        now = now or datetime.now().astimezone()
        return datetime.combine(now.date() + timedelta(days=1), dtime.min, tzinfo=now.tzinfo)

    # ── Reporting ─────────────────────────────────────────────────────────

    def report(self) -> dict[str, Any]:
        with self._lock:
            spent = dict(self._spent)
            savings = dict(self._savings)
        total = sum(spent.values())
        total_savings = savings["cache_savings"] + savings["deduplication"] + savings["model_downgrades"]

        current_spend = {c.value: round(v, 6) for c, v in spent.items()}
        current_spend["total"] = round(total, 6)
        limits = {c.value: v for c, v in self.budgets.items()}
        limits["total"] = self.total_budget

        return {
            "ledger_day": self._ledger_day.isoformat(),
            "current_spend": current_spend,
            "budget_limits": limits,
            "remaining": {c.value: round(self.remaining_budget(c), 6) for c in CostCategory},
            "savings": {**savings, "total": round(total_savings, 6)},
            "recommendations": self._recommendations(spent, savings, total, total_savings),
        }

    def _recommendations(
        self,
        spent: dict[CostCategory, float],
        savings: dict[str, float],
        total: float,
        total_savings: float,
    ) -> list[str]:
        recs: list[str] = []
        if spent[CostCategory.EMBEDDING] > self.budgets[CostCategory.EMBEDDING] * 0.8:
            recs.append("Consider more aggressive embedding caching")
        if spent[CostCategory.COMPLETION] > self.budgets[CostCategory.COMPLETION] * 0.8:
            recs.append("Route simple completions to the cheapest model tier")
        if savings["cache_hits"] < 100:
            recs.append("Increase cache TTL for frequently accessed data")
        if total > 0 and total_savings < total * 0.1:
            recs.append("Enable more aggressive cost optimization")
        return recs
