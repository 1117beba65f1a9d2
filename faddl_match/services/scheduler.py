"""
Faddl Match — Background maintenance

A single asyncio task owns all periodic upkeep:

* rolling the cost ledger over at local midnight (at most once per day);
* cache maintenance (expired-entry purge, memory relief, stats logging).

Ticks run every ``MAINTENANCE_INTERVAL_SECONDS``, shortened when midnight is
closer, so the reset fires on time without a second timer.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Iterable

import structlog

from faddl_match.services.cost_guard import CostBudgetGuard
from faddl_match.services.vector_cache import VectorCache

logger = structlog.get_logger(__name__)


class MaintenanceScheduler:
    def __init__(
        self,
        cost_guard: CostBudgetGuard,
        caches: Iterable[VectorCache],
        interval_seconds: float = 300.0,
        now: Callable[[], datetime] = lambda: datetime.now().astimezone(),
    ) -> None:
        self.cost_guard = cost_guard
        self.caches = list(caches)
        self.interval_seconds = interval_seconds
        self._now = now
        self._task: asyncio.Task | None = None
        self._stop = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="faddl-maintenance")
        logger.info("maintenance_scheduler_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        await self._task
        self._task = None
        logger.info("maintenance_scheduler_stopped")

    def tick(self) -> dict:
        """Run one maintenance pass.  Returns what was done."""
        rolled = self.cost_guard.roll_over(self._now())
        cache_results = {cache.name: cache.maintain() for cache in self.caches}
        return {"ledger_reset": rolled, "caches": cache_results}

    def seconds_until_next_tick(self) -> float:
        now = self._now()
        until_midnight = (self.cost_guard.next_reset_at(now) - now).total_seconds()
        return max(0.0, min(self.interval_seconds, until_midnight))

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.seconds_until_next_tick())
                break
            except asyncio.TimeoutError:
                pass
            try:
                self.tick()
            except Exception:
                logger.exception("maintenance_tick_failed")
