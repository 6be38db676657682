"""
Analysis Scheduler — Runs the aggregation engine on its own cadence.
The engine is CPU-bound and synchronous, so each run goes to a worker thread.
"""

from __future__ import annotations
import asyncio
from typing import Optional, TYPE_CHECKING
from scheduling.periodic import PeriodicTask
import logging

if TYPE_CHECKING:
    from core.aggregation import AggregationEngine, AnalysisReport

logger = logging.getLogger(__name__)


class AnalysisScheduler:
    """Periodic trigger for AggregationEngine.run with idempotent start/stop."""

    def __init__(
        self,
        engine: "AggregationEngine",
        interval_sec: float = 120.0,
        shutdown_grace_sec: float = 30.0,
    ):
        self.engine = engine
        self.interval_sec = interval_sec
        self.shutdown_grace_sec = shutdown_grace_sec
        self.last_report: Optional["AnalysisReport"] = None
        self._timer: Optional[PeriodicTask] = None
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self._timer is not None

    async def start(self):
        async with self._lock:
            if self._timer is not None:
                logger.warning("[ANALYSIS] Scheduler already running")
                return
            self._timer = PeriodicTask("analysis", self.interval_sec, self._fire)
            self._timer.start()

    async def stop(self):
        async with self._lock:
            if self._timer is None:
                logger.warning("[ANALYSIS] Scheduler already stopped")
                return
            timer, self._timer = self._timer, None
            await timer.stop(self.shutdown_grace_sec)

    async def run_once(self) -> "AnalysisReport":
        """One-off analysis; AnalysisError propagates to the caller."""
        report = await asyncio.to_thread(self.engine.run)
        self.last_report = report
        return report

    async def _fire(self):
        await self.run_once()
