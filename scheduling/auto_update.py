"""
Ingestion Scheduler — Periodic price collection plus historical backfill.

Owns the tracked-coin set and the ``enabled`` flag. Starting it arms two
independent timers: current-price ingestion and analysis.
"""

from __future__ import annotations
import asyncio
from contextlib import aclosing
from typing import Awaitable, Callable, List, Optional, TYPE_CHECKING
from market.errors import PersistenceError, TrackerError
from scheduling.periodic import PeriodicTask
import logging

if TYPE_CHECKING:
    from config import IngestionConfig, ScheduleConfig
    from core.tracked_coins import TrackedCoins
    from market.coingecko_rest import CoinGeckoRestClient
    from scheduling.analysis import AnalysisScheduler
    from storage.database import Database

logger = logging.getLogger(__name__)


class IngestionScheduler:
    """Drives current-price ingestion and backfills for the tracked coins."""

    def __init__(
        self,
        client: "CoinGeckoRestClient",
        store: "Database",
        tracked: "TrackedCoins",
        analysis: "AnalysisScheduler",
        ingestion_config: "IngestionConfig",
        schedule_config: "ScheduleConfig",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.store = store
        self.tracked = tracked
        self.analysis = analysis
        self.ingestion_config = ingestion_config
        self.schedule_config = schedule_config
        self._sleep = sleep
        self._enabled = False
        self._lock = asyncio.Lock()
        self._timer: Optional[PeriodicTask] = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def status(self) -> str:
        return "running" if self._enabled else "stopped"

    # ==================== Lifecycle ====================

    async def start(self):
        """Arm the ingestion and analysis timers. No-op if already running."""
        async with self._lock:
            if self._enabled:
                logger.warning("[SCHED] Auto-update already running")
                return
            self._enabled = True
            self._timer = PeriodicTask(
                "ingestion",
                self.schedule_config.ingest_interval_sec,
                self._scheduled_collect,
            )
            self._timer.start()
            await self.analysis.start()
        logger.info("[SCHED] Auto-update with analysis started")

    async def stop(self):
        """Disarm both timers, waiting for in-flight work up to the grace period."""
        async with self._lock:
            if not self._enabled:
                logger.warning("[SCHED] Auto-update already stopped")
                return
            self._enabled = False
            timer, self._timer = self._timer, None
            await asyncio.gather(
                timer.stop(self.schedule_config.shutdown_grace_sec),
                self.analysis.stop(),
            )
        logger.info("[SCHED] Auto-update stopped")

    # ==================== Ingestion ====================

    async def _scheduled_collect(self):
        stored = await self.collect_current_prices(stop_on_disable=True)
        logger.info(f"[INGEST] Scheduled update stored {stored} records")

    async def collect_current_prices(self, stop_on_disable: bool = False) -> int:
        """
        Fetch and store current prices for every tracked coin, batch by batch.
        A failed save aborts only its own batch. With ``stop_on_disable`` a
        stop request ends the run at the next batch boundary, including one
        that arrives during the inter-batch pause.
        """
        coins = self.tracked.coins
        if not coins:
            logger.warning("[INGEST] No coins tracked, nothing to collect")
            return 0

        stored = 0
        should_continue = (lambda: self._enabled) if stop_on_disable else None
        batches_iter = self.client.iter_current_price_batches(coins, should_continue=should_continue)
        async with aclosing(batches_iter) as batches:
            async for batch, records in batches:
                try:
                    stored += self.store.insert_many(records)
                except PersistenceError as e:
                    logger.error(f"[INGEST] Saving batch {batch} failed: {e}")
                if stop_on_disable and not self._enabled:
                    logger.info("[INGEST] Stop requested, ending run at batch boundary")
                    break
        logger.info(f"[INGEST] Stored {stored} price records for {len(coins)} coins")
        return stored

    # ==================== Tracked Coins ====================

    def add_tracked_coin(self, coin_id: str) -> bool:
        return self.tracked.add(coin_id)

    def remove_tracked_coin(self, coin_id: str) -> bool:
        return self.tracked.remove(coin_id)

    def tracked_coins(self) -> List[str]:
        return self.tracked.coins

    # ==================== Backfill ====================

    async def initialize_historical_data_if_needed(self, days_back: int) -> int:
        """Backfill only when the store holds fewer records than the threshold."""
        existing = self.store.count()
        threshold = self.ingestion_config.backfill_threshold
        if existing >= threshold:
            logger.info(f"[INGEST] {existing} records already stored, skipping history load")
            return 0
        logger.info(f"[INGEST] Only {existing} records stored (< {threshold}), loading history...")
        return await self.backfill(days_back)

    async def backfill(self, days_back: int) -> int:
        """Load ``days_back`` days of daily history for every tracked coin."""
        coins = self.tracked.coins
        logger.info(f"[INGEST] Loading {days_back} days of history for {len(coins)} coins")

        stored = 0
        for n, coin_id in enumerate(coins, start=1):
            try:
                records = await self.client.fetch_historical_prices(coin_id, days_back)
                if records:
                    stored += self.store.insert_many(records)
                    logger.info(f"[INGEST] {coin_id}: saved {len(records)} historical records")
                else:
                    logger.warning(f"[INGEST] {coin_id}: no historical data")
            except TrackerError as e:
                logger.error(f"[INGEST] {coin_id}: history load failed: {e}")

            logger.info(f"[INGEST] Progress: {n}/{len(coins)} coins")
            if n < len(coins):
                await self._sleep(self.ingestion_config.backfill_pause_sec)

        logger.info(f"[INGEST] History load complete. {stored} records saved")
        return stored
