"""
Coin Tracker — Main Orchestrator.
Wires the components together and exposes the administrative calls used by
the admin API (or any other front end): start/stop, coin list, backfill.
"""

from __future__ import annotations
import asyncio
import os
import sys
import signal
from typing import Dict, List, Optional
import logging

from dotenv import load_dotenv

from admin_api import AdminAPI
from config import TrackerConfig
from market.coingecko_rest import CoinGeckoRestClient
from market.models import PriceRecord
from core.aggregation import AggregationEngine, AnalysisReport
from core.tracked_coins import CoinListFile, TrackedCoins
from scheduling.analysis import AnalysisScheduler
from scheduling.auto_update import IngestionScheduler
from storage.database import Database

logger = logging.getLogger(__name__)

MAX_HISTORY_DAYS = 365


def configure_logging(level: str = "INFO", log_dir: str = "data"):
    os.makedirs(log_dir, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(os.path.join(log_dir, "tracker.log")),
        ],
    )


class Tracker:
    """Main orchestrator and administrative surface."""

    def __init__(self, config: TrackerConfig):
        self.config = config

        self.db = Database(config.storage.db_path)
        self.client = CoinGeckoRestClient(
            config.upstream,
            batch_size=config.ingestion.batch_size,
            batch_pause_sec=config.ingestion.batch_pause_sec,
        )
        self.tracked = TrackedCoins(
            CoinListFile(config.storage.coins_file),
            default_coins=config.ingestion.default_coins,
        )

        self.engine = AggregationEngine(self.db)
        self.analysis = AnalysisScheduler(
            self.engine,
            interval_sec=config.schedule.analysis_interval_sec,
            shutdown_grace_sec=config.schedule.shutdown_grace_sec,
        )
        self.scheduler = IngestionScheduler(
            client=self.client,
            store=self.db,
            tracked=self.tracked,
            analysis=self.analysis,
            ingestion_config=config.ingestion,
            schedule_config=config.schedule,
        )

    async def start(self):
        """Startup sequence: storage, coin list, history bootstrap, timers."""
        logger.info("=" * 60)
        logger.info("   COIN TRACKER — STARTING")
        logger.info("=" * 60)

        os.makedirs(os.path.dirname(self.config.storage.db_path) or "data", exist_ok=True)
        self.db.connect()
        self.tracked.load()

        await self.scheduler.initialize_historical_data_if_needed(self.config.ingestion.history_days)

        if self.config.schedule.auto_start:
            await self.scheduler.start()
        logger.info("[BOOT] Ready.")

    async def stop(self):
        """Graceful shutdown."""
        logger.info("[SHUTDOWN] Stopping tracker...")
        if self.scheduler.enabled:
            await self.scheduler.stop()
        await self.client.close()
        self.db.close()
        logger.info("[SHUTDOWN] Complete.")

    # ==================== Administrative Calls ====================

    async def start_auto_update(self):
        await self.scheduler.start()

    async def stop_auto_update(self):
        await self.scheduler.stop()

    def auto_update_status(self) -> str:
        return self.scheduler.status

    def add_coin(self, coin_id: str) -> bool:
        return self.scheduler.add_tracked_coin(coin_id)

    def remove_coin(self, coin_id: str) -> bool:
        return self.scheduler.remove_tracked_coin(coin_id)

    def tracked_coins(self) -> List[str]:
        return self.scheduler.tracked_coins()

    def last_prices(self) -> Dict[str, Optional[PriceRecord]]:
        """Latest stored record for every coin that has history."""
        return {
            coin_id: self.db.find_latest_by_coin(coin_id)
            for coin_id in self.db.distinct_coin_ids()
        }

    async def collect_now(self) -> int:
        return await self.scheduler.collect_current_prices()

    async def run_analysis(self) -> AnalysisReport:
        return await self.analysis.run_once()

    async def load_history(self, days: Optional[int] = None) -> int:
        """
        None: automatic, only if the store is sparse.
        Otherwise a forced backfill of ``days`` days (1-365).
        """
        if days is None:
            return await self.scheduler.initialize_historical_data_if_needed(
                self.config.ingestion.history_days
            )
        if not 1 <= days <= MAX_HISTORY_DAYS:
            raise ValueError(f"days must be between 1 and {MAX_HISTORY_DAYS}, got {days}")
        return await self.scheduler.backfill(days)


async def main():
    """Entry point."""
    load_dotenv()
    config = TrackerConfig.from_env()
    configure_logging(config.log_level)

    tracker = Tracker(config)
    stop_event = asyncio.Event()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        def handle_signal(sig):
            logger.info(f"Received signal {sig}. Initiating shutdown...")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    api = None
    try:
        await tracker.start()
        if config.api.enabled:
            api = AdminAPI(tracker, host=config.api.host, port=config.api.port)
            await api.start()
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received in main loop.")
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if api is not None:
            await api.stop()
        await tracker.stop()


if __name__ == "__main__":
    asyncio.run(main())
