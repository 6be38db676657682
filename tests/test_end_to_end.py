"""Collect current prices into SQLite, then run every analysis over them."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from config import IngestionConfig, ScheduleConfig, UpstreamConfig
from core.aggregation import AggregationEngine
from core.tracked_coins import CoinListFile, TrackedCoins
from market.coingecko_rest import CoinGeckoRestClient
from scheduling.analysis import AnalysisScheduler
from scheduling.auto_update import IngestionScheduler

from conftest import FIXED_NOW, market_entry


@pytest.mark.asyncio
async def test_collect_then_analyze(db, tmp_path, fake_sleep):
    client = CoinGeckoRestClient(
        UpstreamConfig(), batch_size=5, batch_pause_sec=30.0,
        sleep=fake_sleep, clock=lambda: FIXED_NOW,
    )
    client._fetch_json = AsyncMock(return_value=[
        market_entry("bitcoin", price=64000.0, market_cap=1.2e12, volume=3.0e10, symbol="btc"),
        market_entry("ethereum", price=3200.0, market_cap=4.0e11, volume=1.5e10, symbol="eth"),
    ])
    tracked = TrackedCoins(CoinListFile(str(tmp_path / "coins.json")), ["bitcoin", "ethereum"])
    tracked.load()
    engine = AggregationEngine(db, clock=lambda: FIXED_NOW)
    scheduler = IngestionScheduler(
        client, db, tracked, AnalysisScheduler(engine), IngestionConfig(), ScheduleConfig(),
        sleep=fake_sleep,
    )

    stored = await scheduler.collect_current_prices()

    assert stored == 2
    assert client._fetch_json.await_count == 1
    assert fake_sleep.calls == []
    assert db.distinct_coin_ids() == ["bitcoin", "ethereum"]

    report = await scheduler.analysis.run_once()

    assert report.failed == []
    dominance = db.get_rows("market_dominance_history")
    assert {r["coin_id"]: r["market_dominance_pct"] for r in dominance} == {
        "bitcoin": 75.0,
        "ethereum": 25.0,
    }
    assert abs(sum(r["market_dominance_pct"] for r in dominance) - 100.0) <= 0.05
    ranking = db.get_rows("marketcap_weekly_ranking")
    assert [(r["coin_id"], r["rank_position"]) for r in ranking] == [("bitcoin", 1), ("ethereum", 2)]
    last = db.get_rows("last_price_history")
    assert [(r["symbol"], r["price"]) for r in last] == [("btc", 64000.0), ("eth", 3200.0)]
