"""
Aggregation Engine — Turns the append-only price log into analytical tables.

Each analysis is a pure function of the full history and one analysis
timestamp. Analyses run independently: a failure in one is logged and
the rest still run. Ranking tables are overwritten per run, every other
table gets a new batch appended.
"""

from __future__ import annotations
import math
import statistics
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING
from market.errors import AnalysisError
from market.models import (
    AveragePriceRow,
    DailyPriceChangeRow,
    DominanceRow,
    LastPriceRow,
    MarketCapRankingRow,
    PriceRecord,
    VolumeChangeRow,
    VolumeRankingRow,
    WeeklyVolatilityRow,
    utc_now,
)
from core.windows import (
    day_of,
    group_by,
    lag_pairs,
    latest_per_key,
    percent_change,
    percent_of,
    recency_key,
    sum_optional,
    to_float,
    week_start_of,
)
import logging

if TYPE_CHECKING:
    from storage.database import Database

logger = logging.getLogger(__name__)

ComputeFunc = Callable[[Sequence[PriceRecord], datetime], List[Any]]


@dataclass
class Analysis:
    name: str
    compute: ComputeFunc
    table: str
    overwrite: bool = False


@dataclass
class AnalysisReport:
    """Outcome of one engine run."""
    analysis_timestamp: datetime
    record_count: int
    rows_written: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    duration_sec: float = 0.0

    @property
    def succeeded(self) -> List[str]:
        return list(self.rows_written)

    @property
    def failed(self) -> List[str]:
        return list(self.errors)


class AggregationEngine:
    """Computes and stores all derived datasets from the price history."""

    def __init__(self, store: "Database", clock: Callable[[], datetime] = utc_now):
        self.store = store
        self._clock = clock
        self.analyses: List[Analysis] = [
            Analysis("marketcap_weekly_ranking", self.weekly_market_cap_ranking,
                     MarketCapRankingRow.table, overwrite=True),
            Analysis("volume_weekly_ranking", self.weekly_volume_ranking,
                     VolumeRankingRow.table, overwrite=True),
            Analysis("daily_volume_change", self.daily_volume_change, VolumeChangeRow.table),
            Analysis("market_dominance", self.market_dominance, DominanceRow.table),
            Analysis("average_price", self.average_price_stats, AveragePriceRow.table),
            Analysis("last_price", self.last_price_snapshot, LastPriceRow.table),
            Analysis("daily_price_change", self.daily_price_change, DailyPriceChangeRow.table),
            Analysis("weekly_volatility", self.weekly_volatility, WeeklyVolatilityRow.table),
        ]

    def run(self) -> AnalysisReport:
        """
        Read the history once, then compute and write every analysis.
        Raises AnalysisError if the read fails or every analysis fails.
        """
        started = time.monotonic()
        logger.info("[ANALYSIS] Starting run")
        try:
            records = self.store.get_all_price_records()
        except Exception as e:
            raise AnalysisError(f"reading price history failed: {e}") from e

        report = AnalysisReport(analysis_timestamp=self._clock(), record_count=len(records))
        for analysis in self.analyses:
            try:
                rows = analysis.compute(records, report.analysis_timestamp)
                self.store.write_rows(analysis.table, rows, overwrite=analysis.overwrite)
                report.rows_written[analysis.name] = len(rows)
                self._log_preview(analysis.name, rows)
            except Exception as e:
                logger.error(f"[ANALYSIS] {analysis.name} failed: {e}", exc_info=True)
                report.errors[analysis.name] = str(e)

        report.duration_sec = time.monotonic() - started
        if not report.rows_written:
            raise AnalysisError(f"all analyses failed: {report.errors}")

        logger.info(
            f"[ANALYSIS] Done in {report.duration_sec:.2f}s over {report.record_count} records. "
            f"OK: {len(report.succeeded)}, failed: {report.failed or 'none'}"
        )
        return report

    # ==================== Rankings ====================

    def weekly_market_cap_ranking(
        self, records: Sequence[PriceRecord], analysis_ts: datetime
    ) -> List[MarketCapRankingRow]:
        return [
            MarketCapRankingRow(coin_id, symbol, week, value, rank, analysis_ts)
            for coin_id, symbol, week, value, rank in self._weekly_ranking(records, "market_cap")
        ]

    def weekly_volume_ranking(
        self, records: Sequence[PriceRecord], analysis_ts: datetime
    ) -> List[VolumeRankingRow]:
        return [
            VolumeRankingRow(coin_id, symbol, week, value, rank, analysis_ts)
            for coin_id, symbol, week, value, rank in self._weekly_ranking(records, "volume")
        ]

    def _weekly_ranking(
        self, records: Sequence[PriceRecord], measure: str
    ) -> List[Tuple[str, str, datetime, Optional[float], int]]:
        """
        Latest record per (coin, week), ranked descending within each week.
        Ranks are unique: equal values are ordered by coin id, nulls go last.
        """
        latest = latest_per_key(records, lambda r: (r.coin_id, week_start_of(r.timestamp)))
        weeks = group_by(latest.items(), lambda item: item[0][1])

        ranked = []
        for week in sorted(weeks):
            # One record per (coin, week) remains, so its value is the weekly sum.
            entries = [
                (coin_id, rec.symbol, to_float(getattr(rec, measure)))
                for (coin_id, _), rec in weeks[week]
            ]
            entries.sort(key=lambda e: (e[2] is None, -(e[2] or 0.0), e[0]))
            for rank, (coin_id, symbol, value) in enumerate(entries, start=1):
                ranked.append((coin_id, symbol, week, value, rank))
        return ranked

    # ==================== Snapshots ====================

    def market_dominance(
        self, records: Sequence[PriceRecord], analysis_ts: datetime
    ) -> List[DominanceRow]:
        """
        Share of total market cap per coin, using each coin's latest record.
        Coins may have been polled at different times; no same-instant join.
        """
        latest = latest_per_key(records, lambda r: r.coin_id)
        caps = {coin_id: to_float(rec.market_cap) for coin_id, rec in latest.items()}
        total = sum_optional(list(caps.values()))

        rows = []
        for coin_id in sorted(latest):
            pct = percent_of(caps[coin_id], total)
            if pct is None:
                continue
            rows.append(DominanceRow(
                coin_id=coin_id,
                symbol=latest[coin_id].symbol,
                market_cap=caps[coin_id],
                market_dominance_pct=pct,
                analysis_timestamp=analysis_ts,
            ))
        return rows

    def average_price_stats(
        self, records: Sequence[PriceRecord], analysis_ts: datetime
    ) -> List[AveragePriceRow]:
        rows = []
        for symbol, group in sorted(group_by(records, lambda r: r.symbol).items()):
            prices = [float(r.price) for r in group]
            rows.append(AveragePriceRow(
                symbol=symbol,
                avg_price=math.fsum(prices) / len(prices),
                min_price=min(prices),
                max_price=max(prices),
                record_count=len(prices),
                analysis_timestamp=analysis_ts,
            ))
        return rows

    def last_price_snapshot(
        self, records: Sequence[PriceRecord], analysis_ts: datetime
    ) -> List[LastPriceRow]:
        latest = latest_per_key(records, lambda r: (r.coin_id, r.symbol))
        return [
            LastPriceRow(
                coin_id=coin_id,
                symbol=symbol,
                price=float(rec.price),
                last_collected=rec.timestamp,
                analysis_timestamp=analysis_ts,
            )
            for (coin_id, symbol), rec in sorted(latest.items())
        ]

    # ==================== Day-over-Day ====================

    def daily_volume_change(
        self, records: Sequence[PriceRecord], analysis_ts: datetime
    ) -> List[VolumeChangeRow]:
        daily = group_by(records, lambda r: (r.coin_id, day_of(r.timestamp)))
        volumes = {k: sum_optional([to_float(r.volume) for r in g]) for k, g in daily.items()}

        rows = []
        for coin_id, day, prev_volume, volume in lag_pairs(volumes):
            pct = percent_change(prev_volume, volume)
            if pct is None:
                continue
            rows.append(VolumeChangeRow(
                coin_id=coin_id,
                symbol=_latest_symbol(daily[(coin_id, day)]),
                date=day,
                daily_volume=volume,
                prev_day_volume=prev_volume,
                volume_change_pct=pct,
                analysis_timestamp=analysis_ts,
            ))
        return rows

    def daily_price_change(
        self, records: Sequence[PriceRecord], analysis_ts: datetime
    ) -> List[DailyPriceChangeRow]:
        daily = group_by(records, lambda r: (r.coin_id, day_of(r.timestamp)))
        averages = {
            k: math.fsum(float(r.price) for r in g) / len(g) for k, g in daily.items()
        }

        rows = []
        for coin_id, day, start_price, end_price in lag_pairs(averages):
            pct = percent_change(start_price, end_price)
            if pct is None:
                continue
            rows.append(DailyPriceChangeRow(
                coin_id=coin_id,
                symbol=_latest_symbol(daily[(coin_id, day)]),
                date=day,
                start_price=start_price,
                end_price=end_price,
                price_change_pct=pct,
                analysis_timestamp=analysis_ts,
            ))
        return rows

    # ==================== Volatility ====================

    def weekly_volatility(
        self,
        records: Sequence[PriceRecord],
        analysis_ts: datetime,
        min_observations: int = 3,
    ) -> List[WeeklyVolatilityRow]:
        """Sample standard deviation of price per (coin, week)."""
        weekly = group_by(records, lambda r: (r.coin_id, week_start_of(r.timestamp)))

        rows = []
        for (coin_id, week), group in sorted(weekly.items()):
            if len(group) < min_observations:
                continue
            prices = [float(r.price) for r in group]
            mean = math.fsum(prices) / len(prices)
            stddev = statistics.stdev(prices)
            pct = percent_of(stddev, mean)
            if pct is None:
                continue
            rows.append(WeeklyVolatilityRow(
                coin_id=coin_id,
                symbol=_latest_symbol(group),
                week=week,
                min_price=min(prices),
                max_price=max(prices),
                avg_price=mean,
                price_stddev=stddev,
                price_range=max(prices) - min(prices),
                volatility_pct=pct,
                record_count=len(prices),
                analysis_timestamp=analysis_ts,
            ))
        return rows

    def _log_preview(self, name: str, rows: List[Any], limit: int = 5):
        logger.info(f"[ANALYSIS] {name}: {len(rows)} rows")
        for row in rows[:limit]:
            logger.debug(f"[ANALYSIS]   {row}")


def _latest_symbol(group: Sequence[PriceRecord]) -> str:
    return max(group, key=recency_key).symbol
