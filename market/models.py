"""
Data models for the Coin Tracker.
Raw observations keep Decimal precision; derived analytics are floats.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import ClassVar, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class PriceRecord:
    """One price/volume/market-cap observation for a coin."""
    coin_id: str
    symbol: str
    price: Decimal
    volume: Optional[Decimal] = None
    market_cap: Optional[Decimal] = None
    timestamp: datetime = field(default_factory=utc_now)
    id: Optional[int] = None  # Assigned by the store

    def __post_init__(self):
        object.__setattr__(self, "timestamp", as_utc(self.timestamp))


# ==================== Analytical Rows ====================


@dataclass
class MarketCapRankingRow:
    table: ClassVar[str] = "marketcap_weekly_ranking"
    coin_id: str
    symbol: str
    week_start: datetime
    weekly_market_cap: Optional[float]
    rank_position: int
    analysis_timestamp: datetime


@dataclass
class VolumeRankingRow:
    table: ClassVar[str] = "volume_weekly_ranking"
    coin_id: str
    symbol: str
    week_start: datetime
    weekly_volume: Optional[float]
    rank_position: int
    analysis_timestamp: datetime


@dataclass
class DominanceRow:
    table: ClassVar[str] = "market_dominance_history"
    coin_id: str
    symbol: str
    market_cap: float
    market_dominance_pct: float
    analysis_timestamp: datetime


@dataclass
class VolumeChangeRow:
    table: ClassVar[str] = "volume_analysis_history"
    coin_id: str
    symbol: str
    date: date
    daily_volume: float
    prev_day_volume: float
    volume_change_pct: float
    analysis_timestamp: datetime


@dataclass
class AveragePriceRow:
    table: ClassVar[str] = "avg_price_history"
    symbol: str
    avg_price: float
    min_price: float
    max_price: float
    record_count: int
    analysis_timestamp: datetime


@dataclass
class LastPriceRow:
    table: ClassVar[str] = "last_price_history"
    coin_id: str
    symbol: str
    price: float
    last_collected: datetime
    analysis_timestamp: datetime


@dataclass
class DailyPriceChangeRow:
    table: ClassVar[str] = "daily_change_history"
    coin_id: str
    symbol: str
    date: date
    start_price: float
    end_price: float
    price_change_pct: float
    analysis_timestamp: datetime


@dataclass
class WeeklyVolatilityRow:
    """Price dispersion of one coin over one week (3+ observations)."""
    table: ClassVar[str] = "weekly_volatility_history"
    coin_id: str
    symbol: str
    week: datetime
    min_price: float
    max_price: float
    avg_price: float
    price_stddev: float
    price_range: float
    volatility_pct: float
    record_count: int
    analysis_timestamp: datetime
