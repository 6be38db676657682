"""
Window helpers — period bucketing, latest-per-key reduction, lag and rounding.
Every pass is a sort plus one linear scan, so results are reproducible.
"""

from __future__ import annotations
import math
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple, TypeVar
from market.models import PriceRecord, as_utc

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_TWO_PLACES = Decimal("0.01")


def day_of(ts: datetime) -> date:
    """UTC calendar day."""
    return as_utc(ts).date()


def week_start_of(ts: datetime) -> datetime:
    """Monday 00:00 UTC of the week containing ``ts``."""
    ts = as_utc(ts)
    midnight = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight - timedelta(days=midnight.weekday())


def recency_key(record: PriceRecord) -> Tuple[datetime, bool, int]:
    """
    Sort key where the max is the latest record. Equal timestamps favour
    the lowest id; records not yet stored (no id) lose to stored ones.
    """
    if record.id is None:
        return record.timestamp, False, 0
    return record.timestamp, True, -record.id


def latest_per_key(
    records: Iterable[PriceRecord],
    key: Callable[[PriceRecord], K],
) -> Dict[K, PriceRecord]:
    """For each key select the record with the maximum timestamp."""
    latest: Dict[K, PriceRecord] = {}
    for record in records:
        k = key(record)
        current = latest.get(k)
        if current is None or recency_key(record) > recency_key(current):
            latest[k] = record
    return latest


def group_by(records: Iterable[V], key: Callable[[V], K]) -> Dict[K, List[V]]:
    groups: Dict[K, List[V]] = defaultdict(list)
    for record in records:
        groups[key(record)].append(record)
    return dict(groups)


def lag_pairs(
    series: Dict[Tuple[str, date], V],
) -> List[Tuple[str, date, V, V]]:
    """
    Lag-by-one over each coin's periods ordered ascending.
    Yields (coin_id, period, previous_value, value); a coin's first period
    has no predecessor and is dropped.
    """
    pairs = []
    prev_coin: Optional[str] = None
    prev_value = None
    for (coin_id, period) in sorted(series):
        value = series[(coin_id, period)]
        if coin_id == prev_coin:
            pairs.append((coin_id, period, prev_value, value))
        prev_coin, prev_value = coin_id, value
    return pairs


def round_half_up(value: Optional[float], places: int = 2) -> Optional[float]:
    if value is None or not math.isfinite(value):
        return None
    quantum = _TWO_PLACES if places == 2 else Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def percent_of(part: Optional[float], whole: Optional[float]) -> Optional[float]:
    """100 * part / whole, rounded; None on a null or zero denominator."""
    if part is None or not whole:
        return None
    return round_half_up(100.0 * part / whole)


def percent_change(previous: Optional[float], current: Optional[float]) -> Optional[float]:
    if current is None or not previous:
        return None
    return round_half_up(100.0 * (current - previous) / previous)


def sum_optional(values: Sequence[Optional[float]]) -> Optional[float]:
    """SQL-style SUM: nulls ignored, all-null gives null."""
    present = [v for v in values if v is not None]
    return math.fsum(present) if present else None


def to_float(value: Optional[Decimal]) -> Optional[float]:
    return None if value is None else float(value)
