"""Pytest configuration and fixtures for the coin tracker tests."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Generator, List, Optional

import pytest

from market.models import PriceRecord
from storage.database import Database

FIXED_NOW = datetime(2024, 3, 6, 12, 0, tzinfo=timezone.utc)


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def db(tmp_path) -> Generator[Database, None, None]:
    """Connected SQLite database in a temporary directory."""
    database = Database(str(tmp_path / "tracker.db"))
    database.connect()
    yield database
    database.close()


@pytest.fixture
def make_record() -> Callable[..., PriceRecord]:
    """Factory for price records with sensible defaults."""
    counter = {"id": 0}

    def _make(
        coin_id: str = "bitcoin",
        price: float = 100.0,
        timestamp: datetime = FIXED_NOW,
        market_cap: Optional[float] = None,
        volume: Optional[float] = None,
        symbol: Optional[str] = None,
        id: Optional[int] = None,
    ) -> PriceRecord:
        counter["id"] += 1
        return PriceRecord(
            coin_id=coin_id,
            symbol=symbol or coin_id[:3],
            price=Decimal(str(price)),
            market_cap=Decimal(str(market_cap)) if market_cap is not None else None,
            volume=Decimal(str(volume)) if volume is not None else None,
            timestamp=timestamp,
            id=id if id is not None else counter["id"],
        )

    return _make


def market_entry(
    coin_id: str,
    price: Optional[float] = 100.0,
    market_cap: Optional[float] = 1000.0,
    volume: Optional[float] = 50.0,
    last_updated: Optional[str] = "2024-03-06T11:59:30.123Z",
    symbol: Optional[str] = None,
) -> dict:
    """One element of a /coins/markets response."""
    entry = {
        "id": coin_id,
        "symbol": symbol or coin_id[:3],
        "current_price": price,
        "market_cap": market_cap,
        "total_volume": volume,
    }
    if last_updated is not None:
        entry["last_updated"] = last_updated
    return entry
