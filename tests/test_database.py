"""Tests for the SQLite storage layer."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from market.errors import PersistenceError
from market.models import DominanceRow, MarketCapRankingRow, VolumeChangeRow
from storage.database import Database

from conftest import FIXED_NOW


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestPriceHistory:

    def test_insert_assigns_ids_and_preserves_decimals(self, db, make_record):
        written = db.insert_many([
            make_record("bitcoin", price=64123.123456789, market_cap=1.25e12, volume=None),
            make_record("ethereum", price=3100.5),
        ])

        assert written == 2
        assert db.count() == 2
        records = db.get_all_price_records()
        assert [r.id for r in records] == [1, 2]
        assert records[0].price == Decimal("64123.123456789")
        assert records[0].market_cap == Decimal("1250000000000.0")
        assert records[0].volume is None
        assert records[0].timestamp == FIXED_NOW

    def test_insert_empty_is_noop(self, db):
        assert db.insert_many([]) == 0
        assert db.count() == 0

    def test_find_latest_by_coin(self, db, make_record):
        ts = utc(2024, 3, 2)
        db.insert_many([
            make_record("bitcoin", price=1, timestamp=utc(2024, 3, 1)),
            make_record("bitcoin", price=2, timestamp=ts),
            make_record("bitcoin", price=3, timestamp=ts),
            make_record("ethereum", price=9, timestamp=utc(2024, 3, 5)),
        ])

        latest = db.find_latest_by_coin("bitcoin")

        assert latest.price == Decimal("2")
        assert latest.timestamp == ts
        assert db.find_latest_by_coin("dogecoin") is None

    def test_distinct_coin_ids_sorted(self, db, make_record):
        db.insert_many([make_record("solana"), make_record("bitcoin"), make_record("solana")])

        assert db.distinct_coin_ids() == ["bitcoin", "solana"]

    def test_history_survives_reconnect(self, tmp_path, make_record):
        path = str(tmp_path / "persist.db")
        first = Database(path)
        first.connect()
        first.insert_many([make_record("bitcoin")])
        first.close()

        second = Database(path)
        second.connect()
        try:
            assert second.count() == 1
        finally:
            second.close()

    def test_failed_insert_raises_persistence_error(self, db, make_record):
        db.conn.execute("DROP TABLE coin_price_history")

        with pytest.raises(PersistenceError):
            db.insert_many([make_record("bitcoin")])

    def test_failed_read_raises_persistence_error(self, db):
        db.conn.execute("DROP TABLE coin_price_history")

        with pytest.raises(PersistenceError):
            db.get_all_price_records()

    @pytest.mark.parametrize("query", [
        lambda db: db.count(),
        lambda db: db.find_latest_by_coin("bitcoin"),
        lambda db: db.distinct_coin_ids(),
    ])
    def test_failed_lookups_raise_persistence_error(self, db, query):
        db.conn.execute("DROP TABLE coin_price_history")

        with pytest.raises(PersistenceError):
            query(db)


class TestDerivedTables:

    def _dominance(self, coin_id: str, pct: float) -> DominanceRow:
        return DominanceRow(coin_id, coin_id[:3], 1000.0, pct, FIXED_NOW)

    def test_append_accumulates_batches(self, db):
        db.write_rows(DominanceRow.table, [self._dominance("bitcoin", 60.0)])
        db.write_rows(DominanceRow.table, [self._dominance("bitcoin", 55.0)])

        rows = db.get_rows(DominanceRow.table)
        assert [r["market_dominance_pct"] for r in rows] == [60.0, 55.0]
        assert rows[0]["analysis_timestamp"] == FIXED_NOW.isoformat()

    def test_overwrite_replaces_contents(self, db):
        week = utc(2024, 3, 4)
        first = [
            MarketCapRankingRow("bitcoin", "btc", week, 2.0, 1, FIXED_NOW),
            MarketCapRankingRow("ethereum", "eth", week, 1.0, 2, FIXED_NOW),
        ]
        db.write_rows(MarketCapRankingRow.table, first, overwrite=True)
        db.write_rows(
            MarketCapRankingRow.table,
            [MarketCapRankingRow("solana", "sol", week, 5.0, 1, FIXED_NOW)],
            overwrite=True,
        )

        rows = db.get_rows(MarketCapRankingRow.table)
        assert [(r["coin_id"], r["rank_position"]) for r in rows] == [("solana", 1)]
        assert rows[0]["week_start"] == week.isoformat()

    def test_overwrite_with_no_rows_clears_table(self, db):
        week = utc(2024, 3, 4)
        db.write_rows(
            MarketCapRankingRow.table,
            [MarketCapRankingRow("bitcoin", "btc", week, 2.0, 1, FIXED_NOW)],
            overwrite=True,
        )

        assert db.write_rows(MarketCapRankingRow.table, [], overwrite=True) == 0
        assert db.get_rows(MarketCapRankingRow.table) == []

    def test_failed_table_read_raises_persistence_error(self, db):
        db.conn.execute(f"DROP TABLE {DominanceRow.table}")

        with pytest.raises(PersistenceError):
            db.get_rows(DominanceRow.table)

    def test_dates_stored_as_iso_text(self, db):
        row = VolumeChangeRow("bitcoin", "btc", date(2024, 3, 2), 300.0, 200.0, 50.0, FIXED_NOW)

        db.write_rows(VolumeChangeRow.table, [row])

        [stored] = db.get_rows(VolumeChangeRow.table)
        assert stored["date"] == "2024-03-02"
        assert stored["prev_day_volume"] == 200.0
