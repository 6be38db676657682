"""
SQLite Storage Layer.
Append-only price history plus the derived analytics tables.
Raw monetary values stored as TEXT to preserve Decimal precision.
"""

from __future__ import annotations
import sqlite3
import threading
from dataclasses import fields
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence
from market.errors import PersistenceError
from market.models import PriceRecord
import logging

logger = logging.getLogger(__name__)


class Database:
    """SQLite database manager with typed accessors.

    One connection is shared by the event loop and the analysis worker
    thread; every statement runs under ``_lock``.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def connect(self):
        """Initialize database connection and create tables."""
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()
        logger.info(f"[DB] Connected to {self.db_path}")

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        assert self._conn is not None, "Database not connected"
        return self._conn

    def _create_tables(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS coin_price_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                coin_id TEXT NOT NULL,
                symbol TEXT NOT NULL,
                price TEXT NOT NULL,
                volume TEXT,
                market_cap TEXT,
                timestamp TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_coin_time
                ON coin_price_history(coin_id, timestamp);

            CREATE TABLE IF NOT EXISTS marketcap_weekly_ranking (
                coin_id TEXT, symbol TEXT, week_start TEXT,
                weekly_market_cap REAL, rank_position INTEGER,
                analysis_timestamp TEXT
            );

            CREATE TABLE IF NOT EXISTS volume_weekly_ranking (
                coin_id TEXT, symbol TEXT, week_start TEXT,
                weekly_volume REAL, rank_position INTEGER,
                analysis_timestamp TEXT
            );

            CREATE TABLE IF NOT EXISTS market_dominance_history (
                coin_id TEXT, symbol TEXT, market_cap REAL,
                market_dominance_pct REAL, analysis_timestamp TEXT
            );

            CREATE TABLE IF NOT EXISTS volume_analysis_history (
                coin_id TEXT, symbol TEXT, date TEXT, daily_volume REAL,
                prev_day_volume REAL, volume_change_pct REAL,
                analysis_timestamp TEXT
            );

            CREATE TABLE IF NOT EXISTS avg_price_history (
                symbol TEXT, avg_price REAL, min_price REAL, max_price REAL,
                record_count INTEGER, analysis_timestamp TEXT
            );

            CREATE TABLE IF NOT EXISTS last_price_history (
                coin_id TEXT, symbol TEXT, price REAL, last_collected TEXT,
                analysis_timestamp TEXT
            );

            CREATE TABLE IF NOT EXISTS daily_change_history (
                coin_id TEXT, symbol TEXT, date TEXT, start_price REAL,
                end_price REAL, price_change_pct REAL, analysis_timestamp TEXT
            );

            CREATE TABLE IF NOT EXISTS weekly_volatility_history (
                coin_id TEXT, symbol TEXT, week TEXT, min_price REAL,
                max_price REAL, avg_price REAL, price_stddev REAL,
                price_range REAL, volatility_pct REAL, record_count INTEGER,
                analysis_timestamp TEXT
            );
        """)
        self.conn.commit()

    # ==================== Price History ====================

    def insert_many(self, records: Sequence[PriceRecord]) -> int:
        """Append price records. Returns the number written."""
        if not records:
            return 0
        rows = [
            (
                r.coin_id, r.symbol, str(r.price),
                str(r.volume) if r.volume is not None else None,
                str(r.market_cap) if r.market_cap is not None else None,
                r.timestamp.isoformat(),
            )
            for r in records
        ]
        with self._lock:
            try:
                with self.conn:
                    self.conn.executemany(
                        """INSERT INTO coin_price_history
                           (coin_id, symbol, price, volume, market_cap, timestamp)
                           VALUES (?, ?, ?, ?, ?, ?)""",
                        rows,
                    )
            except sqlite3.Error as e:
                raise PersistenceError(f"insert of {len(rows)} price records failed: {e}") from e
        return len(rows)

    def count(self) -> int:
        with self._lock:
            try:
                row = self.conn.execute("SELECT COUNT(*) AS n FROM coin_price_history").fetchone()
            except sqlite3.Error as e:
                raise PersistenceError(f"counting price records failed: {e}") from e
        return row["n"]

    def find_latest_by_coin(self, coin_id: str) -> Optional[PriceRecord]:
        with self._lock:
            try:
                row = self.conn.execute(
                    """SELECT * FROM coin_price_history WHERE coin_id = ?
                       ORDER BY timestamp DESC, id ASC LIMIT 1""",
                    (coin_id,),
                ).fetchone()
            except sqlite3.Error as e:
                raise PersistenceError(f"latest record lookup for {coin_id} failed: {e}") from e
        return self._row_to_record(row) if row else None

    def distinct_coin_ids(self) -> List[str]:
        with self._lock:
            try:
                rows = self.conn.execute(
                    "SELECT DISTINCT coin_id FROM coin_price_history ORDER BY coin_id"
                ).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"listing coin ids failed: {e}") from e
        return [r["coin_id"] for r in rows]

    def get_all_price_records(self) -> List[PriceRecord]:
        """Full history, oldest row first."""
        with self._lock:
            try:
                rows = self.conn.execute(
                    "SELECT * FROM coin_price_history ORDER BY id"
                ).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"reading price history failed: {e}") from e
        return [self._row_to_record(r) for r in rows]

    # ==================== Derived Datasets ====================

    def write_rows(self, table: str, rows: Iterable[Any], overwrite: bool = False) -> int:
        """Write analytical rows. ``overwrite`` replaces the table contents."""
        rows = list(rows)
        with self._lock:
            try:
                with self.conn:
                    if overwrite:
                        self.conn.execute(f"DELETE FROM {table}")
                    if rows:
                        columns = [f.name for f in fields(rows[0])]
                        placeholders = ", ".join("?" for _ in columns)
                        self.conn.executemany(
                            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                            [
                                tuple(_to_sql(getattr(row, c)) for c in columns)
                                for row in rows
                            ],
                        )
            except sqlite3.Error as e:
                raise PersistenceError(f"writing {table} failed: {e}") from e
        return len(rows)

    def get_rows(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            try:
                rows = self.conn.execute(f"SELECT * FROM {table} ORDER BY rowid").fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"reading {table} failed: {e}") from e
        return [dict(r) for r in rows]

    # ==================== Row Converters ====================

    def _row_to_record(self, row) -> PriceRecord:
        return PriceRecord(
            id=row["id"],
            coin_id=row["coin_id"],
            symbol=row["symbol"],
            price=Decimal(row["price"]),
            volume=Decimal(row["volume"]) if row["volume"] is not None else None,
            market_cap=Decimal(row["market_cap"]) if row["market_cap"] is not None else None,
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )


def _to_sql(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value
