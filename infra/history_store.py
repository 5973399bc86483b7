"""
SQLite-backed durable store for sealed historical points.

Decimal values are stored as TEXT so they round-trip exactly; timestamps
are stored as integer UTC epoch seconds.
"""

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import List, Union

from core.history import HistoryStore
from core.pool_models import Granularity, HistoricalDataPoint

logger = logging.getLogger(__name__)


def _to_epoch(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp())


def _from_epoch(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


class SQLiteHistoryStore(HistoryStore):
    """
    Durable history store.

    One short-lived connection per operation, serialized by a lock, so the
    store can be shared by the refresh workers and the scheduler thread.
    Appending an existing (pool, granularity, timestamp) key replaces the
    stored row, so a bucket reopened after a restart is persisted whole.
    """

    def __init__(self, db_file: Union[str, Path] = "data/history.db"):
        self.db_file = Path(db_file)
        self._lock = threading.Lock()
        self.db_file.parent.mkdir(parents=True, exist_ok=True)
        self._init_sqlite()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_file), timeout=10)

    def _init_sqlite(self) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS historical_data (
                        pool_address TEXT NOT NULL,
                        granularity TEXT NOT NULL,
                        ts INTEGER NOT NULL,
                        price TEXT NOT NULL,
                        volume TEXT NOT NULL,
                        fees TEXT NOT NULL,
                        liquidity_x TEXT NOT NULL,
                        liquidity_y TEXT NOT NULL,
                        bin_id INTEGER NOT NULL,
                        PRIMARY KEY (pool_address, granularity, ts)
                    )
                """)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_history_ts ON historical_data(ts)")
                conn.commit()
            finally:
                conn.close()
        logger.info(f"History store ready at {self.db_file}")

    def append_point(self, pool_address: str, granularity: Granularity, point: HistoricalDataPoint) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO historical_data (
                        pool_address, granularity, ts, price, volume, fees,
                        liquidity_x, liquidity_y, bin_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        pool_address,
                        Granularity(granularity).value,
                        _to_epoch(point.timestamp),
                        str(point.price),
                        str(point.volume),
                        str(point.fees),
                        str(point.liquidity_x),
                        str(point.liquidity_y),
                        point.bin_id,
                    ),
                )
                conn.commit()
            finally:
                conn.close()

    def query_window(
        self, pool_address: str, granularity: Granularity, start: datetime, end: datetime
    ) -> List[HistoricalDataPoint]:
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute(
                    """
                    SELECT ts, price, volume, fees, liquidity_x, liquidity_y, bin_id
                    FROM historical_data
                    WHERE pool_address = ? AND granularity = ? AND ts >= ? AND ts <= ?
                    ORDER BY ts ASC
                    """,
                    (pool_address, Granularity(granularity).value, _to_epoch(start), _to_epoch(end)),
                ).fetchall()
            finally:
                conn.close()

        return [
            HistoricalDataPoint(
                timestamp=_from_epoch(ts),
                price=Decimal(price),
                volume=Decimal(volume),
                fees=Decimal(fees),
                liquidity_x=Decimal(liquidity_x),
                liquidity_y=Decimal(liquidity_y),
                bin_id=bin_id,
            )
            for ts, price, volume, fees, liquidity_x, liquidity_y, bin_id in rows
        ]

    def prune(self, before: datetime) -> int:
        with self._lock:
            conn = self._connect()
            try:
                cursor = conn.execute("DELETE FROM historical_data WHERE ts < ?", (_to_epoch(before),))
                conn.commit()
                return cursor.rowcount
            finally:
                conn.close()

    def count(self) -> int:
        with self._lock:
            conn = self._connect()
            try:
                return conn.execute("SELECT COUNT(*) FROM historical_data").fetchone()[0]
            finally:
                conn.close()
