"""SQLite-backed PriceStore pushing ordering and windowing into SQL."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Iterable, Optional

from crypto_recommendation.errors import StorageError, wrap_error
from crypto_recommendation.models import PriceObservation, ensure_utc

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _to_millis(value: datetime) -> int:
    return (ensure_utc(value) - _EPOCH) // timedelta(milliseconds=1)


def _from_millis(value: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=value)


def _row_to_observation(row: sqlite3.Row) -> PriceObservation:
    return PriceObservation(
        timestamp=_from_millis(row["ts"]),
        symbol=row["symbol"],
        price=row["price"],
    )


class SqlitePriceStore:
    """Persist observations in SQLite.

    Every operation opens its own connection so the store can be shared across
    threads. ``version`` is tracked in-process.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        if self._path.exists() and self._path.is_dir():
            raise StorageError(
                "Price store path must be a file.", context={"path": str(self._path)}
            )
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._version_lock = Lock()
        self._version = 0
        self._initialize()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def version(self) -> int:
        with self._version_lock:
            return self._version

    def insert(self, observation: PriceObservation) -> None:
        self.insert_many([observation])

    def insert_many(self, observations: Iterable[PriceObservation]) -> int:
        rows = [
            (_to_millis(obs.timestamp), obs.symbol, float(obs.price))
            for obs in observations
        ]
        if not rows:
            return 0
        self._execute_write(
            "INSERT INTO prices (ts, symbol, price) VALUES (?, ?, ?)", rows
        )
        return len(rows)

    def all(self) -> list[PriceObservation]:
        return self._select("SELECT ts, symbol, price FROM prices ORDER BY id")

    def first_by_time(
        self,
        symbol: str,
        *,
        descending: bool = False,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Optional[PriceObservation]:
        clauses = ["symbol = ?"]
        params: list[Any] = [symbol]
        if start is not None:
            clauses.append("ts >= ?")
            params.append(_to_millis(start))
        if end is not None:
            clauses.append("ts < ?")
            params.append(_to_millis(end))
        direction = "DESC" if descending else "ASC"
        rows = self._select(
            f"""
            SELECT ts, symbol, price FROM prices
            WHERE {' AND '.join(clauses)}
            ORDER BY ts {direction}, id ASC
            LIMIT 1
            """,
            params,
        )
        return rows[0] if rows else None

    def first_by_price(
        self, symbol: str, *, descending: bool = False
    ) -> Optional[PriceObservation]:
        direction = "DESC" if descending else "ASC"
        rows = self._select(
            f"""
            SELECT ts, symbol, price FROM prices
            WHERE symbol = ?
            ORDER BY price {direction}, id ASC
            LIMIT 1
            """,
            (symbol,),
        )
        return rows[0] if rows else None

    def scan_window(self, start: datetime, end: datetime) -> list[PriceObservation]:
        return self._select(
            """
            SELECT ts, symbol, price FROM prices
            WHERE ts >= ? AND ts < ?
            ORDER BY id
            """,
            (_to_millis(start), _to_millis(end)),
        )

    def count(self) -> int:
        try:
            conn = self._connect()
            try:
                (total,) = conn.execute("SELECT COUNT(*) FROM prices").fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise wrap_error(
                exc,
                StorageError,
                message="Failed to count stored prices",
                context={"path": str(self._path)},
            ) from exc
        return int(total)

    def clear(self) -> None:
        self._execute_write("DELETE FROM prices", None)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        return conn

    def _select(self, sql: str, params: Iterable[Any] = ()) -> list[PriceObservation]:
        try:
            conn = self._connect()
            try:
                rows = conn.execute(sql, tuple(params)).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise wrap_error(
                exc,
                StorageError,
                message="Price store query failed",
                context={"path": str(self._path)},
            ) from exc
        return [_row_to_observation(row) for row in rows]

    def _execute_write(self, sql: str, rows: Optional[list[tuple[Any, ...]]]) -> None:
        try:
            conn = self._connect()
            try:
                with conn:
                    if rows is None:
                        conn.execute(sql)
                    else:
                        conn.executemany(sql, rows)
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise wrap_error(
                exc,
                StorageError,
                message="Price store write failed",
                context={"path": str(self._path)},
            ) from exc
        with self._version_lock:
            self._version += 1

    def _initialize(self) -> None:
        statements: Iterable[str] = (
            """
            CREATE TABLE IF NOT EXISTS prices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ts INTEGER NOT NULL,
                symbol TEXT NOT NULL,
                price REAL NOT NULL
            )
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_prices_symbol_ts
            ON prices (symbol, ts)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_prices_symbol_price
            ON prices (symbol, price)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_prices_ts
            ON prices (ts)
            """,
        )
        try:
            conn = self._connect()
            try:
                with conn:
                    for statement in statements:
                        conn.execute(statement)
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise wrap_error(
                exc,
                StorageError,
                message="Failed to initialise price store",
                context={"path": str(self._path)},
            ) from exc


__all__ = ["SqlitePriceStore"]
