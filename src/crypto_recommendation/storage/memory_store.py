"""In-memory PriceStore guarded by a lock."""

from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Callable, Iterable, Optional

from crypto_recommendation.models import PriceObservation, ensure_utc


class InMemoryPriceStore:
    """Append-only list of observations safe for concurrent writers and readers."""

    def __init__(self, observations: Iterable[PriceObservation] = ()) -> None:
        self._lock = Lock()
        self._observations: list[PriceObservation] = list(observations)
        self._version = 0

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def insert(self, observation: PriceObservation) -> None:
        with self._lock:
            self._observations.append(observation)
            self._version += 1

    def insert_many(self, observations: Iterable[PriceObservation]) -> int:
        batch = list(observations)
        if not batch:
            return 0
        with self._lock:
            self._observations.extend(batch)
            self._version += 1
        return len(batch)

    def all(self) -> list[PriceObservation]:
        return self._snapshot()

    def first_by_time(
        self,
        symbol: str,
        *,
        descending: bool = False,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Optional[PriceObservation]:
        lower = ensure_utc(start) if start is not None else None
        upper = ensure_utc(end) if end is not None else None
        candidates = [
            obs
            for obs in self._snapshot()
            if obs.symbol == symbol
            and (lower is None or obs.timestamp >= lower)
            and (upper is None or obs.timestamp < upper)
        ]
        return _first(candidates, key=lambda obs: obs.timestamp, descending=descending)

    def first_by_price(
        self, symbol: str, *, descending: bool = False
    ) -> Optional[PriceObservation]:
        candidates = [obs for obs in self._snapshot() if obs.symbol == symbol]
        return _first(candidates, key=lambda obs: obs.price, descending=descending)

    def scan_window(self, start: datetime, end: datetime) -> list[PriceObservation]:
        lower = ensure_utc(start)
        upper = ensure_utc(end)
        return [obs for obs in self._snapshot() if lower <= obs.timestamp < upper]

    def count(self) -> int:
        with self._lock:
            return len(self._observations)

    def clear(self) -> None:
        with self._lock:
            self._observations.clear()
            self._version += 1

    def _snapshot(self) -> list[PriceObservation]:
        with self._lock:
            return list(self._observations)


def _first(
    candidates: list[PriceObservation],
    *,
    key: Callable[[PriceObservation], object],
    descending: bool,
) -> Optional[PriceObservation]:
    if not candidates:
        return None
    # min/max keep the first of equal keys, matching an ORDER BY ... LIMIT 1 scan
    return max(candidates, key=key) if descending else min(candidates, key=key)  # type: ignore[arg-type]


__all__ = ["InMemoryPriceStore"]
