"""Query service answering the three recommendation questions."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from threading import Lock
from typing import Any, Optional

from crypto_recommendation.compute.normalized_range import (
    highest_normalized_range,
    observations_frame,
    rank_normalized_ranges,
    to_results,
)
from crypto_recommendation.errors import (
    NoDataForDateError,
    NoPriceHistoryError,
    NoRankableDataError,
)
from crypto_recommendation.logging import get_logger
from crypto_recommendation.models import NormalizedRange, SymbolStats
from crypto_recommendation.security.validation import sanitize_date
from crypto_recommendation.storage import PriceStore
from crypto_recommendation.universe import resolve_symbol

logger = get_logger(__name__, component="price_service")


def day_window(day: date) -> tuple[datetime, datetime]:
    """Return the ``[start, end)`` UTC bounds of calendar ``day``."""

    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class PriceService:
    """Read-only queries over a :class:`PriceStore`.

    The all-time ranking is cached against ``store.version`` and recomputed
    after any insert or clear.
    """

    def __init__(self, store: PriceStore) -> None:
        self._store = store
        self._cache_lock = Lock()
        self._ranking_cache: Optional[tuple[int, tuple[NormalizedRange, ...]]] = None

    @property
    def store(self) -> PriceStore:
        return self._store

    def normalized_ranges_desc(self) -> list[NormalizedRange]:
        """Return every symbol's all-time normalized range, largest first."""

        version = self._store.version
        with self._cache_lock:
            cached = self._ranking_cache
        if cached is not None and cached[0] == version:
            return list(cached[1])

        frame = observations_frame(self._store.all())
        results = tuple(to_results(rank_normalized_ranges(frame)))
        # Only publish if no insert happened while computing.
        if self._store.version == version:
            with self._cache_lock:
                self._ranking_cache = (version, results)
        return list(results)

    def stats_for_symbol(self, symbol: Any) -> SymbolStats:
        """Return oldest, newest, min and max price for ``symbol``.

        Raises
        ------
        UnsupportedCryptoError
            If ``symbol`` is not supported.
        NoPriceHistoryError
            If the symbol has no stored observations.
        """

        crypto = resolve_symbol(symbol)
        canonical = crypto.value
        oldest = self._store.first_by_time(canonical)
        newest = self._store.first_by_time(canonical, descending=True)
        lowest = self._store.first_by_price(canonical)
        highest = self._store.first_by_price(canonical, descending=True)
        if oldest is None or newest is None or lowest is None or highest is None:
            raise NoPriceHistoryError(canonical)
        return SymbolStats(
            symbol=canonical,
            oldest=oldest.price,
            newest=newest.price,
            min=lowest.price,
            max=highest.price,
        )

    def highest_normalized_range_for_date(self, raw_date: Any) -> NormalizedRange:
        """Return the symbol with the largest normalized range on ``raw_date``.

        Raises
        ------
        InvalidDateFormatError
            If ``raw_date`` is not a ``yyyy-MM-dd`` date.
        NoDataForDateError
            If no observation falls inside the day.
        NoRankableDataError
            If observations exist but every symbol had a zero minimum price.
        """

        day = sanitize_date(raw_date)
        start, end = day_window(day)
        observations = self._store.scan_window(start, end)
        if not observations:
            raise NoDataForDateError(day.isoformat())

        best = highest_normalized_range(observations_frame(observations))
        if best is None:
            raise NoRankableDataError(day.isoformat())
        logger.debug(
            {
                "event": "highest_for_date",
                "date": day.isoformat(),
                "symbol": best.symbol,
                "observations": len(observations),
            }
        )
        return best


__all__ = ["PriceService", "day_window"]
