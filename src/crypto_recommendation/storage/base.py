"""PriceStore protocol shared by the storage backends."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol

from crypto_recommendation.models import PriceObservation


class PriceStore(Protocol):
    """Holds price observations and answers the engine's query shapes."""

    @property
    def version(self) -> int:
        """Counter bumped by every mutation; used to key derived caches."""

    def insert(self, observation: PriceObservation) -> None:
        """Append ``observation`` without deduplication or validation."""

    def insert_many(self, observations: Iterable[PriceObservation]) -> int:
        """Append every observation and return how many were stored."""

    def all(self) -> list[PriceObservation]:
        """Return a snapshot of every stored observation."""

    def first_by_time(
        self,
        symbol: str,
        *,
        descending: bool = False,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Optional[PriceObservation]:
        """Return the earliest (or latest) observation for ``symbol``.

        Parameters
        ----------
        symbol:
            Canonical symbol to filter on.
        descending:
            Return the latest observation instead of the earliest.
        start, end:
            Optional ``[start, end)`` bound on the timestamp.
        """

    def first_by_price(
        self, symbol: str, *, descending: bool = False
    ) -> Optional[PriceObservation]:
        """Return the cheapest (or most expensive) observation for ``symbol``."""

    def scan_window(self, start: datetime, end: datetime) -> list[PriceObservation]:
        """Return observations with ``start <= timestamp < end``."""

    def count(self) -> int:
        """Return the number of stored observations."""

    def clear(self) -> None:
        """Remove every observation (test and reset helper)."""
