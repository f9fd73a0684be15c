"""Value objects shared by storage, ingestion and the query service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class PriceObservation:
    timestamp: datetime
    symbol: str
    price: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))


@dataclass(frozen=True)
class NormalizedRange:
    """``(max - min) / min`` for one symbol over an observation window."""

    symbol: str
    normalized_range: float

    def to_dict(self) -> dict[str, Any]:
        return {"symbol": self.symbol, "normalizedRange": self.normalized_range}


@dataclass(frozen=True)
class SymbolStats:
    symbol: str
    oldest: float
    newest: float
    min: float
    max: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "oldest": self.oldest,
            "newest": self.newest,
            "min": self.min,
            "max": self.max,
        }


__all__ = ["NormalizedRange", "PriceObservation", "SymbolStats", "ensure_utc"]
