"""Closed universe of supported crypto symbols."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from crypto_recommendation.errors import UnsupportedCryptoError


class SupportedCrypto(str, Enum):
    """Tickers accepted by ingestion and by the stats query."""

    BTC = "BTC"
    DOGE = "DOGE"
    ETH = "ETH"
    LTC = "LTC"
    XRP = "XRP"

    def __str__(self) -> str:
        return self.value


def _lookup(symbol: Any) -> Optional[SupportedCrypto]:
    if not isinstance(symbol, str):
        return None
    return SupportedCrypto.__members__.get(symbol.strip().upper())


def is_supported(symbol: Any) -> bool:
    """Return ``True`` when ``symbol`` names a supported crypto, ignoring case."""

    return _lookup(symbol) is not None


def resolve_symbol(symbol: Any) -> SupportedCrypto:
    """Return the canonical :class:`SupportedCrypto` for ``symbol``.

    Raises
    ------
    UnsupportedCryptoError
        If ``symbol`` is not part of the supported universe.
    """

    crypto = _lookup(symbol)
    if crypto is None:
        raise UnsupportedCryptoError(symbol)
    return crypto


def supported_symbols() -> list[str]:
    return [crypto.value for crypto in SupportedCrypto]


__all__ = ["SupportedCrypto", "is_supported", "resolve_symbol", "supported_symbols"]
