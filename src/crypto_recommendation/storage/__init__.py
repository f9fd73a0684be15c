"""Storage backends for price observations."""

from __future__ import annotations

from pathlib import Path

from crypto_recommendation.errors import ConfigurationError

from .base import PriceStore
from .memory_store import InMemoryPriceStore
from .sqlite_store import SqlitePriceStore

STORE_BACKENDS = ("memory", "sqlite")


def create_store(backend: str = "memory", *, sqlite_path: Path | str | None = None) -> PriceStore:
    """Return a fresh store for ``backend``."""

    normalized = backend.strip().lower()
    if normalized == "memory":
        return InMemoryPriceStore()
    if normalized == "sqlite":
        if sqlite_path is None:
            raise ConfigurationError(
                "SQLite store requires a path.", context={"backend": backend}
            )
        return SqlitePriceStore(sqlite_path)
    raise ConfigurationError(
        f"Unknown store backend '{backend}'",
        context={"backend": backend, "choices": list(STORE_BACKENDS)},
    )


__all__ = [
    "STORE_BACKENDS",
    "InMemoryPriceStore",
    "PriceStore",
    "SqlitePriceStore",
    "create_store",
]
