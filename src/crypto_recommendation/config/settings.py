"""Service configuration.

Values can be overridden via environment variables prefixed with ``CR_``,
for example ``CR_CSV_DIR=/data/prices`` or ``CR_RATE_LIMIT=120/minute``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from crypto_recommendation.errors import ConfigurationError
from crypto_recommendation.storage import STORE_BACKENDS

from .paths import expand_env_path

DEFAULT_PUBLIC_PATH_PREFIXES = (
    "/cryptos",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/healthz",
    "/readyz",
)


class Settings(BaseSettings):
    """Configuration for ingestion, storage and the HTTP layer."""

    model_config = SettingsConfigDict(env_prefix="CR_")

    csv_dir: str = "data/csv"
    store_backend: str = "memory"
    sqlite_path: str = "cache/prices.sqlite3"
    ingest_workers: int = 1
    ingest_on_startup: bool = True
    rate_limit: str = "60/minute"
    api_key: Optional[str] = None
    public_path_prefixes: tuple[str, ...] = DEFAULT_PUBLIC_PATH_PREFIXES
    cache_ttl: int = 60
    log_level: str = "INFO"

    @field_validator("store_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in STORE_BACKENDS:
            raise ValueError(f"store_backend must be one of {', '.join(STORE_BACKENDS)}")
        return normalized

    @field_validator("ingest_workers", "cache_ttl")
    @classmethod
    def _check_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Value must not be negative.")
        return value

    def resolved_csv_dir(self) -> Path:
        return self._resolve(self.csv_dir, field="csv_dir")

    def resolved_sqlite_path(self) -> Path:
        return self._resolve(self.sqlite_path, field="sqlite_path")

    def _resolve(self, raw: str, *, field: str) -> Path:
        try:
            return expand_env_path(raw, field=field)
        except ValueError as exc:
            raise ConfigurationError(str(exc), context={"field": field}) from exc

    def is_public_path(self, path: str) -> bool:
        return any(
            path == prefix or path.startswith(prefix.rstrip("/") + "/")
            for prefix in self.public_path_prefixes
        )


__all__ = ["DEFAULT_PUBLIC_PATH_PREFIXES", "Settings"]
