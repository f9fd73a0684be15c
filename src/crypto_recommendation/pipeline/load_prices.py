"""Build the configured store and load CSV prices into it."""

from __future__ import annotations

from typing import Optional, Sequence

from crypto_recommendation.config.settings import Settings
from crypto_recommendation.ingest.csv_loader import CsvIngestor, CsvSource, IngestionReport
from crypto_recommendation.storage import PriceStore, create_store


def build_store(settings: Settings) -> PriceStore:
    """Return the store configured by ``settings``."""

    sqlite_path = (
        settings.resolved_sqlite_path() if settings.store_backend == "sqlite" else None
    )
    return create_store(settings.store_backend, sqlite_path=sqlite_path)


def run_ingestion(
    settings: Settings,
    store: PriceStore,
    sources: Optional[Sequence[CsvSource]] = None,
) -> IngestionReport:
    """Load ``sources`` (or the configured CSV directory) into ``store``."""

    ingestor = CsvIngestor(store, max_workers=settings.ingest_workers)
    if sources is not None:
        return ingestor.ingest(list(sources))
    return ingestor.ingest_directory(settings.resolved_csv_dir())
