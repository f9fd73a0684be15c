"""Ingestion helpers for historical price files."""

from .csv_loader import (
    CsvIngestor,
    CsvSource,
    IngestionDiagnostic,
    IngestionReport,
    discover_csv_sources,
    load_csv_directory,
    load_csv_sources,
    parse_price,
    parse_timestamp,
)

__all__ = [
    "CsvIngestor",
    "CsvSource",
    "IngestionDiagnostic",
    "IngestionReport",
    "discover_csv_sources",
    "load_csv_directory",
    "load_csv_sources",
    "parse_price",
    "parse_timestamp",
]
