"""Load historical price CSV files into a :class:`PriceStore`.

Each file carries a header row followed by ``timestamp,symbol,price`` rows
where ``timestamp`` is milliseconds since the Unix epoch (UTC).  Bad rows and
unreadable files are skipped with a diagnostic; ingestion never aborts.  Valid
rows are written with ``insert_many`` in batches of up to ``INSERT_BATCH_SIZE``.
"""

from __future__ import annotations

import io
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from typing import IO, Any, Callable, Iterable, Optional, Sequence

from crypto_recommendation.errors import IngestionError, wrap_error
from crypto_recommendation.logging import get_logger, log_exception
from crypto_recommendation.models import PriceObservation
from crypto_recommendation.storage import PriceStore
from crypto_recommendation.universe import is_supported, resolve_symbol

CSV_PATTERN = "*.csv"
EXPECTED_FIELDS = 3
INSERT_BATCH_SIZE = 500

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

logger = get_logger(__name__, component="csv_ingest")


@dataclass(frozen=True)
class CsvSource:
    """A named byte stream; ``opener`` is called once per ingestion."""

    name: str
    opener: Callable[[], IO[bytes]]

    @classmethod
    def from_path(cls, path: Path) -> "CsvSource":
        return cls(name=path.name, opener=lambda: path.open("rb"))

    @classmethod
    def from_bytes(cls, name: str, payload: bytes) -> "CsvSource":
        return cls(name=name, opener=lambda: io.BytesIO(payload))


@dataclass(frozen=True)
class IngestionDiagnostic:
    source: Optional[str]
    line_number: Optional[int]
    kind: str
    message: str
    raw: Optional[str] = None


@dataclass
class IngestionReport:
    files_discovered: int = 0
    files_processed: int = 0
    files_failed: int = 0
    rows_loaded: int = 0
    rows_skipped: int = 0
    diagnostics: list[IngestionDiagnostic] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class _RowError(ValueError):
    """A single row could not be turned into an observation."""


def discover_csv_sources(directory: Path | str) -> list[CsvSource]:
    """Return a source for every ``*.csv`` file in ``directory``, sorted by name."""

    root = Path(directory)
    if not root.is_dir():
        return []
    return [CsvSource.from_path(path) for path in sorted(root.glob(CSV_PATTERN)) if path.is_file()]


def parse_timestamp(raw: str) -> datetime:
    """Return epoch milliseconds ``raw`` as an aware UTC datetime."""

    try:
        millis = int(raw.strip())
    except ValueError:
        raise _RowError(f"Invalid timestamp '{raw}'") from None
    try:
        return _EPOCH + timedelta(milliseconds=millis)
    except OverflowError:
        raise _RowError(f"Timestamp out of range '{raw}'") from None


def parse_price(raw: str) -> float:
    """Return ``raw`` as a finite, non-negative price."""

    try:
        price = float(raw.strip())
    except ValueError:
        raise _RowError(f"Invalid price '{raw}'") from None
    if not math.isfinite(price):
        raise _RowError(f"Price must be finite, got '{raw}'")
    if price < 0:
        raise _RowError(f"Price must not be negative, got '{raw}'")
    return price


class CsvIngestor:
    """Sequential (optionally thread-pooled) CSV loader."""

    def __init__(self, store: PriceStore, *, max_workers: int = 1) -> None:
        self._store = store
        self._max_workers = max(1, int(max_workers))
        self._report_lock = Lock()

    def ingest_directory(self, directory: Path | str) -> IngestionReport:
        return self.ingest(discover_csv_sources(directory), origin=str(directory))

    def ingest(
        self, sources: Sequence[CsvSource], *, origin: Optional[str] = None
    ) -> IngestionReport:
        report = IngestionReport(files_discovered=len(sources))
        if not sources:
            self._diagnose(
                report,
                IngestionDiagnostic(
                    source=origin,
                    line_number=None,
                    kind="no_sources",
                    message="No CSV files found",
                ),
            )
            logger.warning(
                {"event": "no_csv_sources", "message": "No CSV files found"},
                context={"origin": origin},
            )
            return report

        if self._max_workers == 1 or len(sources) == 1:
            for source in sources:
                self._ingest_source(source, report)
        else:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                futures = [pool.submit(self._ingest_source, source, report) for source in sources]
                for future in as_completed(futures):
                    future.result()

        logger.info(
            {
                "event": "ingestion_completed",
                "files": report.files_processed,
                "failed_files": report.files_failed,
                "rows_loaded": report.rows_loaded,
                "rows_skipped": report.rows_skipped,
            }
        )
        return report

    def _ingest_source(self, source: CsvSource, report: IngestionReport) -> None:
        pending: list[PriceObservation] = []
        try:
            with source.opener() as handle:
                # Undecodable bytes become U+FFFD so only the affected row fails to parse.
                text = io.TextIOWrapper(handle, encoding="utf-8", errors="replace", newline="")
                for line_number, line in enumerate(text, start=1):
                    if line_number == 1:
                        continue
                    observation = self._parse_line(source.name, line_number, line, report)
                    if observation is None:
                        continue
                    pending.append(observation)
                    if len(pending) >= INSERT_BATCH_SIZE:
                        self._flush(pending, report)
                self._flush(pending, report)
        except Exception as exc:
            error = wrap_error(
                exc,
                IngestionError,
                message=f"Failed to process file '{source.name}'",
                context={"file": source.name},
            )
            log_exception(logger, error, event="file_failed")
            with self._report_lock:
                report.files_failed += 1
            self._diagnose(
                report,
                IngestionDiagnostic(
                    source=source.name,
                    line_number=None,
                    kind="file_error",
                    message=str(exc),
                ),
            )
            return
        with self._report_lock:
            report.files_processed += 1

    def _parse_line(
        self, source_name: str, line_number: int, line: str, report: IngestionReport
    ) -> Optional[PriceObservation]:
        raw = line.rstrip("\r\n")
        if not raw.strip():
            return None

        parts = raw.split(",")
        if len(parts) != EXPECTED_FIELDS:
            self._skip(
                report,
                IngestionDiagnostic(
                    source=source_name,
                    line_number=line_number,
                    kind="malformed_row",
                    message=f"Expected {EXPECTED_FIELDS} fields, got {len(parts)}",
                    raw=raw,
                ),
            )
            logger.warning(
                {"event": "malformed_row", "line": line_number, "file": source_name, "raw": raw}
            )
            return None

        raw_timestamp, raw_symbol, raw_price = parts
        if not is_supported(raw_symbol):
            self._skip(
                report,
                IngestionDiagnostic(
                    source=source_name,
                    line_number=line_number,
                    kind="unsupported_symbol",
                    message=f"Crypto symbol {raw_symbol} is not supported",
                    raw=raw,
                ),
            )
            logger.warning(
                {
                    "event": "unsupported_symbol",
                    "symbol": raw_symbol,
                    "line": line_number,
                    "file": source_name,
                }
            )
            return None

        try:
            observation = PriceObservation(
                timestamp=parse_timestamp(raw_timestamp),
                symbol=resolve_symbol(raw_symbol).value,
                price=parse_price(raw_price),
            )
        except _RowError as exc:
            error = IngestionError(
                f"Failed to parse line {line_number} in file '{source_name}'",
                context={"file": source_name, "line": line_number, "raw": raw},
                cause=exc,
            )
            log_exception(logger, error, event="row_parse_failed")
            self._skip(
                report,
                IngestionDiagnostic(
                    source=source_name,
                    line_number=line_number,
                    kind="parse_error",
                    message=str(exc),
                    raw=raw,
                ),
            )
            return None

        return observation

    def _flush(self, pending: list[PriceObservation], report: IngestionReport) -> None:
        if not pending:
            return
        loaded = self._store.insert_many(pending)
        pending.clear()
        with self._report_lock:
            report.rows_loaded += loaded

    def _skip(self, report: IngestionReport, diagnostic: IngestionDiagnostic) -> None:
        with self._report_lock:
            report.rows_skipped += 1
            report.diagnostics.append(diagnostic)

    def _diagnose(self, report: IngestionReport, diagnostic: IngestionDiagnostic) -> None:
        with self._report_lock:
            report.diagnostics.append(diagnostic)


def load_csv_directory(
    store: PriceStore, directory: Path | str, *, max_workers: int = 1
) -> IngestionReport:
    """Ingest every CSV file in ``directory`` into ``store``."""

    return CsvIngestor(store, max_workers=max_workers).ingest_directory(directory)


def load_csv_sources(
    store: PriceStore, sources: Iterable[CsvSource], *, max_workers: int = 1
) -> IngestionReport:
    return CsvIngestor(store, max_workers=max_workers).ingest(list(sources))


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
