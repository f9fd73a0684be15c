"""Command line interface for the crypto recommendation service."""

from __future__ import annotations

import argparse
import json
import sys
import time
from typing import Any, List, Optional

from crypto_recommendation.config.settings import Settings
from crypto_recommendation.errors import RecommendationError
from crypto_recommendation.logging import configure_logging
from crypto_recommendation.pipeline import build_store, run_ingestion
from crypto_recommendation.service import PriceService
from crypto_recommendation.storage import STORE_BACKENDS

EXIT_QUERY_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""

    parser = argparse.ArgumentParser(
        description="Rank cryptos by normalized price range from historical CSV files",
        allow_abbrev=False,
    )
    parser.add_argument("--csv-dir", help="Directory holding *.csv price files")
    parser.add_argument(
        "--store-backend",
        choices=STORE_BACKENDS,
        help="Where observations are kept while answering queries",
    )
    parser.add_argument("--sqlite-path", help="Database file for the sqlite backend")
    parser.add_argument(
        "--ingest-workers",
        type=int,
        help="Parallel workers used to read CSV files",
    )
    parser.add_argument("--log-level", help="Logging level (default from CR_LOG_LEVEL)")
    parser.add_argument(
        "--timings",
        action="store_true",
        help="Print ingestion and query timings to stderr",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("ranges", help="All cryptos sorted by normalized range, descending")
    stats = commands.add_parser("stats", help="Oldest, newest, min and max price for a crypto")
    stats.add_argument("symbol", help="Crypto symbol, e.g. BTC")
    highest = commands.add_parser(
        "highest", help="Crypto with the highest normalized range on a day"
    )
    highest.add_argument("date", help="Calendar day in yyyy-MM-dd format")
    serve = commands.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""

    return build_parser().parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Return :class:`Settings` with CLI flags layered over the environment."""

    overrides: dict[str, Any] = {}
    for flag in ("csv_dir", "store_backend", "sqlite_path", "ingest_workers", "log_level"):
        value = getattr(args, flag, None)
        if value is not None:
            overrides[flag] = value
    return Settings(**overrides)


def _run_query(args: argparse.Namespace, service: PriceService) -> Any:
    if args.command == "ranges":
        return [result.to_dict() for result in service.normalized_ranges_desc()]
    if args.command == "stats":
        return service.stats_for_symbol(args.symbol).to_dict()
    return service.highest_normalized_range_for_date(args.date).to_dict()


def _serve(settings: Settings, args: argparse.Namespace) -> int:
    import uvicorn

    from crypto_recommendation.app.api import create_app

    uvicorn.run(create_app(settings), host=args.host, port=args.port)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the CLI."""

    args = parse_args(argv)
    try:
        settings = settings_from_args(args)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_QUERY_ERROR
    configure_logging(settings.log_level)

    if args.command == "serve":
        return _serve(settings, args)

    try:
        start = time.perf_counter()
        store = build_store(settings)
        report = run_ingestion(settings, store)
        ingest_duration = time.perf_counter() - start
        print(
            f"Loaded {report.rows_loaded} rows from {report.files_processed} files "
            f"({report.rows_skipped} skipped, {report.files_failed} failed)",
            file=sys.stderr,
        )

        start = time.perf_counter()
        payload = _run_query(args, PriceService(store))
        query_duration = time.perf_counter() - start
    except RecommendationError as error:
        print(error.user_message, file=sys.stderr)
        return EXIT_QUERY_ERROR

    print(json.dumps(payload, indent=2))
    if args.timings:
        print(
            f"\nTimings: ingest={ingest_duration:.2f}s, query={query_duration:.2f}s",
            file=sys.stderr,
        )
    return 0


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
