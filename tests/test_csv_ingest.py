import json
import logging
from datetime import datetime, timezone

import pytest

from crypto_recommendation.ingest import (
    CsvIngestor,
    CsvSource,
    discover_csv_sources,
    load_csv_directory,
    load_csv_sources,
    parse_price,
    parse_timestamp,
)
from crypto_recommendation.ingest import csv_loader
from crypto_recommendation.storage import InMemoryPriceStore, SqlitePriceStore

HEADER = "timestamp,symbol,price\n"
MIDNIGHT_MS = 1640995200000  # 2022-01-01T00:00:00Z
HOUR_MS = 3600 * 1000


def _csv(*rows: str) -> bytes:
    return (HEADER + "".join(f"{row}\n" for row in rows)).encode("utf-8")


def _events(caplog) -> list[str]:
    events = []
    for record in caplog.records:
        try:
            payload = json.loads(record.getMessage())
        except ValueError:
            continue
        events.append(payload.get("event"))
    return events


def _broken_opener():
    raise OSError("disk unplugged")


def test_loads_rows_as_utc_observations():
    store = InMemoryPriceStore()
    source = CsvSource.from_bytes(
        "BTC_values.csv",
        _csv(f"{MIDNIGHT_MS},BTC,46813.21", f"{MIDNIGHT_MS + HOUR_MS},BTC,46979.61"),
    )

    report = load_csv_sources(store, [source])

    assert report.rows_loaded == 2
    assert report.rows_skipped == 0
    assert report.files_processed == 1
    observations = store.all()
    assert [obs.timestamp for obs in observations] == [
        datetime(2022, 1, 1, 0, tzinfo=timezone.utc),
        datetime(2022, 1, 1, 1, tzinfo=timezone.utc),
    ]
    assert [obs.price for obs in observations] == [46813.21, 46979.61]


def test_header_row_is_never_parsed_as_data():
    store = InMemoryPriceStore()
    source = CsvSource.from_bytes("no_header.csv", f"{MIDNIGHT_MS},ETH,3715.32\n".encode())

    report = load_csv_sources(store, [source])

    assert report.rows_loaded == 0
    assert store.count() == 0


def test_unsupported_symbol_is_skipped_with_warning(caplog):
    caplog.set_level(logging.WARNING)
    store = InMemoryPriceStore()
    source = CsvSource.from_bytes(
        "mixed.csv",
        _csv(f"{MIDNIGHT_MS},BTC,1.0", f"{MIDNIGHT_MS},ADA,1.2", f"{MIDNIGHT_MS},ETH,2.0"),
    )

    report = load_csv_sources(store, [source])

    assert report.rows_loaded == 2
    assert report.rows_skipped == 1
    [diagnostic] = report.diagnostics
    assert diagnostic.kind == "unsupported_symbol"
    assert diagnostic.line_number == 3
    assert "ADA" in diagnostic.message
    assert "unsupported_symbol" in _events(caplog)


def test_bad_price_skips_row_and_continues(caplog):
    caplog.set_level(logging.WARNING)
    store = InMemoryPriceStore()
    source = CsvSource.from_bytes(
        "bad_price.csv",
        _csv(f"{MIDNIGHT_MS},BTC,abc", f"{MIDNIGHT_MS + HOUR_MS},BTC,47000.0"),
    )

    report = load_csv_sources(store, [source])

    assert report.rows_loaded == 1
    assert report.rows_skipped == 1
    assert report.diagnostics[0].kind == "parse_error"
    assert report.diagnostics[0].raw == f"{MIDNIGHT_MS},BTC,abc"
    assert store.first_by_time("BTC").price == 47000.0
    assert "row_parse_failed" in _events(caplog)


@pytest.mark.parametrize(
    "row",
    [
        "not-a-number,BTC,1.0",
        f"{MIDNIGHT_MS},BTC,-5",
        f"{MIDNIGHT_MS},BTC,nan",
        f"{MIDNIGHT_MS},BTC,inf",
        "99999999999999999999,BTC,1.0",
    ],
)
def test_unparseable_values_are_rejected(row):
    store = InMemoryPriceStore()

    report = load_csv_sources(store, [CsvSource.from_bytes("row.csv", _csv(row))])

    assert report.rows_loaded == 0
    assert [d.kind for d in report.diagnostics] == ["parse_error"]


@pytest.mark.parametrize("row", [f"{MIDNIGHT_MS},BTC", f"{MIDNIGHT_MS},BTC,1.0,extra"])
def test_wrong_field_count_is_malformed(row):
    store = InMemoryPriceStore()

    report = load_csv_sources(store, [CsvSource.from_bytes("row.csv", _csv(row))])

    assert report.rows_skipped == 1
    assert report.diagnostics[0].kind == "malformed_row"


def test_blank_lines_are_ignored():
    store = InMemoryPriceStore()
    payload = _csv(f"{MIDNIGHT_MS},XRP,0.8298", "", f"{MIDNIGHT_MS},XRP,0.8301")

    report = load_csv_sources(store, [CsvSource.from_bytes("blank.csv", payload)])

    assert report.rows_loaded == 2
    assert report.rows_skipped == 0


def test_crlf_line_endings():
    store = InMemoryPriceStore()
    payload = f"timestamp,symbol,price\r\n{MIDNIGHT_MS},LTC,148.1\r\n".encode()

    load_csv_sources(store, [CsvSource.from_bytes("crlf.csv", payload)])

    assert store.first_by_price("LTC").price == 148.1


def test_symbols_are_stored_canonically():
    store = InMemoryPriceStore()

    load_csv_sources(store, [CsvSource.from_bytes("lower.csv", _csv(f"{MIDNIGHT_MS},doge,0.17"))])

    assert store.first_by_time("DOGE").symbol == "DOGE"
    assert store.first_by_time("doge") is None


def test_failing_file_does_not_stop_others(caplog):
    caplog.set_level(logging.ERROR)
    store = InMemoryPriceStore()
    sources = [
        CsvSource(name="broken.csv", opener=_broken_opener),
        CsvSource.from_bytes("ok.csv", _csv(f"{MIDNIGHT_MS},ETH,3715.32")),
    ]

    report = load_csv_sources(store, sources)

    assert report.files_discovered == 2
    assert report.files_failed == 1
    assert report.files_processed == 1
    assert report.rows_loaded == 1
    [diagnostic] = report.diagnostics
    assert diagnostic.kind == "file_error"
    assert diagnostic.source == "broken.csv"
    assert "file_failed" in _events(caplog)


def test_no_sources_is_reported(caplog, tmp_path):
    caplog.set_level(logging.WARNING)
    store = InMemoryPriceStore()

    report = load_csv_directory(store, tmp_path / "missing")

    assert report.files_discovered == 0
    assert report.rows_loaded == 0
    assert [d.kind for d in report.diagnostics] == ["no_sources"]
    assert "no_csv_sources" in _events(caplog)


def test_discover_only_returns_csv_files_sorted(tmp_path):
    (tmp_path / "XRP_values.csv").write_bytes(_csv())
    (tmp_path / "BTC_values.csv").write_bytes(_csv())
    (tmp_path / "notes.txt").write_text("ignore me")
    (tmp_path / "nested.csv").mkdir()

    sources = discover_csv_sources(tmp_path)

    assert [source.name for source in sources] == ["BTC_values.csv", "XRP_values.csv"]


def test_directory_ingestion(tmp_path):
    (tmp_path / "BTC_values.csv").write_bytes(_csv(f"{MIDNIGHT_MS},BTC,46813.21"))
    (tmp_path / "ETH_values.csv").write_bytes(_csv(f"{MIDNIGHT_MS},ETH,3715.32"))
    store = InMemoryPriceStore()

    report = load_csv_directory(store, tmp_path)

    assert report.files_processed == 2
    assert store.count() == 2


def test_parallel_workers_load_every_file():
    symbols = ["BTC", "DOGE", "ETH", "LTC", "XRP"]
    sources = [
        CsvSource.from_bytes(
            f"{symbol}_values.csv",
            _csv(*(f"{MIDNIGHT_MS + i * HOUR_MS},{symbol},{i + 1}" for i in range(50))),
        )
        for symbol in symbols
    ]
    store = InMemoryPriceStore()

    report = CsvIngestor(store, max_workers=4).ingest(sources)

    assert report.files_processed == 5
    assert report.rows_loaded == 250
    assert store.count() == 250
    for symbol in symbols:
        assert store.first_by_price(symbol, descending=True).price == 50.0


def test_report_serialises():
    store = InMemoryPriceStore()
    report = load_csv_sources(
        store, [CsvSource.from_bytes("x.csv", _csv(f"{MIDNIGHT_MS},ABC,1"))]
    )

    payload = report.to_dict()

    assert payload["rows_skipped"] == 1
    assert payload["diagnostics"][0]["kind"] == "unsupported_symbol"
    json.dumps(payload)


def test_parse_helpers():
    assert parse_timestamp(" 0 ") == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert parse_price("0") == 0.0
    with pytest.raises(ValueError):
        parse_price("")
    with pytest.raises(ValueError):
        parse_timestamp("1.5")


def test_undecodable_bytes_only_fail_their_row():
    store = InMemoryPriceStore()
    payload = (
        HEADER.encode()
        + f"{MIDNIGHT_MS},BTC,100\n".encode()
        + f"{MIDNIGHT_MS + HOUR_MS},BTC,1".encode()
        + b"\xff"
        + b"0\n"
        + f"{MIDNIGHT_MS + 2 * HOUR_MS},BTC,200\n".encode()
        + f"{MIDNIGHT_MS},ETH,50\n".encode()
    )

    report = load_csv_sources(store, [CsvSource.from_bytes("latin.csv", payload)])

    assert store.count() == 3
    assert report.files_processed == 1
    assert report.files_failed == 0
    assert report.rows_loaded == 3
    [diagnostic] = report.diagnostics
    assert diagnostic.kind == "parse_error"
    assert diagnostic.line_number == 3


def test_undecodable_symbol_is_reported_as_unsupported():
    store = InMemoryPriceStore()
    payload = _csv(f"{MIDNIGHT_MS},ETH,1") + f"{MIDNIGHT_MS},BT".encode() + b"\xc3(" + b",5\n"

    report = load_csv_sources(store, [CsvSource.from_bytes("odd.csv", payload)])

    assert report.rows_loaded == 1
    assert [d.kind for d in report.diagnostics] == ["unsupported_symbol"]


def test_rows_are_inserted_in_batches(monkeypatch):
    monkeypatch.setattr(csv_loader, "INSERT_BATCH_SIZE", 2)
    store = InMemoryPriceStore()
    rows = [f"{MIDNIGHT_MS + i * HOUR_MS},LTC,{i + 1}" for i in range(5)]

    report = load_csv_sources(store, [CsvSource.from_bytes("LTC_values.csv", _csv(*rows))])

    assert report.rows_loaded == 5
    assert store.count() == 5
    # One version bump per insert_many call: 2 + 2 + 1 rows.
    assert store.version == 3


def test_single_file_is_one_batch_for_sqlite(tmp_path):
    store = SqlitePriceStore(tmp_path / "prices.sqlite3")
    rows = [f"{MIDNIGHT_MS + i * HOUR_MS},XRP,0.8{i}" for i in range(10)]

    report = load_csv_sources(store, [CsvSource.from_bytes("XRP_values.csv", _csv(*rows))])

    assert report.rows_loaded == 10
    assert store.count() == 10
    assert store.version == 1
