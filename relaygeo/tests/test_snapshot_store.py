from __future__ import annotations

import datetime as dt
import logging

import pytest

duckdb = pytest.importorskip("duckdb")

from relaygeo.db.schema import EXPECTED_TABLES, init_schema
from relaygeo.db.snapshot_store import (
    CountryCountsConflictError,
    StoreUnavailableError,
    StoreWriteError,
    file_key_for,
    open_store,
)

pytestmark = pytest.mark.duckdb


def _tables(conn) -> set[str]:
    return {row[0] for row in conn.execute("PRAGMA show_tables").fetchall()}


def test_init_schema_is_idempotent(store):
    init_schema(store.conn)
    init_schema(store.conn)
    assert EXPECTED_TABLES.issubset(_tables(store.conn))


def test_init_schema_requires_sql_file(store, tmp_path):
    with pytest.raises(FileNotFoundError):
        init_schema(store.conn, tmp_path / "missing.sql")


def test_open_store_creates_schema_and_parent_dir(tmp_path):
    db_path = tmp_path / "nested" / "dir" / "relays.duckdb"
    with open_store(f"duckdb:///{db_path}") as store:
        assert EXPECTED_TABLES.issubset(_tables(store.conn))
        assert store.known_dates() == []
    assert db_path.exists()


def test_open_store_unreachable_raises_unavailable(tmp_path):
    with pytest.raises(StoreUnavailableError):
        with open_store(str(tmp_path)):
            pass


def test_record_relay_rows_is_idempotent_per_file_and_date(store, day, make_rows):
    rows = make_rows(["8.8.8.8", "5.9.0.1"])

    first = store.record_relay_rows(day, rows, source_file="relays-2024-01-01.csv", checksum="abc")
    second = store.record_relay_rows(day, rows, source_file="relays-2024-01-01.csv", checksum="abc")

    assert first.applied is True
    assert first.rows_written == 2
    assert first.file_key == file_key_for("relays-2024-01-01.csv", day)
    assert second.applied is False
    assert second.reason == "already ingested"
    assert store.relay_count(day) == 2
    assert store.known_dates() == [day]
    assert store.is_file_recorded("relays-2024-01-01.csv", day)


def test_same_file_name_on_another_date_is_a_new_key(store, make_rows):
    store.record_relay_rows(dt.date(2024, 1, 1), make_rows(["8.8.8.8"]), source_file="snap.csv")
    result = store.record_relay_rows(
        dt.date(2024, 1, 2), make_rows(["8.8.4.4"]), source_file="snap.csv"
    )

    assert result.applied is True
    assert store.relay_count() == 2
    assert store.known_dates() == [dt.date(2024, 1, 1), dt.date(2024, 1, 2)]


def test_checksum_mismatch_warns_and_does_not_reload(store, day, make_rows, caplog):
    store.record_relay_rows(day, make_rows(["8.8.8.8"]), source_file="a.csv", checksum="old")

    with caplog.at_level(logging.WARNING, logger="relaygeo.db.snapshot_store"):
        result = store.record_relay_rows(
            day, make_rows(["8.8.8.8", "8.8.4.4"]), source_file="a.csv", checksum="new"
        )

    assert result.applied is False
    assert store.relay_count(day) == 1
    assert result.reason == "checksum mismatch"
    assert any("checksum_mismatch" in record.getMessage() for record in caplog.records)


def test_relay_rows_are_normalised(store, day):
    rows = [
        {"fingerprint": " ABC ", "nickname": "", "ip": "8.8.8.8", "or_port": "9001", "flags": "Guard", "bandwidth": ""},
        {"fingerprint": "DEF", "nickname": "n2", "ip": "  ", "or_port": "443", "flags": None, "bandwidth": "10"},
    ]

    result = store.record_relay_rows(day, rows, source_file="x.csv")

    assert result.rows_written == 1
    stored = store.conn.execute(
        "SELECT fingerprint, nickname, ip, or_port, bandwidth, source_file FROM relays"
    ).fetchall()
    assert stored == [("ABC", None, "8.8.8.8", 9001, None, "x.csv")]


def test_empty_snapshot_still_registers_the_date(store, day):
    result = store.record_relay_rows(day, [], source_file="empty-2024-01-01.csv")

    assert result.applied is True
    assert result.rows_written == 0
    assert store.known_dates() == [day]
    assert store.list_dates_missing_country_data() == [day]


def test_missing_dates_are_listed_in_ascending_order(store, make_rows):
    for value in ("2024-01-03", "2024-01-01", "2024-01-02"):
        store.record_relay_rows(
            dt.date.fromisoformat(value), make_rows(["8.8.8.8"]), source_file=f"r-{value}.csv"
        )
    store.insert_country_counts(dt.date(2024, 1, 2), {"us": 1}, relays=1)

    assert store.list_dates_missing_country_data() == [
        dt.date(2024, 1, 1),
        dt.date(2024, 1, 3),
    ]


def test_dates_with_legacy_country_rows_are_not_missing(store, day, make_rows):
    store.record_relay_rows(day, make_rows(["8.8.8.8"]), source_file="a.csv")
    store.conn.execute(
        "INSERT INTO country_counts (date, cc, count) VALUES (?, 'us', 1)", [day]
    )

    assert store.list_dates_missing_country_data() == []
    assert store.country_run_for(day) is None


def test_list_relay_ips_streams_every_row(store, day, make_rows):
    ips = ["8.8.8.8", "8.8.4.4", "5.9.0.1", "81.2.69.142", "9.9.9.9"]
    store.record_relay_rows(day, make_rows(ips), source_file="a.csv")
    store.record_relay_rows(dt.date(2024, 1, 2), make_rows(["1.1.1.1"]), source_file="b.csv")

    streamed = list(store.list_relay_ips_for_date(day, page_size=2))

    assert sorted(streamed) == sorted(ips)


def test_small_batch_size_writes_all_rows(db_url, day, make_rows):
    ips = [f"8.8.{index}.1" for index in range(7)]
    with open_store(db_url, batch_size=2) as store:
        assert store.batch_size == 2
        result = store.record_relay_rows(day, make_rows(ips), source_file="a.csv")
        assert result.rows_written == 7
        assert store.relay_count(day) == 7


def test_insert_country_counts_writes_counts_and_marker(store, day, make_rows):
    store.record_relay_rows(day, make_rows(["8.8.8.8", "8.8.4.4", "5.9.0.1", "1.0.0.1"]), source_file="a.csv")

    written = store.insert_country_counts(day, {"US": 2, "de": 1}, relays=4)

    assert written == 2
    assert store.country_counts_for(day) == {"de": 1, "us": 2}
    assert store.country_run_for(day) == {"relays": 4, "geolocated": 3, "countries": 2}
    assert store.list_dates_missing_country_data() == []


def test_insert_country_counts_never_overwrites(store, day, make_rows):
    store.record_relay_rows(day, make_rows(["8.8.8.8"]), source_file="a.csv")
    store.insert_country_counts(day, {"us": 2}, relays=2)

    with pytest.raises(CountryCountsConflictError) as excinfo:
        store.insert_country_counts(day, {"de": 1}, relays=1)

    assert excinfo.value.date == day
    assert excinfo.value.existing_rows == 1
    assert excinfo.value.has_marker is True
    assert store.country_counts_for(day) == {"us": 2}


def test_insert_country_counts_rejects_empty_mapping(store, day):
    with pytest.raises(ValueError):
        store.insert_country_counts(day, {}, relays=0)


def test_country_write_is_atomic(store, day, make_rows, monkeypatch):
    store.record_relay_rows(day, make_rows(["8.8.8.8", "5.9.0.1"]), source_file="a.csv")

    def _fail(*_args, **_kwargs):
        raise duckdb.Error("simulated failure after country rows")

    monkeypatch.setattr(store, "_write_completion", _fail)

    with pytest.raises(StoreWriteError):
        store.insert_country_counts(day, {"us": 1, "de": 1}, relays=2)

    assert store.country_counts_for(day) == {}
    assert store.list_dates_missing_country_data() == [day]


def test_mark_date_processed_records_empty_result(store, day, make_rows):
    store.record_relay_rows(day, make_rows(["10.0.0.1", "192.168.0.1"]), source_file="a.csv")

    store.mark_date_processed(day, relays=2)

    assert store.list_dates_missing_country_data() == []
    assert store.country_counts_for(day) == {}
    assert store.country_run_for(day) == {"relays": 2, "geolocated": 0, "countries": 0}
    with pytest.raises(CountryCountsConflictError):
        store.mark_date_processed(day, relays=2)


def test_data_survives_reopen(db_url, day, make_rows):
    with open_store(db_url) as store:
        store.record_relay_rows(day, make_rows(["8.8.8.8"]), source_file="a.csv")
        store.insert_country_counts(day, {"us": 1}, relays=1)

    with open_store(db_url) as store:
        assert store.known_dates() == [day]
        assert store.country_counts_for(day) == {"us": 1}
        assert store.is_file_recorded("a.csv", day)
