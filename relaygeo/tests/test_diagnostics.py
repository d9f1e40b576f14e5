from __future__ import annotations

import datetime as dt
import logging

import pytest

from relaygeo.diag.diagnostics import diag_enabled, duckdb_ex_classes, log_json, table_counts


def test_log_json_is_silent_without_flag(caplog):
    logger = logging.getLogger("relaygeo.tests.diag_off")
    with caplog.at_level(logging.DEBUG, logger=logger.name):
        log_json(logger, "payload", value=1)

    assert diag_enabled() is False
    assert caplog.records == []


def test_log_json_serialises_dates(monkeypatch, caplog):
    monkeypatch.setenv("RELAYGEO_DIAG", "1")
    logger = logging.getLogger("relaygeo.tests.diag_on")
    with caplog.at_level(logging.DEBUG, logger=logger.name):
        log_json(logger, "payload", date=dt.date(2024, 1, 1), count=3)

    messages = [record.getMessage() for record in caplog.records]
    assert messages == ['payload {"count": 3, "date": "2024-01-01"}']


def test_duckdb_ex_classes_falls_back_to_base():
    class _Error(Exception):
        pass

    class _FakeDuckDB:
        Error = _Error

    errors = duckdb_ex_classes(_FakeDuckDB)

    assert errors.base is _Error
    assert errors.constraint is _Error
    assert errors.connection is _Error


@pytest.mark.duckdb
def test_table_counts_reports_every_table(store, day, make_rows):
    store.record_relay_rows(day, make_rows(["8.8.8.8", "5.9.0.1"]), source_file="a.csv")
    store.insert_country_counts(day, {"us": 1, "de": 1}, relays=2)

    counts = table_counts(store.conn, day)

    assert counts["dates"] == 1
    assert counts["relays"] == 2
    assert counts["ingested_files"] == 1
    assert counts["country_counts"] == 2
    assert counts["country_runs"] == 1
    assert counts["relays@2024-01-01"] == 2
