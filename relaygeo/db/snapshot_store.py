# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""Date-scoped persistence for relay snapshots and derived country counts.

All writes go through :class:`SnapshotStore`, which wraps one explicit DuckDB
connection. Each logical write (one file's rows for one date, or one date's
country counts) runs inside a single transaction so readers either see all of
it or none of it.
"""

from __future__ import annotations

import datetime as dt
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping, Sequence

import pandas as pd

from relaygeo.common.errors import RelayGeoError
from relaygeo.config import get_batch_size
from relaygeo.db._duckdb_available import get_duckdb
from relaygeo.db.connection import connect
from relaygeo.db.schema import init_schema
from relaygeo.diag.diagnostics import (
    duckdb_ex_classes,
    get_logger as get_diag_logger,
    log_json,
)

LOGGER = logging.getLogger(__name__)
if not LOGGER.handlers:  # pragma: no cover - avoid "No handler" warnings in tests
    LOGGER.addHandler(logging.NullHandler())

DIAG_LOGGER = get_diag_logger(f"{__name__}.diag")

RELAY_COLUMNS: list[str] = [
    "fingerprint",
    "nickname",
    "ip",
    "or_port",
    "flags",
    "bandwidth",
]
DEFAULT_PAGE_SIZE = 5000

ALREADY_INGESTED = "already ingested"
CHECKSUM_MISMATCH = "checksum mismatch"

_MISSING_DATES_SQL = """
    SELECT d.date
    FROM dates AS d
    WHERE NOT EXISTS (SELECT 1 FROM country_runs AS r WHERE r.date = d.date)
      AND NOT EXISTS (SELECT 1 FROM country_counts AS c WHERE c.date = d.date)
    ORDER BY d.date
"""


class StoreError(RelayGeoError):
    """Base class for snapshot store failures."""


class StoreUnavailableError(StoreError):
    """The database could not be opened or the connection was lost."""


class StoreWriteError(StoreError):
    """A single write (one file/date) failed and was rolled back."""


class CountryCountsConflictError(StoreError):
    """Country data already exists for a date the caller believed was missing."""

    def __init__(self, day: dt.date, *, existing_rows: int = 0, has_marker: bool = False) -> None:
        self.date = day
        self.existing_rows = existing_rows
        self.has_marker = has_marker
        super().__init__(
            f"country data already recorded for {day.isoformat()} "
            f"(rows={existing_rows}, completion_marker={has_marker})"
        )


@dataclass
class RelayWriteResult:
    """Outcome of :meth:`SnapshotStore.record_relay_rows`."""

    date: dt.date
    file_key: str
    applied: bool
    rows_written: int
    reason: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "date": self.date.isoformat(),
            "file_key": self.file_key,
            "applied": bool(self.applied),
            "rows_written": int(self.rows_written),
            "reason": self.reason,
        }


def as_date(value: Any) -> dt.date:
    """Coerce ``value`` (date, datetime, Timestamp or ISO string) to a date."""

    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str):
        return dt.date.fromisoformat(value.strip()[:10])
    raise TypeError(f"Cannot interpret {value!r} as a date")


def file_key_for(file_name: str, day: dt.date) -> str:
    """Return the idempotency key recorded for ``file_name`` on ``day``."""

    return f"{file_name}:{as_date(day).isoformat()}"


def _chunks(rows: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    text = str(value).strip()
    return text or None


def _clean_int(value: Any) -> int | None:
    text = _clean_text(value)
    if text is None:
        return None
    try:
        return int(float(text))
    except (TypeError, ValueError):
        return None


def _relay_records(rows: pd.DataFrame | Iterable[Mapping[str, Any]]) -> list[tuple]:
    frame = rows if isinstance(rows, pd.DataFrame) else pd.DataFrame(list(rows))
    records: list[tuple] = []
    for row in frame.to_dict(orient="records"):
        ip = _clean_text(row.get("ip"))
        if ip is None:
            continue
        records.append(
            (
                _clean_text(row.get("fingerprint")),
                _clean_text(row.get("nickname")),
                ip,
                _clean_int(row.get("or_port")),
                _clean_text(row.get("flags")),
                _clean_int(row.get("bandwidth")),
            )
        )
    return records


class SnapshotStore:
    """Relay snapshot tables behind an explicit DuckDB connection handle."""

    def __init__(self, conn, *, batch_size: int | None = None) -> None:
        self._conn = conn
        self.batch_size = get_batch_size(batch_size)
        (
            self._db_error,
            self._constraint_error,
            self._txn_error,
            self._connection_error,
        ) = duckdb_ex_classes(get_duckdb())

    @property
    def conn(self):
        return self._conn

    # ------------------------------------------------------------------
    # transactions

    @contextmanager
    def _transaction(self, label: str) -> Iterator[None]:
        self._conn.execute("BEGIN TRANSACTION")
        LOGGER.debug("duckdb.txn.begin | label=%s", label)
        try:
            yield
            self._conn.execute("COMMIT")
        except BaseException:
            try:
                self._conn.execute("ROLLBACK")
            except Exception:
                LOGGER.debug("duckdb.txn.rollback_failed | label=%s", label, exc_info=True)
            else:
                LOGGER.debug("duckdb.txn.rolled_back | label=%s", label)
            raise
        LOGGER.debug("duckdb.txn.committed | label=%s", label)

    def _insert_values(
        self, table: str, columns: Sequence[str], rows: Sequence[tuple]
    ) -> int:
        """Insert ``rows`` as multi-row VALUES statements of ``batch_size`` rows."""

        if not rows:
            return 0
        cols_csv = ", ".join(columns)
        row_placeholder = "(" + ", ".join("?" for _ in columns) + ")"
        written = 0
        for chunk in _chunks(rows, self.batch_size):
            values_sql = ", ".join(row_placeholder for _ in chunk)
            params = [value for row in chunk for value in row]
            self._conn.execute(
                f"INSERT INTO {table} ({cols_csv}) VALUES {values_sql}", params
            )
            written += len(chunk)
            LOGGER.debug(
                "duckdb.insert.batch | table=%s rows=%s total=%s", table, len(chunk), written
            )
        return written

    # ------------------------------------------------------------------
    # reads

    def known_dates(self) -> list[dt.date]:
        rows = self._conn.execute("SELECT date FROM dates ORDER BY date").fetchall()
        return [as_date(row[0]) for row in rows]

    def list_dates_missing_country_data(self) -> list[dt.date]:
        """Return dates with relay snapshots but no country data, ascending."""

        rows = self._conn.execute(_MISSING_DATES_SQL).fetchall()
        return [as_date(row[0]) for row in rows]

    def list_relay_ips_for_date(
        self, day: dt.date, *, page_size: int | None = None
    ) -> Iterator[str]:
        """Stream relay IPs for ``day`` page by page.

        A separate cursor is used so the caller may issue other statements on
        the store while the stream is open.
        """

        size = int(page_size or DEFAULT_PAGE_SIZE)
        cursor = self._conn.cursor()
        try:
            cursor.execute("SELECT ip FROM relays WHERE date = ?", [as_date(day)])
            while True:
                page = cursor.fetchmany(size)
                if not page:
                    break
                for (ip,) in page:
                    yield ip
        finally:
            cursor.close()

    def relay_count(self, day: dt.date | None = None) -> int:
        if day is None:
            row = self._conn.execute("SELECT COUNT(*) FROM relays").fetchone()
        else:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM relays WHERE date = ?", [as_date(day)]
            ).fetchone()
        return int(row[0] or 0)

    def country_counts_for(self, day: dt.date) -> dict[str, int]:
        rows = self._conn.execute(
            "SELECT cc, count FROM country_counts WHERE date = ? ORDER BY cc",
            [as_date(day)],
        ).fetchall()
        return {str(cc): int(count) for cc, count in rows}

    def country_run_for(self, day: dt.date) -> dict[str, int] | None:
        row = self._conn.execute(
            "SELECT relays, geolocated, countries FROM country_runs WHERE date = ?",
            [as_date(day)],
        ).fetchone()
        if row is None:
            return None
        return {"relays": int(row[0]), "geolocated": int(row[1]), "countries": int(row[2])}

    def is_file_recorded(self, file_name: str, day: dt.date) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM ingested_files WHERE file_key = ?",
            [file_key_for(file_name, day)],
        ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # relay snapshot writes

    def record_relay_rows(
        self,
        day: dt.date,
        rows: pd.DataFrame | Iterable[Mapping[str, Any]],
        *,
        source_file: str,
        source_path: str | None = None,
        checksum: str | None = None,
    ) -> RelayWriteResult:
        """Append relay rows for ``day`` once per (file name, date).

        The date registration, the relay rows and the file ledger entry commit
        together. A key that is already recorded turns the call into a no-op.
        """

        day = as_date(day)
        key = file_key_for(source_file, day)
        records = _relay_records(rows)

        try:
            with self._transaction("relay_rows"):
                existing = self._conn.execute(
                    "SELECT checksum FROM ingested_files WHERE file_key = ?", [key]
                ).fetchone()
                if existing is not None:
                    recorded_checksum = existing[0]
                    reason = ALREADY_INGESTED
                    if checksum and recorded_checksum and recorded_checksum != checksum:
                        reason = CHECKSUM_MISMATCH
                        LOGGER.warning(
                            "relays.ingest.checksum_mismatch | file_key=%s recorded=%s current=%s | "
                            "file changed after ingestion; not reloading",
                            key,
                            recorded_checksum,
                            checksum,
                        )
                    result = RelayWriteResult(
                        date=day,
                        file_key=key,
                        applied=False,
                        rows_written=0,
                        reason=reason,
                    )
                else:
                    self._conn.execute(
                        "INSERT INTO dates (date) VALUES (?) ON CONFLICT DO NOTHING", [day]
                    )
                    written = self._insert_values(
                        "relays",
                        ["date", *RELAY_COLUMNS, "source_file"],
                        [(day, *record, source_file) for record in records],
                    )
                    self._conn.execute(
                        """
                        INSERT INTO ingested_files (file_key, file_name, source_path, date, checksum, rows)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        [key, source_file, source_path, day, checksum, written],
                    )
                    result = RelayWriteResult(
                        date=day, file_key=key, applied=True, rows_written=written
                    )
        except self._connection_error as exc:
            raise StoreUnavailableError(f"connection lost while writing {key}: {exc}") from exc
        except self._constraint_error as exc:
            if self.is_file_recorded(source_file, day):
                LOGGER.info(
                    "relays.ingest.race | file_key=%s recorded by a concurrent run", key
                )
                return RelayWriteResult(
                    date=day, file_key=key, applied=False, rows_written=0, reason=ALREADY_INGESTED
                )
            raise StoreWriteError(f"failed to write relay rows for {key}: {exc}") from exc
        except self._db_error as exc:
            raise StoreWriteError(f"failed to write relay rows for {key}: {exc}") from exc

        if result.applied:
            LOGGER.info(
                "relays.ingest.recorded | file_key=%s rows=%s", key, result.rows_written
            )
        else:
            LOGGER.info("relays.ingest.skipped | file_key=%s reason=%s", key, result.reason)
        log_json(DIAG_LOGGER, "relay_rows", **result.to_dict())
        return result

    # ------------------------------------------------------------------
    # country count writes

    def _assert_no_country_data(self, day: dt.date) -> None:
        existing_rows = self._conn.execute(
            "SELECT COUNT(*) FROM country_counts WHERE date = ?", [day]
        ).fetchone()[0]
        marker = self._conn.execute(
            "SELECT COUNT(*) FROM country_runs WHERE date = ?", [day]
        ).fetchone()[0]
        if existing_rows or marker:
            raise CountryCountsConflictError(
                day, existing_rows=int(existing_rows or 0), has_marker=bool(marker)
            )

    def _write_completion(
        self, day: dt.date, *, relays: int, geolocated: int, countries: int
    ) -> None:
        self._conn.execute(
            "INSERT INTO country_runs (date, relays, geolocated, countries) VALUES (?, ?, ?, ?)",
            [day, int(relays), int(geolocated), int(countries)],
        )

    def _write_country_data(
        self,
        day: dt.date,
        rows: Sequence[tuple[str, int]],
        *,
        relays: int,
        geolocated: int,
    ) -> None:
        try:
            with self._transaction("country_counts"):
                self._assert_no_country_data(day)
                self._insert_values(
                    "country_counts",
                    ["date", "cc", "count"],
                    [(day, cc, count) for cc, count in rows],
                )
                self._write_completion(
                    day, relays=relays, geolocated=geolocated, countries=len(rows)
                )
        except CountryCountsConflictError:
            raise
        except self._connection_error as exc:
            raise StoreUnavailableError(
                f"connection lost while writing country counts for {day.isoformat()}: {exc}"
            ) from exc
        except (self._constraint_error, self._txn_error) as exc:
            raise CountryCountsConflictError(day) from exc
        except self._db_error as exc:
            raise StoreWriteError(
                f"failed to write country counts for {day.isoformat()}: {exc}"
            ) from exc

    def insert_country_counts(
        self,
        day: dt.date,
        counts: Mapping[str, int],
        *,
        relays: int,
        geolocated: int | None = None,
    ) -> int:
        """Write every country count for ``day`` in one atomic batch.

        Raises :class:`CountryCountsConflictError` when rows or a completion
        marker already exist for the date; nothing is overwritten.
        """

        if not counts:
            raise ValueError(
                "insert_country_counts needs at least one country; use mark_date_processed"
            )
        day = as_date(day)
        rows = sorted((str(cc).strip().lower(), int(count)) for cc, count in counts.items())
        if geolocated is None:
            geolocated = sum(count for _, count in rows)
        self._write_country_data(day, rows, relays=relays, geolocated=geolocated)
        LOGGER.info(
            "country_counts.recorded | date=%s countries=%s relays=%s geolocated=%s",
            day.isoformat(),
            len(rows),
            relays,
            geolocated,
        )
        return len(rows)

    def mark_date_processed(self, day: dt.date, *, relays: int, geolocated: int = 0) -> None:
        """Record that ``day`` was processed and produced no country rows."""

        day = as_date(day)
        self._write_country_data(day, [], relays=relays, geolocated=geolocated)
        LOGGER.info(
            "country_counts.marked_empty | date=%s relays=%s", day.isoformat(), relays
        )


@contextmanager
def open_store(
    db_url: str | None,
    *,
    init: bool = True,
    batch_size: int | None = None,
    read_only: bool = False,
) -> Iterator[SnapshotStore]:
    """Open ``db_url`` for the duration of a run and always release it."""

    db_error, _, _, _ = duckdb_ex_classes(get_duckdb())
    try:
        conn = connect(db_url, read_only=read_only)
    except (db_error, OSError) as exc:
        raise StoreUnavailableError(f"unable to open DuckDB store {db_url!r}: {exc}") from exc
    try:
        if init:
            init_schema(conn)
        yield SnapshotStore(conn, batch_size=batch_size)
    finally:
        conn.close()
        LOGGER.debug("duckdb.close | url=%s", db_url)


__all__ = [
    "ALREADY_INGESTED",
    "CHECKSUM_MISMATCH",
    "CountryCountsConflictError",
    "RELAY_COLUMNS",
    "RelayWriteResult",
    "SnapshotStore",
    "StoreError",
    "StoreUnavailableError",
    "StoreWriteError",
    "as_date",
    "file_key_for",
    "open_store",
]
