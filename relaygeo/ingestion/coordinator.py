# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""Sequential loader for directories of dated relay snapshot files."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Sequence

from relaygeo.db.snapshot_store import (
    ALREADY_INGESTED,
    CHECKSUM_MISMATCH,
    SnapshotStore,
    StoreWriteError,
)
from relaygeo.diag.diagnostics import get_logger as get_diag_logger, log_json
from relaygeo.ingestion._exit_policy import compute_exit_code, run_status
from relaygeo.ingestion.snapshot_files import (
    SnapshotFile,
    SnapshotFileError,
    read_snapshot_file,
)

LOGGER = logging.getLogger(__name__)
if not LOGGER.handlers:  # pragma: no cover - library default noise guard
    LOGGER.addHandler(logging.NullHandler())

DIAG_LOGGER = get_diag_logger(f"{__name__}.diag")

PENDING = "pending"
IN_PROGRESS = "in_progress"
DONE = "done"


@dataclass
class FileOutcome:
    """Result of loading one snapshot file."""

    path: Path
    status: str
    reason: str | None = None
    dates: list[dt.date] = field(default_factory=list)
    rows_written: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "path": str(self.path),
            "status": self.status,
            "reason": self.reason,
            "dates": [day.isoformat() for day in self.dates],
            "rows_written": int(self.rows_written),
        }


@dataclass
class LocationProgress:
    """State of one input location: pending → in_progress → done."""

    path: Path
    state: str = PENDING
    status: str | None = None
    reason: str | None = None
    files: list[FileOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "path": str(self.path),
            "state": self.state,
            "status": self.status,
            "reason": self.reason,
            "files": [outcome.to_dict() for outcome in self.files],
        }


@dataclass
class IngestionSummary:
    locations: list[LocationProgress]

    @property
    def files(self) -> list[FileOutcome]:
        return [outcome for location in self.locations for outcome in location.files]

    @property
    def rows_written(self) -> int:
        return int(sum(outcome.rows_written for outcome in self.files))

    @property
    def exit_code(self) -> int:
        results: list[dict] = [outcome.to_dict() for outcome in self.files]
        results.extend(
            {"status": location.status, "reason": location.reason}
            for location in self.locations
            if location.status == "skipped"
        )
        return compute_exit_code(results)

    @property
    def status(self) -> str:
        return run_status(self.exit_code)

    def counts(self) -> dict[str, int]:
        counts = {"ok": 0, "skipped": 0, "error": 0}
        for outcome in self.files:
            counts[outcome.status] = counts.get(outcome.status, 0) + 1
        return counts

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "exit_code": self.exit_code,
            "rows_written": self.rows_written,
            "files": self.counts(),
            "locations": [location.to_dict() for location in self.locations],
        }


class IngestionCoordinator:
    """Load every snapshot file under ``locations`` into the store exactly once.

    Locations are processed strictly in order. A bad file is logged and
    recorded as an error without stopping the remaining files; losing the
    database connection propagates and aborts the run.
    """

    def __init__(
        self,
        store: SnapshotStore,
        locations: Iterable[str | Path],
        *,
        pattern: str = "*.csv",
        reader: Callable[[Path], SnapshotFile] = read_snapshot_file,
    ) -> None:
        self.store = store
        self.pattern = pattern
        self.reader = reader
        self.progress: list[LocationProgress] = [
            LocationProgress(path=Path(location)) for location in locations
        ]

    def run(self) -> IngestionSummary:
        for progress in self.progress:
            self._process_location(progress)
        summary = IngestionSummary(locations=list(self.progress))
        LOGGER.info(
            "ingest.complete | status=%s files=%s rows_written=%s",
            summary.status,
            summary.counts(),
            summary.rows_written,
        )
        log_json(DIAG_LOGGER, "ingest_summary", **summary.to_dict())
        return summary

    def _list_files(self, location: Path) -> Sequence[Path]:
        return sorted(path for path in location.glob(self.pattern) if path.is_file())

    def _process_location(self, progress: LocationProgress) -> None:
        progress.state = IN_PROGRESS
        LOGGER.info("ingest.location.start | path=%s", progress.path)

        if not progress.path.is_dir():
            LOGGER.warning("ingest.location.missing | path=%s", progress.path)
            progress.status = "skipped"
            progress.reason = "missing: directory"
            progress.state = DONE
            return

        files = self._list_files(progress.path)
        if not files:
            LOGGER.info(
                "ingest.location.empty | path=%s pattern=%s", progress.path, self.pattern
            )
        for path in files:
            progress.files.append(self._process_file(path))

        errors = sum(1 for outcome in progress.files if outcome.status == "error")
        progress.status = "error" if errors else "ok"
        progress.state = DONE
        LOGGER.info(
            "ingest.location.done | path=%s files=%s errors=%s",
            progress.path,
            len(progress.files),
            errors,
        )

    def _process_file(self, path: Path) -> FileOutcome:
        try:
            snapshot = self.reader(path)
        except (SnapshotFileError, ValueError) as exc:
            LOGGER.error("ingest.file.error | file=%s error=%s", path, exc)
            return FileOutcome(path=path, status="error", reason=str(exc))

        outcome = FileOutcome(path=path, status="skipped", reason=ALREADY_INGESTED)
        mismatched = False
        for day in snapshot.dates:
            try:
                result = self.store.record_relay_rows(
                    day,
                    snapshot.frames[day],
                    source_file=path.name,
                    source_path=str(path),
                    checksum=snapshot.checksum,
                )
            except StoreWriteError as exc:
                LOGGER.error(
                    "ingest.file.error | file=%s date=%s error=%s", path, day.isoformat(), exc
                )
                outcome.status = "error"
                outcome.reason = str(exc)
                return outcome
            if result.applied:
                outcome.status = "ok"
                outcome.reason = None
                outcome.dates.append(day)
                outcome.rows_written += result.rows_written
            elif result.reason == CHECKSUM_MISMATCH:
                mismatched = True

        # A changed file is a non-benign skip.
        if mismatched:
            outcome.status = "skipped"
            outcome.reason = CHECKSUM_MISMATCH

        LOGGER.info(
            "ingest.file.done | file=%s status=%s dates=%s rows=%s",
            path.name,
            outcome.status,
            [day.isoformat() for day in outcome.dates],
            outcome.rows_written,
        )
        return outcome


__all__ = [
    "DONE",
    "FileOutcome",
    "IN_PROGRESS",
    "IngestionCoordinator",
    "IngestionSummary",
    "LocationProgress",
    "PENDING",
]
