# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""Reader that shapes dated relay snapshot CSV files into per-date frames."""

from __future__ import annotations

import datetime as dt
import hashlib
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pandas as pd

from relaygeo.common.errors import RelayGeoError
from relaygeo.db.snapshot_store import RELAY_COLUMNS

LOGGER = logging.getLogger(__name__)
if not LOGGER.handlers:  # pragma: no cover - library default noise guard
    LOGGER.addHandler(logging.NullHandler())

DATE_IN_NAME_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")

COLUMN_ALIASES: dict[str, str] = {
    "address": "ip",
    "ip_address": "ip",
    "or_address": "ip",
    "consensus_weight": "bandwidth",
    "advertised_bandwidth": "bandwidth",
    "orport": "or_port",
    "port": "or_port",
}


class SnapshotFileError(RelayGeoError):
    """A snapshot file could not be read or lacks required data."""


@dataclass
class SnapshotFile:
    """Parsed relay snapshot: rows grouped by snapshot date."""

    path: Path
    checksum: str
    frames: dict[dt.date, pd.DataFrame] = field(default_factory=dict)
    dropped_rows: int = 0

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def dates(self) -> list[dt.date]:
        return sorted(self.frames)

    @property
    def total_rows(self) -> int:
        return int(sum(len(frame) for frame in self.frames.values()))


def snapshot_date_from_name(name: str) -> Optional[dt.date]:
    """Return the first ``YYYY-MM-DD`` date embedded in ``name``, if any."""

    for match in DATE_IN_NAME_RE.finditer(name):
        year, month, day = (int(part) for part in match.groups())
        try:
            return dt.date(year, month, day)
        except ValueError:
            continue
    return None


def file_checksum(path: Path, chunk_size: int = 1 << 20) -> str:
    digest = hashlib.sha256()
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def split_host_port(value: str) -> tuple[str, Optional[str]]:
    """Split ``host:port`` / ``[v6]:port`` into parts; bare addresses pass through."""

    text = (value or "").strip()
    if text.startswith("["):
        host, _, rest = text[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
        return host, port or None
    if text.count(":") == 1:
        host, port = text.split(":", 1)
        return host, port or None
    return text, None


def _normalise_columns(frame: pd.DataFrame) -> pd.DataFrame:
    renamed: dict[str, str] = {}
    for column in frame.columns:
        renamed[column] = re.sub(r"\s+", "_", str(column).strip().lower())
    frame = frame.rename(columns=renamed)
    for alias, target in COLUMN_ALIASES.items():
        if alias in frame.columns and target not in frame.columns:
            frame = frame.rename(columns={alias: target})
    return frame


def _row_dates(frame: pd.DataFrame, fallback: Optional[dt.date], path: Path) -> pd.Series:
    if "date" not in frame.columns:
        if fallback is None:
            raise SnapshotFileError(
                f"{path.name}: no 'date' column and no YYYY-MM-DD in the file name"
            )
        return pd.Series([fallback] * len(frame), index=frame.index, dtype=object)

    raw = frame["date"].fillna("").astype(str).str.strip()
    parsed = pd.to_datetime(raw.where(raw != "", None), errors="coerce")
    invalid = parsed.isna() & (raw != "")
    if invalid.any():
        sample = raw[invalid].head(3).tolist()
        raise SnapshotFileError(f"{path.name}: unparsable date values {sample}")
    days = pd.Series(
        [value.date() if not pd.isna(value) else fallback for value in parsed],
        index=frame.index,
        dtype=object,
    )
    if days.isna().any():
        raise SnapshotFileError(
            f"{path.name}: rows without a date and no YYYY-MM-DD in the file name"
        )
    return days


def read_snapshot_file(path: str | Path) -> SnapshotFile:
    """Read one relay snapshot CSV and group its rows by snapshot date."""

    path = Path(path)
    try:
        checksum = file_checksum(path)
        frame = pd.read_csv(
            path,
            dtype=str,
            comment="#",
            keep_default_na=False,
            skipinitialspace=True,
        )
    except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise SnapshotFileError(f"{path.name}: unreadable snapshot file: {exc}") from exc

    frame = _normalise_columns(frame)
    if "ip" not in frame.columns:
        raise SnapshotFileError(
            f"{path.name}: missing required 'ip' column (columns={list(frame.columns)})"
        )

    split = frame["ip"].fillna("").astype(str).map(split_host_port)
    frame["ip"] = split.map(lambda parts: parts[0])
    ports = split.map(lambda parts: parts[1])
    if "or_port" not in frame.columns:
        frame["or_port"] = ports
    else:
        blank = frame["or_port"].fillna("").astype(str).str.strip() == ""
        frame.loc[blank, "or_port"] = ports[blank]

    days = _row_dates(frame, snapshot_date_from_name(path.name), path)

    extra = [col for col in frame.columns if col not in RELAY_COLUMNS and col != "date"]
    if extra:
        LOGGER.debug("snapshot.read.extra_columns | file=%s columns=%s", path.name, extra)
    for column in RELAY_COLUMNS:
        if column not in frame.columns:
            frame[column] = None
    frame = frame[RELAY_COLUMNS]

    has_ip = frame["ip"].fillna("").astype(str).str.strip() != ""
    dropped = int((~has_ip).sum())
    if dropped:
        LOGGER.warning("snapshot.read.dropped_rows | file=%s rows_without_ip=%s", path.name, dropped)

    result = SnapshotFile(path=path, checksum=checksum, dropped_rows=dropped)
    for day in sorted(set(days.tolist())):
        mask = (days == day) & has_ip
        result.frames[day] = frame[mask].reset_index(drop=True)
    if not result.frames:
        fallback = snapshot_date_from_name(path.name)
        if fallback is None:
            raise SnapshotFileError(
                f"{path.name}: no rows and no YYYY-MM-DD in the file name"
            )
        result.frames[fallback] = frame.iloc[0:0].reset_index(drop=True)

    LOGGER.debug(
        "snapshot.read | file=%s dates=%s rows=%s",
        path.name,
        [day.isoformat() for day in result.dates],
        result.total_rows,
    )
    return result


__all__ = [
    "SnapshotFile",
    "SnapshotFileError",
    "file_checksum",
    "read_snapshot_file",
    "snapshot_date_from_name",
    "split_host_port",
]
