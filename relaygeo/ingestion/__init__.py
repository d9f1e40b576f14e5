"""Relay snapshot ingestion: file reader, coordinator and exit policy."""

from .coordinator import IngestionCoordinator, IngestionSummary
from .snapshot_files import SnapshotFile, SnapshotFileError, read_snapshot_file

__all__ = [
    "IngestionCoordinator",
    "IngestionSummary",
    "SnapshotFile",
    "SnapshotFileError",
    "read_snapshot_file",
]
