# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""Database utilities for the relay snapshot store's DuckDB backend."""

from .connection import canonicalize_duckdb_target, connect
from .schema import EXPECTED_TABLES, init_schema
from .snapshot_store import (
    CountryCountsConflictError,
    RelayWriteResult,
    SnapshotStore,
    StoreError,
    StoreUnavailableError,
    StoreWriteError,
    as_date,
    file_key_for,
    open_store,
)

__all__ = [
    "EXPECTED_TABLES",
    "CountryCountsConflictError",
    "RelayWriteResult",
    "SnapshotStore",
    "StoreError",
    "StoreUnavailableError",
    "StoreWriteError",
    "as_date",
    "canonicalize_duckdb_target",
    "connect",
    "file_key_for",
    "init_schema",
    "open_store",
]
