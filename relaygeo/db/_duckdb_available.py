# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""Guarded import of the duckdb module used by the relay store."""

from __future__ import annotations

from types import ModuleType
from typing import Optional

_IMPORT_ERROR: Optional[ImportError]

try:  # pragma: no cover - import guard
    import duckdb as _duckdb
except ImportError as exc:  # pragma: no cover - dependency missing
    _duckdb = None
    _IMPORT_ERROR = exc
else:
    _IMPORT_ERROR = None

DUCKDB_AVAILABLE = _duckdb is not None


def get_duckdb() -> ModuleType:
    """Return the duckdb module, or explain how to install it."""

    if _duckdb is None:
        raise RuntimeError(
            "relaygeo stores relay snapshots in DuckDB but the 'duckdb' package "
            "is not importable; reinstall with `pip install -e .`"
        ) from _IMPORT_ERROR
    return _duckdb


__all__ = ["DUCKDB_AVAILABLE", "get_duckdb"]
