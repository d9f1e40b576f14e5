# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""Opt-in JSON diagnostics, enabled with ``RELAYGEO_DIAG=1``."""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import sys
from typing import Any, Dict, NamedTuple, Optional

DIAG_ENV = "RELAYGEO_DIAG"
_HANDLER_NAME = "relaygeo-diag"

STORE_TABLES = ("dates", "relays", "ingested_files", "country_counts", "country_runs")
DATED_TABLES = ("relays", "country_counts", "country_runs")


def diag_enabled() -> bool:
    return os.getenv(DIAG_ENV) == "1"


def get_logger(name: str) -> logging.Logger:
    """Return ``name``; with diagnostics on, it logs DEBUG to stderr."""

    logger = logging.getLogger(name)
    if diag_enabled():
        if not any(handler.get_name() == _HANDLER_NAME for handler in logger.handlers):
            handler = logging.StreamHandler(sys.stderr)
            handler.set_name(_HANDLER_NAME)
            handler.setFormatter(logging.Formatter("%(asctime)s | DIAG | %(name)s | %(message)s"))
            logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
    return logger


def _json_default(value: Any) -> Any:
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    return str(value)


def log_json(logger: logging.Logger, msg: str, **payload: Any) -> None:
    """Emit ``msg`` followed by ``payload`` as sorted JSON, only when enabled."""

    if not diag_enabled():
        return
    logger.debug("%s %s", msg, json.dumps(payload, default=_json_default, sort_keys=True))


class DuckDBErrors(NamedTuple):
    base: type
    constraint: type
    transaction: type
    connection: type


def duckdb_ex_classes(duckdb_mod) -> DuckDBErrors:
    """Collect the DuckDB exception classes the store maps to its own errors."""

    base = getattr(duckdb_mod, "Error", Exception)
    return DuckDBErrors(
        base=base,
        constraint=getattr(duckdb_mod, "ConstraintException", base),
        transaction=getattr(duckdb_mod, "TransactionException", base),
        connection=getattr(duckdb_mod, "ConnectionException", base),
    )


def table_counts(conn, day: Optional[dt.date] = None) -> Dict[str, int]:
    """Row totals for every store table, plus per-date totals when ``day`` is given."""

    counts: Dict[str, int] = {}
    for table in STORE_TABLES:
        counts[table] = int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
    if day is not None:
        for table in DATED_TABLES:
            counts[f"{table}@{day.isoformat()}"] = int(
                conn.execute(f"SELECT COUNT(*) FROM {table} WHERE date = ?", [day]).fetchone()[0]
            )
    return counts
