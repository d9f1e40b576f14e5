# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""Schema bootstrap for the relay snapshot store."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Sequence

LOGGER = logging.getLogger(__name__)
if not LOGGER.handlers:  # pragma: no cover - avoid "No handler" warnings in tests
    LOGGER.addHandler(logging.NullHandler())

SCHEMA_PATH = Path(__file__).resolve().with_name("schema.sql")

EXPECTED_TABLES = frozenset(
    {"dates", "relays", "ingested_files", "country_counts", "country_runs"}
)


def _existing_tables(conn) -> set[str]:
    return {str(row[0]) for row in conn.execute("PRAGMA show_tables").fetchall()}


def _split_statements(sql: str) -> list[str]:
    statements: list[str] = []
    for chunk in sql.split(";"):
        lines = [
            line.strip()
            for line in chunk.splitlines()
            if line.strip() and not line.strip().startswith("--")
        ]
        statement = re.sub(r"\s+", " ", " ".join(lines)).strip()
        if statement:
            statements.append(statement)
    return statements


def _run_ddl_batch(conn, statements: Sequence[str]) -> None:
    conn.execute("BEGIN TRANSACTION")
    try:
        for statement in statements:
            conn.execute(statement)
    except Exception:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def init_schema(conn, schema_sql_path: Path | None = None) -> None:
    """Initialise database schema if it does not already exist."""

    schema_path = schema_sql_path or SCHEMA_PATH
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema SQL not found at {schema_path}")

    existing_tables = _existing_tables(conn)
    LOGGER.debug(
        "duckdb.schema.inspect | existing_tables=%s",
        ", ".join(sorted(existing_tables)) or "<none>",
    )
    if EXPECTED_TABLES.issubset(existing_tables):
        LOGGER.debug("DuckDB schema already initialised; skipping DDL execution")
        return

    LOGGER.info(
        "duckdb.schema.create | missing_tables=%s",
        ", ".join(sorted(EXPECTED_TABLES - existing_tables)),
    )
    statements = _split_statements(schema_path.read_text(encoding="utf-8"))
    _run_ddl_batch(conn, statements)


__all__ = ["EXPECTED_TABLES", "SCHEMA_PATH", "init_schema"]
