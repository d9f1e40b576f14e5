# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""DuckDB connection helpers with canonical URL handling."""

from __future__ import annotations

import logging
import pathlib
from urllib.parse import urlparse

from relaygeo.db._duckdb_available import get_duckdb
from relaygeo.diag.diagnostics import get_logger as get_diag_logger, log_json

logger = logging.getLogger(__name__)
if not logger.handlers:  # pragma: no cover - silence library default
    logger.addHandler(logging.NullHandler())

_DIAG_LOGGER = get_diag_logger(f"{__name__}.diag")

MEMORY_TARGET = (":memory:", "duckdb:///:memory:")
_MEMORY_ALIASES = frozenset(
    {":memory:", "duckdb:///:memory:", "duckdb://:memory:", "duckdb://memory", "duckdb:memory"}
)


def canonicalize_duckdb_target(url_or_path: str | None) -> tuple[str, str]:
    """Return ``(filesystem path, duckdb URL)`` for a DuckDB target.

    ``duckdb:///relays.duckdb`` is relative to the working directory and
    ``duckdb:////srv/relays.duckdb`` is absolute; plain paths are accepted too.
    Empty values and the ``:memory:`` spellings map to an in-memory database.
    """

    raw = (url_or_path or "").strip()
    if not raw or raw in _MEMORY_ALIASES:
        return MEMORY_TARGET

    target = raw
    if raw.startswith("duckdb:"):
        parsed = urlparse(raw)
        target = parsed.netloc + parsed.path
        if not parsed.netloc and target.startswith("/"):
            target = target[1:]
        if target in ("", ":memory:"):
            return MEMORY_TARGET

    path = pathlib.Path(target).expanduser()
    if not path.is_absolute():
        path = pathlib.Path.cwd() / path
    path = path.resolve()
    return str(path), f"duckdb:///{path}"


def connect(url_or_path: str | None, *, read_only: bool = False):
    """Open a new DuckDB connection for ``url_or_path``.

    Callers own the returned handle and must close it; there is no shared
    connection cache.
    """

    duckdb = get_duckdb()
    path, url = canonicalize_duckdb_target(url_or_path)
    if path != ":memory:" and not read_only:
        pathlib.Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = duckdb.connect(database=path, read_only=read_only)
    logger.info("duckdb.connect | url=%s path=%s read_only=%s", url, path, read_only)
    log_json(_DIAG_LOGGER, "db_open", url=url, path=path, read_only=read_only)
    conn.execute("PRAGMA enable_progress_bar=false")
    return conn


__all__ = ["MEMORY_TARGET", "canonicalize_duckdb_target", "connect"]
