# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""Ingest directories of relay snapshot CSV files into the DuckDB relay store."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Sequence

from relaygeo.common.logs import configure_root_logger
from relaygeo.config import get_db_url, get_input_directories, get_pattern
from relaygeo.db._duckdb_available import get_duckdb
from relaygeo.db.snapshot_store import StoreError, open_store
from relaygeo.diag.diagnostics import diag_enabled, get_logger as get_diag_logger, log_json, table_counts
from relaygeo.ingestion._exit_policy import EXIT_ABORTED
from relaygeo.ingestion.coordinator import IngestionCoordinator

LOGGER = logging.getLogger(__name__)
if not LOGGER.handlers:  # pragma: no cover - library default noise guard
    LOGGER.addHandler(logging.NullHandler())

DIAG_LOGGER = get_diag_logger(f"{__name__}.diag")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "directories",
        nargs="*",
        help="Snapshot directories, processed in order (default: ingest.directories from config)",
    )
    parser.add_argument(
        "--db-url",
        "--db",
        dest="db_url",
        default=None,
        help="DuckDB URL or path (default: RELAYGEO_DB_URL, then app.db_url from config)",
    )
    parser.add_argument(
        "--pattern",
        default=None,
        help="Glob for snapshot files inside each directory (default: *.csv)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Rows per INSERT statement (default: store.batch_size from config)",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("RELAYGEO_LOG_LEVEL", "INFO"),
        help="Set logging level (default: %(default)s)",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_root_logger(level=args.log_level)

    db_url = get_db_url(args.db_url)
    directories = get_input_directories(args.directories)
    pattern = get_pattern(args.pattern)
    LOGGER.info(
        "run_ingest.start | db_url=%s directories=%s pattern=%s",
        db_url,
        [str(path) for path in directories],
        pattern,
    )

    duckdb_error = get_duckdb().Error
    try:
        with open_store(db_url, batch_size=args.batch_size) as store:
            summary = IngestionCoordinator(store, directories, pattern=pattern).run()
            if diag_enabled():
                log_json(DIAG_LOGGER, "table_counts", **table_counts(store.conn))
    except (StoreError, duckdb_error) as exc:
        LOGGER.error("run_ingest.aborted | error=%s", exc)
        return EXIT_ABORTED

    counts = summary.counts()
    LOGGER.info(
        "run_ingest.complete | status=%s loaded=%s skipped=%s failed=%s rows=%s",
        summary.status,
        counts.get("ok", 0),
        counts.get("skipped", 0),
        counts.get("error", 0),
        summary.rows_written,
    )
    for outcome in summary.files:
        if outcome.status == "error":
            LOGGER.warning("run_ingest.failed_file | file=%s reason=%s", outcome.path, outcome.reason)
    return summary.exit_code


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
