# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""Populate country_counts from relay IP addresses using a GeoIP database.

Relay snapshots no longer ship a per-country breakdown, so country statistics
are derived from where each relay is hosted.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Sequence

from relaygeo.backfill.country_counts import CountryBackfillJob
from relaygeo.common.logs import configure_root_logger
from relaygeo.config import get_db_url, get_geoip_db_path
from relaygeo.db._duckdb_available import get_duckdb
from relaygeo.db.snapshot_store import StoreError, open_store
from relaygeo.diag.diagnostics import diag_enabled, get_logger as get_diag_logger, log_json, table_counts
from relaygeo.geo.resolver import GeoDatabaseError, open_resolver
from relaygeo.ingestion._exit_policy import EXIT_ABORTED

LOGGER = logging.getLogger(__name__)
if not LOGGER.handlers:  # pragma: no cover - library default noise guard
    LOGGER.addHandler(logging.NullHandler())

DIAG_LOGGER = get_diag_logger(f"{__name__}.diag")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Derive per-date country relay counts for dates that lack them."
    )
    parser.add_argument(
        "--db-url",
        "--db",
        dest="db_url",
        default=None,
        help="DuckDB URL or path (default: RELAYGEO_DB_URL, then app.db_url from config)",
    )
    parser.add_argument(
        "--geoip-db",
        default=None,
        help="MaxMind .mmdb file (default: RELAYGEO_GEOIP_DB, then geoip.db_path from config)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Rows per INSERT statement (default: store.batch_size from config)",
    )
    parser.add_argument(
        "--page-size",
        type=int,
        default=None,
        help="Relay IPs fetched per page while streaming a date",
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
    geoip_path = get_geoip_db_path(args.geoip_db)
    LOGGER.info("populate_country_data.start | db_url=%s geoip_db=%s", db_url, geoip_path)

    duckdb_error = get_duckdb().Error
    try:
        with open_resolver(geoip_path) as resolver:
            with open_store(db_url, batch_size=args.batch_size) as store:
                summary = CountryBackfillJob(store, resolver, page_size=args.page_size).run()
                if diag_enabled():
                    log_json(DIAG_LOGGER, "table_counts", **table_counts(store.conn))
    except GeoDatabaseError as exc:
        LOGGER.error("populate_country_data.aborted | geoip error=%s", exc)
        return EXIT_ABORTED
    except (StoreError, duckdb_error) as exc:
        LOGGER.error("populate_country_data.aborted | store error=%s", exc)
        return EXIT_ABORTED

    failed = [outcome for outcome in summary.dates if outcome.status == "error"]
    LOGGER.info(
        "populate_country_data.complete | status=%s dates=%s failed=%s relays=%s geolocated=%s",
        summary.status,
        len(summary.dates),
        len(failed),
        summary.relays,
        summary.geolocated,
    )
    for outcome in failed:
        LOGGER.warning(
            "populate_country_data.failed_date | date=%s reason=%s",
            outcome.date.isoformat(),
            outcome.reason,
        )
    return summary.exit_code


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
