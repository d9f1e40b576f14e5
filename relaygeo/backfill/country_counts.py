# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""Derive per-date country relay counts from relay IPs via GeoIP lookups.

Upstream relay snapshots no longer carry a per-country breakdown, so counts
are rebuilt from where each relay is hosted. Only dates without country data
are processed; each processed date is committed in one transaction together
with its completion record, so a date is either fully done or retried from
scratch on the next run.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Protocol

from relaygeo.db.snapshot_store import CountryCountsConflictError, SnapshotStore
from relaygeo.diag.diagnostics import get_logger as get_diag_logger, log_json
from relaygeo.geo.resolver import GeoLookup
from relaygeo.ingestion._exit_policy import compute_exit_code, run_status

LOGGER = logging.getLogger(__name__)
if not LOGGER.handlers:  # pragma: no cover - library default noise guard
    LOGGER.addHandler(logging.NullHandler())

DIAG_LOGGER = get_diag_logger(f"{__name__}.diag")


class CountryLookup(Protocol):
    def lookup(self, ip: str) -> GeoLookup: ...


@dataclass
class DateAggregate:
    """In-memory aggregation for one date."""

    date: dt.date
    counts: Counter = field(default_factory=Counter)
    relays: int = 0
    unresolved: Counter = field(default_factory=Counter)

    @property
    def geolocated(self) -> int:
        return int(sum(self.counts.values()))


@dataclass
class DateOutcome:
    date: dt.date
    status: str
    relays: int = 0
    geolocated: int = 0
    countries: int = 0
    unresolved: dict[str, int] = field(default_factory=dict)
    reason: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "date": self.date.isoformat(),
            "status": self.status,
            "relays": int(self.relays),
            "geolocated": int(self.geolocated),
            "countries": int(self.countries),
            "unresolved": dict(self.unresolved),
            "reason": self.reason,
        }


@dataclass
class BackfillSummary:
    dates: list[DateOutcome] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return compute_exit_code(outcome.to_dict() for outcome in self.dates)

    @property
    def status(self) -> str:
        return run_status(self.exit_code)

    @property
    def relays(self) -> int:
        return int(sum(outcome.relays for outcome in self.dates))

    @property
    def geolocated(self) -> int:
        return int(sum(outcome.geolocated for outcome in self.dates))

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "exit_code": self.exit_code,
            "dates_missing": len(self.dates),
            "dates_failed": sum(1 for outcome in self.dates if outcome.status == "error"),
            "relays": self.relays,
            "geolocated": self.geolocated,
            "dates": [outcome.to_dict() for outcome in self.dates],
        }


class CountryBackfillJob:
    """Fill ``country_counts`` for every date that has no country data yet."""

    def __init__(
        self,
        store: SnapshotStore,
        resolver: CountryLookup,
        *,
        page_size: int | None = None,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.page_size = page_size

    def run(self) -> BackfillSummary:
        missing = self.store.list_dates_missing_country_data()
        LOGGER.info("country_backfill.start | dates_missing=%s", len(missing))

        summary = BackfillSummary()
        for index, day in enumerate(missing, start=1):
            outcome = self.process_date(day)
            summary.dates.append(outcome)
            LOGGER.info(
                "country_backfill.date | %s/%s date=%s status=%s relays=%s geolocated=%s countries=%s",
                index,
                len(missing),
                day.isoformat(),
                outcome.status,
                outcome.relays,
                outcome.geolocated,
                outcome.countries,
            )

        LOGGER.info(
            "country_backfill.complete | status=%s dates=%s relays=%s geolocated=%s",
            summary.status,
            len(summary.dates),
            summary.relays,
            summary.geolocated,
        )
        return summary

    def aggregate(self, day: dt.date) -> DateAggregate:
        """Geolocate every relay IP recorded for ``day``."""

        aggregate = DateAggregate(date=day)
        for ip in self.store.list_relay_ips_for_date(day, page_size=self.page_size):
            aggregate.relays += 1
            result = self.resolver.lookup(ip)
            if result.country_code:
                aggregate.counts[result.country_code] += 1
            else:
                aggregate.unresolved[result.status] += 1
        return aggregate

    def process_date(self, day: dt.date) -> DateOutcome:
        aggregate = self.aggregate(day)
        unresolved = dict(aggregate.unresolved.most_common())
        log_json(
            DIAG_LOGGER,
            "country_aggregate",
            date=day,
            relays=aggregate.relays,
            counts=dict(aggregate.counts),
            unresolved=unresolved,
        )

        try:
            if aggregate.counts:
                self.store.insert_country_counts(
                    day,
                    dict(aggregate.counts),
                    relays=aggregate.relays,
                    geolocated=aggregate.geolocated,
                )
            else:
                self.store.mark_date_processed(day, relays=aggregate.relays, geolocated=0)
        except CountryCountsConflictError as exc:
            LOGGER.error("country_backfill.conflict | date=%s error=%s", day.isoformat(), exc)
            return DateOutcome(
                date=day,
                status="error",
                relays=aggregate.relays,
                geolocated=aggregate.geolocated,
                countries=len(aggregate.counts),
                unresolved=unresolved,
                reason=str(exc),
            )

        return DateOutcome(
            date=day,
            status="ok",
            relays=aggregate.relays,
            geolocated=aggregate.geolocated,
            countries=len(aggregate.counts),
            unresolved=unresolved,
            reason=None if aggregate.counts else "no geolocated relays",
        )


__all__ = [
    "BackfillSummary",
    "CountryBackfillJob",
    "DateAggregate",
    "DateOutcome",
]
