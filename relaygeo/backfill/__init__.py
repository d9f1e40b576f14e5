"""Backfill jobs that derive statistics from stored relay snapshots."""

from .country_counts import BackfillSummary, CountryBackfillJob, DateOutcome

__all__ = ["BackfillSummary", "CountryBackfillJob", "DateOutcome"]
