"""Diagnostics helpers for relaygeo."""

from .diagnostics import diag_enabled, get_logger, log_json, table_counts

__all__ = ["diag_enabled", "get_logger", "log_json", "table_counts"]
