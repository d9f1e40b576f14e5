"""Base exception for the relaygeo pipeline."""

from __future__ import annotations


class RelayGeoError(RuntimeError):
    """Root of every error raised deliberately by relaygeo."""
