# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""Common utilities shared across relaygeo components."""

from .errors import RelayGeoError
from .logs import configure_root_logger, get_logger, parse_level

__all__ = [
    "RelayGeoError",
    "configure_root_logger",
    "get_logger",
    "parse_level",
]
