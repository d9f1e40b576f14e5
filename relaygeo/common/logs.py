# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""Logging setup shared by the relaygeo CLIs and library modules.

Library code logs through ``logging.getLogger(__name__)`` and leaves handler
configuration to the entry points, which call :func:`configure_root_logger`.
:func:`get_logger` is for modules that must print even when embedded in a
host application that never configures logging.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LEVEL_ENV = "RELAYGEO_LOG_LEVEL"


def parse_level(level: str | int | None, default: int = logging.INFO) -> int:
    """Map ``"debug"``/``"INFO"``/``10`` style values to a logging level."""

    if isinstance(level, int):
        return level
    if not level:
        return default
    value = logging.getLevelName(str(level).strip().upper())
    return value if isinstance(value, int) else default


def _stream_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


@lru_cache(maxsize=None)
def get_logger(name: str) -> logging.Logger:
    """Return ``name`` with its own formatted handler and no propagation."""

    logger = logging.getLogger(name)
    logger.setLevel(parse_level(os.getenv(LEVEL_ENV)))
    if not logger.handlers:
        logger.addHandler(_stream_handler())
    logger.propagate = False
    return logger


def configure_root_logger(*, level: str | int | None) -> int:
    """Set the root level and attach the shared formatter once; return the level."""

    resolved = parse_level(level)
    root = logging.getLogger()
    root.setLevel(resolved)
    if not any(isinstance(handler, logging.StreamHandler) for handler in root.handlers):
        root.addHandler(_stream_handler())
    return resolved

