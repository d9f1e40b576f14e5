# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Sequence

import yaml

logger = logging.getLogger(__name__)

DEFAULT_DB_URL = "duckdb:///data/relays.duckdb"
DEFAULT_GEOIP_DB_PATH = "data/geoip/GeoLite2-City.mmdb"
DEFAULT_INPUT_DIRECTORIES: tuple[str, ...] = (
    "data/sample",
    "data/historical",
    "data/current",
)
DEFAULT_PATTERN = "*.csv"
DEFAULT_BATCH_SIZE = 2000


def _default_config_path() -> Path:
    env_path = os.getenv("RELAYGEO_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path(__file__).resolve().parent.parent / "config.yaml"


@lru_cache(maxsize=1)
def load() -> Dict[str, Any]:
    """Load the application configuration from YAML."""

    path = _default_config_path()
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        return {}
    return data


def _section(name: str) -> Dict[str, Any]:
    section = load().get(name) or {}
    return section if isinstance(section, dict) else {}


def get_db_url(explicit: str | None = None) -> str:
    """Return the DuckDB URL to use.

    Precedence:
    1. explicit argument (CLI flag)
    2. RELAYGEO_DB_URL environment variable
    3. app.db_url from config
    4. DEFAULT_DB_URL fallback
    """

    if explicit:
        return explicit
    env_url = os.getenv("RELAYGEO_DB_URL")
    if env_url:
        logger.debug("Using RELAYGEO_DB_URL override for DuckDB: %s", env_url)
        return env_url
    cfg_url = _section("app").get("db_url")
    if cfg_url:
        logger.debug("Using DuckDB URL from config: %s", cfg_url)
        return str(cfg_url)
    logger.debug("Using default DuckDB URL: %s", DEFAULT_DB_URL)
    return DEFAULT_DB_URL


def get_geoip_db_path(explicit: str | Path | None = None) -> Path:
    """Return the MaxMind database path (explicit > env > config > default)."""

    raw = (
        explicit
        or os.getenv("RELAYGEO_GEOIP_DB")
        or _section("geoip").get("db_path")
        or DEFAULT_GEOIP_DB_PATH
    )
    return Path(str(raw)).expanduser()


def get_input_directories(explicit: Sequence[str | Path] | None = None) -> list[Path]:
    """Return the ordered list of snapshot directories to ingest."""

    if explicit:
        return [Path(entry).expanduser() for entry in explicit]
    configured = _section("ingest").get("directories")
    if isinstance(configured, (list, tuple)) and configured:
        return [Path(str(entry)).expanduser() for entry in configured]
    return [Path(entry) for entry in DEFAULT_INPUT_DIRECTORIES]


def get_pattern(explicit: str | None = None) -> str:
    return explicit or str(_section("ingest").get("pattern") or DEFAULT_PATTERN)


def get_batch_size(explicit: int | None = None) -> int:
    """Return the insert batch size; invalid values fall back to the default."""

    candidates = (
        explicit,
        os.getenv("RELAYGEO_BATCH_SIZE"),
        _section("store").get("batch_size"),
    )
    for candidate in candidates:
        if candidate in (None, ""):
            continue
        try:
            value = int(candidate)
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid batch size %r", candidate)
            continue
        if value > 0:
            return value
        logger.warning("Ignoring non-positive batch size %r", candidate)
    return DEFAULT_BATCH_SIZE
