from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path
from typing import Optional

DB_URL_ENV = "RELAYGEO_DB_URL"
URL_PREFIX = "duckdb:///"


def _xdist_installed() -> bool:
    try:
        import xdist  # noqa: F401
    except ImportError:
        return False
    return True


def _without_numprocesses(tokens: list[str]) -> list[str]:
    """Drop ``-n N`` / ``-nauto`` / ``--numprocesses=N`` from ``tokens``."""

    kept: list[str] = []
    iterator = iter(tokens)
    for token in iterator:
        if token in ("-n", "--numprocesses"):
            next(iterator, None)
        elif not token.startswith(("-n", "--numprocesses")):
            kept.append(token)
    return kept


if not _xdist_installed():
    _dropped = False
    _addopts = os.environ.get("PYTEST_ADDOPTS", "").split()
    if _addopts and _without_numprocesses(_addopts) != _addopts:
        _dropped = True
        _remaining = " ".join(_without_numprocesses(_addopts))
        if _remaining:
            os.environ["PYTEST_ADDOPTS"] = _remaining
        else:
            del os.environ["PYTEST_ADDOPTS"]
    if _without_numprocesses(sys.argv[1:]) != sys.argv[1:]:
        _dropped = True
        sys.argv[1:] = _without_numprocesses(sys.argv[1:])
    if _dropped:
        print("[note] pytest-xdist not available; running single-process")

    XDIST_AVAILABLE = False
else:
    XDIST_AVAILABLE = True


def _worker_db_url(base_url: Optional[str], workerid: Optional[str]) -> Optional[str]:
    """Point each xdist worker at its own copy of a file-backed store."""

    if not base_url or not base_url.startswith(URL_PREFIX) or workerid in (None, "master"):
        return base_url

    base = Path(base_url[len(URL_PREFIX):])
    worker = base.with_name(f"{base.stem}-{workerid}{base.suffix}")
    worker.parent.mkdir(parents=True, exist_ok=True)
    worker.unlink(missing_ok=True)
    if base.exists():
        shutil.copy2(base, worker)
    return f"{URL_PREFIX}{worker}"


if XDIST_AVAILABLE:

    def pytest_configure_node(node):  # pragma: no cover - xdist only
        node.workerinput["relaygeo_db_url_base"] = os.environ.get(DB_URL_ENV)


def pytest_configure(config):  # pragma: no cover - runtime hook
    workerinput = getattr(config, "workerinput", None) or {}
    base_url = workerinput.get("relaygeo_db_url_base", os.environ.get(DB_URL_ENV))
    url = _worker_db_url(base_url, workerinput.get("workerid"))
    if url:
        os.environ[DB_URL_ENV] = url
    else:
        # An empty value would otherwise shadow config.yaml.
        os.environ.pop(DB_URL_ENV, None)
