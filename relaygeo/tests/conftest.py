from __future__ import annotations

import datetime as dt
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Iterable, Mapping

import pandas as pd
import pytest
from geoip2.errors import AddressNotFoundError

from relaygeo import config as relaygeo_config
from relaygeo.db._duckdb_available import DUCKDB_AVAILABLE
from relaygeo.geo.resolver import GeoResolver

RELAY_HEADER = ["fingerprint", "nickname", "ip", "or_port", "flags", "bandwidth"]

GEO_TABLE = {
    "8.8.8.8": "US",
    "8.8.4.4": "US",
    "5.9.0.1": "DE",
    "81.2.69.142": "GB",
    "2a01:4f8::1": "DE",
    "9.9.9.9": None,
}


class FakeGeoReader:
    """Stand-in for ``geoip2.database.Reader`` backed by a dict."""

    def __init__(self, table: Mapping[str, str | None], database_type: str = "GeoLite2-Country"):
        self.table = dict(table)
        self.database_type = database_type
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[str, Exception] = {}
        self.closed = False

    def metadata(self):
        return SimpleNamespace(database_type=self.database_type)

    def _respond(self, method: str, ip: str):
        self.calls.append((method, ip))
        if ip in self.failures:
            raise self.failures[ip]
        if ip not in self.table:
            raise AddressNotFoundError(f"The address {ip} is not in the database.")
        return SimpleNamespace(country=SimpleNamespace(iso_code=self.table[ip]))

    def country(self, ip: str):
        return self._respond("country", ip)

    def city(self, ip: str):
        return self._respond("city", ip)

    def enterprise(self, ip: str):
        return self._respond("enterprise", ip)

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    for name in ("RELAYGEO_DIAG", "RELAYGEO_BATCH_SIZE", "RELAYGEO_CONFIG_PATH"):
        monkeypatch.delenv(name, raising=False)
    relaygeo_config.load.cache_clear()
    yield
    relaygeo_config.load.cache_clear()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"duckdb:///{tmp_path / 'db' / 'relays.duckdb'}"


@pytest.fixture
def store(db_url):
    if not DUCKDB_AVAILABLE:
        pytest.skip("DuckDB module not available")
    from relaygeo.db.snapshot_store import open_store

    with open_store(db_url) as opened:
        yield opened


@pytest.fixture
def fake_reader() -> FakeGeoReader:
    return FakeGeoReader(GEO_TABLE)


@pytest.fixture
def geo_resolver(fake_reader) -> GeoResolver:
    return GeoResolver(fake_reader, source="fake")


def relay_rows(ips: Iterable[str], *, prefix: str = "relay") -> list[dict[str, str]]:
    return [
        {
            "fingerprint": f"{prefix.upper()}{index:038d}",
            "nickname": f"{prefix}{index}",
            "ip": ip,
            "or_port": "9001",
            "flags": "Fast Running Valid",
            "bandwidth": str(1000 * (index + 1)),
        }
        for index, ip in enumerate(ips)
    ]


@pytest.fixture
def write_snapshot() -> Callable[..., Path]:
    """Write a relay snapshot CSV and return its path."""

    def _write(
        directory: Path,
        name: str,
        ips: Iterable[str] = (),
        *,
        rows: list[dict] | None = None,
        columns: list[str] | None = None,
    ) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        data = rows if rows is not None else relay_rows(ips, prefix=Path(name).stem.split("-")[0])
        frame = pd.DataFrame(data, columns=columns or (list(data[0]) if data else RELAY_HEADER))
        path = directory / name
        frame.to_csv(path, index=False)
        return path

    return _write


@pytest.fixture
def day() -> dt.date:
    return dt.date(2024, 1, 1)


@pytest.fixture
def make_rows() -> Callable[..., list[dict[str, str]]]:
    return relay_rows
