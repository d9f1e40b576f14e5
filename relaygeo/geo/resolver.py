# Pythia
# Copyright (c) 2025 Kevin Wyjad
# Licensed under the Pythia Non-Commercial Public License v1.0.
# See the LICENSE file in the project root for details.

"""Offline IP → country lookups against a MaxMind database."""

from __future__ import annotations

import ipaddress
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

import geoip2.database
from geoip2.errors import AddressNotFoundError

from relaygeo.common.errors import RelayGeoError
from relaygeo.common.logs import get_logger

LOGGER = get_logger(__name__)

RESOLVED = "resolved"
NOT_FOUND = "not_found"
NO_COUNTRY = "no_country"
RESERVED = "reserved"
INVALID_ADDRESS = "invalid_address"
LOOKUP_ERROR = "lookup_error"


class GeoDatabaseError(RelayGeoError):
    """The GeoIP database could not be opened; geolocation is unavailable."""


@dataclass(frozen=True)
class GeoLookup:
    """Result of a single lookup; ``country_code`` is ``None`` when unresolved."""

    ip: str
    country_code: Optional[str]
    status: str

    @property
    def resolved(self) -> bool:
        return self.country_code is not None


def _lookup_method(reader: Any) -> Callable[[str], Any]:
    database_type = ""
    try:
        database_type = str(reader.metadata().database_type or "")
    except AttributeError:
        pass
    if "Enterprise" in database_type:
        return reader.enterprise
    if "City" in database_type:
        return reader.city
    return reader.country


def _normalise_address(ip: Any) -> str:
    text = str(ip).strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]
    return text


class GeoResolver:
    """Resolve IP literals to lowercase ISO country codes.

    Per-address problems (unknown, reserved, malformed, no country in the
    record, a reader error on one record) are reported as unresolved
    lookups, never raised.
    """

    def __init__(
        self,
        reader: Any,
        *,
        lookup: Callable[[str], Any] | None = None,
        source: str | None = None,
    ) -> None:
        self._reader = reader
        self._lookup = lookup or _lookup_method(reader)
        self.source = source

    @classmethod
    def from_path(cls, path: str | Path) -> "GeoResolver":
        db_path = Path(path).expanduser()
        if not db_path.exists():
            raise GeoDatabaseError(f"GeoIP database not found: {db_path}")
        try:
            reader = geoip2.database.Reader(str(db_path))
        except (OSError, ValueError, RuntimeError) as exc:
            raise GeoDatabaseError(f"GeoIP database unreadable: {db_path}: {exc}") from exc
        LOGGER.info("GeoIP database loaded: %s", db_path)
        return cls(reader, source=str(db_path))

    def lookup(self, ip: Any) -> GeoLookup:
        text = _normalise_address(ip) if ip is not None else ""
        try:
            address = ipaddress.ip_address(text)
        except ValueError:
            return GeoLookup(text, None, INVALID_ADDRESS)
        if not address.is_global:
            return GeoLookup(text, None, RESERVED)

        try:
            response = self._lookup(str(address))
        except AddressNotFoundError:
            return GeoLookup(text, None, NOT_FOUND)
        except (ValueError, TypeError) as exc:
            LOGGER.debug("GeoIP lookup failed for %s: %s", text, exc)
            return GeoLookup(text, None, INVALID_ADDRESS)
        except Exception as exc:
            LOGGER.debug("GeoIP lookup error for %s: %r", text, exc)
            return GeoLookup(text, None, LOOKUP_ERROR)

        country = getattr(response, "country", None)
        iso_code = getattr(country, "iso_code", None) if country is not None else None
        if not iso_code:
            return GeoLookup(text, None, NO_COUNTRY)
        return GeoLookup(text, str(iso_code).lower(), RESOLVED)

    def resolve(self, ip: Any) -> Optional[str]:
        """Return the lowercase country code for ``ip`` or ``None``."""

        return self.lookup(ip).country_code

    def close(self) -> None:
        close = getattr(self._reader, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> "GeoResolver":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@contextmanager
def open_resolver(path: str | Path) -> Iterator[GeoResolver]:
    """Open the GeoIP database at ``path`` for the duration of a run."""

    resolver = GeoResolver.from_path(path)
    try:
        yield resolver
    finally:
        resolver.close()


__all__ = [
    "GeoDatabaseError",
    "GeoLookup",
    "GeoResolver",
    "INVALID_ADDRESS",
    "LOOKUP_ERROR",
    "NOT_FOUND",
    "NO_COUNTRY",
    "RESERVED",
    "RESOLVED",
    "open_resolver",
]
