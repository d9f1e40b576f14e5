"""IP geolocation for relay addresses."""

from .resolver import GeoDatabaseError, GeoLookup, GeoResolver, open_resolver

__all__ = ["GeoDatabaseError", "GeoLookup", "GeoResolver", "open_resolver"]
