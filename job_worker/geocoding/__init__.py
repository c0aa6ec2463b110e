"""Reverse geocoding for ride locations."""

from .geocoder import (
    GeocodingError,
    ReverseGeocoder,
    build_location_string,
    format_lat_lon,
)

__all__ = [
    "GeocodingError",
    "ReverseGeocoder",
    "build_location_string",
    "format_lat_lon",
]
