"""Tests for reverse geocoding, the rate limiter and the result cache."""

import time
from types import SimpleNamespace

import pytest
from geopy.exc import GeocoderServiceError, GeocoderTimedOut

from job_worker.geocoding import (
    GeocodingError,
    ReverseGeocoder,
    build_location_string,
    format_lat_lon,
)


class FakeNominatim:
    def __init__(self, address=None, error=None):
        self.address = address
        self.error = error
        self.calls = []

    def reverse(self, point, **kwargs):
        self.calls.append(point)
        if self.error:
            raise self.error
        if self.address is None:
            return None
        return SimpleNamespace(raw={"address": self.address})


def test_build_location_string():
    assert build_location_string(["Bend", "Oregon"]) == "Bend, Oregon"
    assert build_location_string([None, " Oregon "]) == "Oregon"
    assert build_location_string([None, "", "  "]) is None


def test_format_lat_lon():
    assert format_lat_lon(45.12345, -122.45678) == "Lat 45.123, Lon -122.457"
    assert format_lat_lon(None, 1.0) is None
    assert format_lat_lon(float("nan"), 1.0) is None


async def test_reverse_returns_city_and_state():
    nominatim = FakeNominatim(address={"town": "Sisters", "state": "Oregon", "country": "United States"})
    geocoder = ReverseGeocoder(nominatim=nominatim, min_delay_seconds=0)

    assert await geocoder.reverse(44.29, -121.55) == "Sisters, Oregon"


async def test_results_cached_by_rounded_coordinates():
    nominatim = FakeNominatim(address={"city": "Bend", "state": "Oregon"})
    geocoder = ReverseGeocoder(nominatim=nominatim, min_delay_seconds=0)

    await geocoder.reverse(44.05812, -121.31532)
    await geocoder.reverse(44.05804, -121.31549)

    assert len(nominatim.calls) == 1


async def test_empty_results_cached_too():
    nominatim = FakeNominatim(address=None)
    geocoder = ReverseGeocoder(nominatim=nominatim, min_delay_seconds=0)

    assert await geocoder.reverse(0.0, -150.0) is None
    assert await geocoder.reverse(0.0, -150.0) is None
    assert len(nominatim.calls) == 1


@pytest.mark.parametrize("error", [GeocoderTimedOut("slow"), GeocoderServiceError("503")])
async def test_service_errors_raise_and_are_not_cached(error):
    nominatim = FakeNominatim(error=error)
    geocoder = ReverseGeocoder(nominatim=nominatim, min_delay_seconds=0)

    with pytest.raises(GeocodingError):
        await geocoder.reverse(1.0, 2.0)
    with pytest.raises(GeocodingError):
        await geocoder.reverse(1.0, 2.0)
    assert len(nominatim.calls) == 2


async def test_lookups_are_spaced_by_min_delay():
    nominatim = FakeNominatim(address={"city": "Bend", "state": "Oregon"})
    geocoder = ReverseGeocoder(nominatim=nominatim, min_delay_seconds=0.2)

    started = time.monotonic()
    await geocoder.reverse(44.0, -121.0)
    await geocoder.reverse(45.0, -122.0)

    assert time.monotonic() - started >= 0.19
    assert len(nominatim.calls) == 2


async def test_cached_lookups_skip_the_delay():
    nominatim = FakeNominatim(address={"city": "Bend", "state": "Oregon"})
    geocoder = ReverseGeocoder(nominatim=nominatim, min_delay_seconds=5)

    started = time.monotonic()
    await geocoder.reverse(44.0, -121.0)
    await geocoder.reverse(44.0, -121.0)

    assert time.monotonic() - started < 1
