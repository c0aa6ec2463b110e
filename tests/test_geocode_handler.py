"""Tests for the geocode job handler."""

import math

import pytest

from job_worker.handlers import JobDataError, process_geocode_job
from job_worker.handlers.geocode import PLACEHOLDER_PREFIX


class FakeGeocoder:
    def __init__(self, result="Bend, Oregon"):
        self.result = result
        self.calls = []

    async def reverse(self, lat, lon):
        self.calls.append((lat, lon))
        return self.result


class FakeRides:
    def __init__(self, updated=True):
        self.updated = updated
        self.calls = []

    async def update_location_if_placeholder(self, ride_id, location, placeholder_prefix):
        self.calls.append((ride_id, location, placeholder_prefix))
        return self.updated


async def test_updates_ride_location(make_job):
    geocoder, rides = FakeGeocoder(), FakeRides()
    job = make_job("geocodeRide", {"ride_id": "ride-1", "lat": 44.05, "lon": -121.31})

    result = await process_geocode_job(job, geocoder=geocoder, rides=rides)

    assert result == "Bend, Oregon"
    assert geocoder.calls == [(44.05, -121.31)]
    assert rides.calls == [("ride-1", "Bend, Oregon", PLACEHOLDER_PREFIX)]


async def test_user_edited_location_left_alone(make_job):
    rides = FakeRides(updated=False)
    job = make_job("geocodeRide", {"ride_id": "ride-1", "lat": 44.05, "lon": -121.31})

    assert await process_geocode_job(job, geocoder=FakeGeocoder(), rides=rides) is None
    assert len(rides.calls) == 1


async def test_no_location_is_success_without_write(make_job):
    rides = FakeRides()
    job = make_job("geocodeRide", {"ride_id": "ride-1", "lat": 0.0, "lon": -150.0})

    assert await process_geocode_job(job, geocoder=FakeGeocoder(result=None), rides=rides) is None
    assert rides.calls == []


@pytest.mark.parametrize("data", [
    {"ride_id": "ride-1", "lat": None, "lon": 1.0},
    {"ride_id": "ride-1", "lat": math.nan, "lon": 1.0},
    {"ride_id": "ride-1", "lat": 1.0, "lon": math.inf},
    {"ride_id": "ride-1", "lat": "45.5", "lon": 1.0},
    {"ride_id": "ride-1", "lat": True, "lon": 1.0},
    {"ride_id": "", "lat": 1.0, "lon": 1.0},
    {"lat": 1.0, "lon": 1.0},
])
async def test_invalid_data_rejected_before_lookup(make_job, data):
    geocoder, rides = FakeGeocoder(), FakeRides()

    with pytest.raises(JobDataError):
        await process_geocode_job(make_job("geocodeRide", data), geocoder=geocoder, rides=rides)

    assert geocoder.calls == []
    assert rides.calls == []


async def test_geocoder_errors_propagate(make_job):
    class BrokenGeocoder:
        async def reverse(self, lat, lon):
            raise RuntimeError("nominatim down")

    rides = FakeRides()
    job = make_job("geocodeRide", {"ride_id": "ride-1", "lat": 1.0, "lon": 2.0})
    with pytest.raises(RuntimeError):
        await process_geocode_job(job, geocoder=BrokenGeocoder(), rides=rides)
    assert rides.calls == []
