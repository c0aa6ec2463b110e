"""Geocode job handler: resolve a ride's start coordinates to a place name."""

import logging
from typing import Optional, Protocol

from job_worker.queue.broker import Job
from .validation import require_finite, require_str

logger = logging.getLogger(__name__)

# Rides get "Lat x, Lon y" until geocoded; anything else was set by a person
PLACEHOLDER_PREFIX = "Lat "


class Geocoder(Protocol):
    async def reverse(self, lat: float, lon: float) -> Optional[str]: ...


class RideStore(Protocol):
    async def update_location_if_placeholder(
        self, ride_id: str, location: str, placeholder_prefix: str
    ) -> bool: ...


async def process_geocode_job(job: Job, *, geocoder: Geocoder, rides: RideStore) -> Optional[str]:
    """
    Reverse geocode a ride and store the location.

    The write is conditional: the ride is only updated while its location
    still starts with the placeholder prefix, so a retry never clobbers a
    location the user typed in the meantime.

    Returns:
        The stored location, or None if nothing was written
    """
    data = job.data
    ride_id = require_str(data, "ride_id")
    lat = require_finite(data, "lat")
    lon = require_finite(data, "lon")

    logger.info(f"[GeocodeWorker] Processing ride {ride_id} at ({lat}, {lon})")

    location = await geocoder.reverse(lat, lon)
    if not location:
        # Not an error - some coordinates don't resolve to a place
        logger.info(f"[GeocodeWorker] No location found for ride {ride_id} at ({lat}, {lon})")
        return None

    updated = await rides.update_location_if_placeholder(ride_id, location, PLACEHOLDER_PREFIX)
    if not updated:
        logger.info(f"[GeocodeWorker] Ride {ride_id} not found or location already set, skipping")
        return None

    logger.info(f"[GeocodeWorker] Updated ride {ride_id} location to: {location}")
    return location
