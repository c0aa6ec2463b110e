"""Reverse geocoding of ride coordinates via Nominatim (OpenStreetMap)."""

from collections import OrderedDict
from typing import Optional, Sequence
import asyncio
import logging
import math

from geopy.exc import GeocoderServiceError, GeocoderTimedOut
from geopy.extra.rate_limiter import AsyncRateLimiter
from geopy.geocoders import Nominatim

from job_worker.config import get_settings

logger = logging.getLogger(__name__)

CACHE_MAX_SIZE = 1000


class GeocodingError(Exception):
    """The geocoding service failed; the lookup may succeed later."""


def build_location_string(parts: Sequence[Optional[str]]) -> Optional[str]:
    """Join non-empty parts with ", ", or None if nothing is left."""
    cleaned = [part.strip() for part in parts if isinstance(part, str) and part.strip()]
    return ", ".join(cleaned) if cleaned else None


def format_lat_lon(lat: Optional[float], lon: Optional[float]) -> Optional[str]:
    """Placeholder location used until a ride is geocoded: "Lat 45.123, Lon -122.456"."""
    if lat is None or lon is None or not math.isfinite(lat) or not math.isfinite(lon):
        return None
    return f"Lat {lat:.3f}, Lon {lon:.3f}"


def _cache_key(lat: float, lon: float) -> str:
    # ~111m precision groups nearby ride starts
    return f"{lat:.3f}:{lon:.3f}"


class ReverseGeocoder:
    """Coordinates to "City, State" with rate limiting and caching."""

    def __init__(
        self,
        nominatim: Optional[Nominatim] = None,
        min_delay_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self._nominatim = nominatim or Nominatim(
            user_agent=settings.nominatim_user_agent,
            timeout=10
        )
        if min_delay_seconds is None:
            min_delay_seconds = settings.geocode_min_interval_seconds
        # Nominatim usage policy: at most one request per second.
        # Errors surface to the job, which retries through the queue backoff.
        self._lookup = AsyncRateLimiter(
            self._lookup_in_executor,
            min_delay_seconds=min_delay_seconds,
            max_retries=0,
            swallow_exceptions=False,
        )
        self._cache: OrderedDict[str, Optional[str]] = OrderedDict()

    async def reverse(self, lat: float, lon: float) -> Optional[str]:
        """
        Reverse geocode coordinates.

        Returns:
            "City, State" (or the parts that exist), None when the point has
            no address (ocean, wilderness). Empty results are cached too.

        Raises:
            GeocodingError: service unavailable or timed out
        """
        key = _cache_key(lat, lon)
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        try:
            location = await self._lookup(lat, lon)
        except (GeocoderTimedOut, GeocoderServiceError) as e:
            logger.warning(f"Reverse geocoding failed for ({lat:.3f}, {lon:.3f}): {e}")
            raise GeocodingError(str(e)) from e

        result = None
        if location is not None:
            address = (getattr(location, "raw", None) or {}).get("address") or {}
            city = (
                address.get("city")
                or address.get("town")
                or address.get("village")
                or address.get("hamlet")
                or address.get("municipality")
            )
            state = address.get("state") or address.get("state_district")
            result = build_location_string([city, state])

        self._remember(key, result)
        return result

    async def _lookup_in_executor(self, lat: float, lon: float):
        # Run in executor since geopy is synchronous
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self._nominatim.reverse(
                (lat, lon),
                exactly_one=True,
                addressdetails=True,
                language="en",
            )
        )

    def _remember(self, key: str, value: Optional[str]) -> None:
        self._cache[key] = value
        self._cache.move_to_end(key)
        while len(self._cache) > CACHE_MAX_SIZE:
            self._cache.popitem(last=False)
