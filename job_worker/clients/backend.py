"""HTTP client for the backend's internal service API.

The backend owns rides, users and provider tokens. Handlers reach that
state only through these calls; every write that could race a user edit
carries its precondition so the backend can apply it atomically.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Optional
import logging

import httpx

from job_worker.config import get_settings

logger = logging.getLogger(__name__)

# Garmin rejects windows that start before the user's earliest data
MIN_START_PATTERN = re.compile(r"min start time of ([0-9T:.-]+Z)", re.IGNORECASE)


class MinStartDateError(Exception):
    """The provider wants the backfill window to start no earlier than `min_start`."""

    def __init__(self, min_start: datetime):
        super().__init__(f"Backfill must start at or after {min_start.isoformat()}")
        self.min_start = min_start


def extract_min_start_date(response: httpx.Response) -> Optional[datetime]:
    """Minimum start date from a rejected backfill request, rounded up to the second."""
    try:
        body = response.json()
    except ValueError:
        return None
    message = body.get("errorMessage") if isinstance(body, dict) else None
    match = MIN_START_PATTERN.search(message if isinstance(message, str) else str(body))
    if not match:
        return None
    try:
        parsed = datetime.fromisoformat(match.group(1).replace("Z", "+00:00"))
    except ValueError:
        return None
    return datetime.fromtimestamp(math.ceil(parsed.timestamp()), timezone.utc)


class BackendClient:
    """Service-to-service client authenticated with the service token."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        service_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        settings = get_settings()
        token = settings.service_token if service_token is None else service_token
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.backend_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post(path, json=payload)
        response.raise_for_status()
        return response.json() if response.content else {}

    # ==================== Rides ====================

    async def update_location_if_placeholder(
        self,
        ride_id: str,
        location: str,
        placeholder_prefix: str,
    ) -> bool:
        """
        Set a ride's location only while it still holds the placeholder.

        Returns True if the ride was updated, False if it is gone or the
        location was already changed (e.g. by the user).
        """
        result = await self._post(
            f"/api/internal/rides/{ride_id}/location",
            {"location": location, "onlyIfStartsWith": placeholder_prefix},
        )
        return bool(result.get("updated"))

    # ==================== Users ====================

    async def is_email_unsubscribed(self, user_id: str) -> bool:
        response = await self._client.get(f"/api/internal/users/{user_id}/email-preferences")
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return bool(response.json().get("emailUnsubscribed"))

    # ==================== Provider sync ====================

    async def sync_latest(self, user_id: str, provider: str) -> dict[str, Any]:
        return await self._post(
            "/api/internal/sync/latest",
            {"userId": user_id, "provider": provider},
        )

    async def sync_activity(self, user_id: str, provider: str, activity_id: str) -> dict[str, Any]:
        return await self._post(
            "/api/internal/sync/activity",
            {"userId": user_id, "provider": provider, "activityId": activity_id},
        )

    # ==================== Backfill ====================

    async def request_backfill_chunk(
        self,
        user_id: str,
        provider: str,
        start: datetime,
        end: datetime,
    ) -> bool:
        """
        Ask the provider to backfill one date range.

        Returns False when the provider reports the range as already
        requested (HTTP 409), which is not an error.

        Raises:
            MinStartDateError: the range starts before the earliest date the
                provider accepts (HTTP 400 naming a min start time)
        """
        response = await self._client.post(
            "/api/internal/backfill/chunk",
            json={
                "userId": user_id,
                "provider": provider,
                "start": start.isoformat(),
                "end": end.isoformat(),
            },
        )
        if response.status_code == 409:
            return False
        if response.status_code == 400:
            min_start = extract_min_start_date(response)
            if min_start is not None:
                raise MinStartDateError(min_start)
        response.raise_for_status()
        return True

    async def get_backfilled_up_to(self, user_id: str, provider: str, year: str) -> Optional[datetime]:
        response = await self._client.get(
            "/api/internal/backfill/status",
            params={"userId": user_id, "provider": provider, "year": year},
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        value = response.json().get("backfilledUpTo")
        return datetime.fromisoformat(value) if value else None

    async def set_backfill_status(
        self,
        user_id: str,
        provider: str,
        year: str,
        status: str,
        backfilled_up_to: Optional[datetime] = None,
        only_if_not: Optional[str] = None,
    ) -> None:
        """Record backfill progress; `only_if_not` leaves a request already in that status untouched."""
        payload = {"userId": user_id, "provider": provider, "year": year, "status": status}
        if only_if_not is not None:
            payload["onlyIfNot"] = only_if_not
        if backfilled_up_to is not None:
            payload["backfilledUpTo"] = backfilled_up_to.isoformat()
        await self._post("/api/internal/backfill/status", payload)

    async def process_callback(self, user_id: str, provider: str, callback_url: str) -> dict[str, Any]:
        return await self._post(
            "/api/internal/backfill/callback",
            {"userId": user_id, "provider": provider, "callbackURL": callback_url},
        )
