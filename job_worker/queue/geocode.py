"""Geocode queue: reverse geocoding of ride start coordinates."""

from typing import Any, Literal, Mapping, Union

from pydantic import BaseModel

from .base import EnqueueResult, JobQueue, queues
from .broker import Backoff, BackoffKind, QueuePolicy
from .keys import build_geocode_job_id

GeocodeJobName = Literal["geocodeRide"]

GEOCODE_JOB_NAMES: tuple[str, ...] = ("geocodeRide",)

GEOCODE_POLICY = QueuePolicy(
    max_attempts=3,
    backoff=Backoff(BackoffKind.EXPONENTIAL, delay_seconds=2),
    # Lower priority than sync jobs (higher number = lower priority)
    priority=20,
    remove_on_complete=10,
    remove_on_fail=50,
)


class GeocodeJobData(BaseModel):
    ride_id: str
    lat: float
    lon: float


class GeocodeQueue(JobQueue[GeocodeJobData]):
    name = "geocode"
    job_names = GEOCODE_JOB_NAMES
    payload_model = GeocodeJobData
    default_policy = GEOCODE_POLICY

    def build_key(self, job_name: str, payload: GeocodeJobData) -> str:
        return build_geocode_job_id(payload.ride_id)


def get_geocode_queue() -> GeocodeQueue:
    """Get or create the geocode queue singleton."""
    return queues.get(GeocodeQueue)


async def add_geocode_job(data: Union[GeocodeJobData, Mapping[str, Any]]) -> EnqueueResult:
    """Queue a ride for geocoding. The ride id dedups the job."""
    return await get_geocode_queue().enqueue("geocodeRide", data)


async def close_geocode_queue() -> None:
    await queues.close(GeocodeQueue)
