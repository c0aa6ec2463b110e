"""Sync queue: high-priority provider syncs (webhook- and login-triggered)."""

from typing import Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel

from .base import EnqueueResult, JobQueue, queues
from .broker import Backoff, BackoffKind, QueuePolicy
from .keys import build_sync_job_id

SyncProvider = Literal["strava", "garmin", "suunto"]
SyncJobName = Literal["syncLatest", "syncActivity"]

SYNC_JOB_NAMES: tuple[str, ...] = ("syncLatest", "syncActivity")

# Served before backfill and geocode work
HIGH_PRIORITY = 1

SYNC_POLICY = QueuePolicy(
    max_attempts=5,
    backoff=Backoff(BackoffKind.EXPONENTIAL, delay_seconds=2),
    priority=HIGH_PRIORITY,
    remove_on_complete=100,
    remove_on_fail=500,
)


class SyncJobData(BaseModel):
    user_id: str
    provider: SyncProvider
    activity_id: Optional[str] = None  # For syncActivity jobs


class SyncQueue(JobQueue[SyncJobData]):
    name = "sync"
    job_names = SYNC_JOB_NAMES
    payload_model = SyncJobData
    default_policy = SYNC_POLICY

    def build_key(self, job_name: str, payload: SyncJobData) -> str:
        return build_sync_job_id(job_name, payload.provider, payload.user_id, payload.activity_id)


def get_sync_queue() -> SyncQueue:
    """Get or create the sync queue singleton."""
    return queues.get(SyncQueue)


async def enqueue_sync_job(
    job_name: SyncJobName,
    data: Union[SyncJobData, Mapping[str, Any]],
) -> EnqueueResult:
    """Enqueue a sync job; a duplicate returns status "already_queued"."""
    return await get_sync_queue().enqueue(job_name, data)


async def close_sync_queue() -> None:
    await queues.close(SyncQueue)
