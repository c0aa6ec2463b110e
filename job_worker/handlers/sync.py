"""Sync job handler: pull new activities from a connected provider."""

import logging
from typing import Any, Optional, Protocol

from job_worker.lib.locks import LockNotAcquiredError, ProviderLocks
from job_worker.queue.broker import Job
from .validation import JobDataError, require_str

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("strava", "garmin", "suunto")

# Accepted by the queue but not wired to a provider API yet
UNIMPLEMENTED_PROVIDERS = ("suunto",)


class SyncBackend(Protocol):
    async def sync_latest(self, user_id: str, provider: str) -> dict[str, Any]: ...

    async def sync_activity(self, user_id: str, provider: str, activity_id: str) -> dict[str, Any]: ...


async def process_sync_job(job: Job, *, backend: SyncBackend, locks: ProviderLocks) -> Optional[dict[str, Any]]:
    """
    Run one sync job under the per-user provider lock.

    A held lock raises LockNotAcquiredError so the job goes back through
    the retry policy instead of syncing twice in parallel.
    """
    user_id = require_str(job.data, "user_id")
    provider = require_str(job.data, "provider")
    if provider not in SUPPORTED_PROVIDERS:
        raise JobDataError(f"Unknown provider: {provider}")

    activity_id = None
    if job.name == "syncActivity":
        activity_id = job.data.get("activity_id")
        if not isinstance(activity_id, str) or not activity_id:
            raise JobDataError("syncActivity requires activity_id")
    elif job.name != "syncLatest":
        raise ValueError(f"Unknown sync job type: {job.name}")

    logger.info(f"[SyncWorker] Processing {job.name} for user {user_id}, provider {provider}")

    lock = await locks.acquire("sync", provider, user_id)
    if lock is None:
        raise LockNotAcquiredError(f"Lock not available for {provider}:{user_id}, will retry")

    try:
        if provider in UNIMPLEMENTED_PROVIDERS:
            logger.info(f"[SyncWorker] {provider} sync not yet implemented")
            return None
        if activity_id is not None:
            return await backend.sync_activity(user_id, provider, activity_id)
        return await backend.sync_latest(user_id, provider)
    finally:
        await locks.release(lock)
        logger.info(f"[SyncWorker] Released lock for {provider}:{user_id}")
