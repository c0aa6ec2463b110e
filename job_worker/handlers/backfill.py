"""Backfill job handler.

Historical imports are triggered in date-range chunks; the provider then
delivers the activities through its webhooks, so a successful job only
means every chunk was requested.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol
from urllib.parse import urlparse

from job_worker.clients.backend import MinStartDateError
from job_worker.lib.locks import LockNotAcquiredError, ProviderLocks
from job_worker.queue.broker import Job
from .validation import JobDataError, require_str

logger = logging.getLogger(__name__)

# Garmin limits backfill requests to 30-day windows
CHUNK_DAYS = 30

MIN_BACKFILL_YEAR = 2000

YEAR_TO_DATE = "ytd"


class BackfillBackend(Protocol):
    async def request_backfill_chunk(
        self, user_id: str, provider: str, start: datetime, end: datetime
    ) -> bool: ...

    async def get_backfilled_up_to(self, user_id: str, provider: str, year: str) -> Optional[datetime]: ...

    async def set_backfill_status(
        self,
        user_id: str,
        provider: str,
        year: str,
        status: str,
        backfilled_up_to: Optional[datetime] = None,
        only_if_not: Optional[str] = None,
    ) -> None: ...

    async def process_callback(self, user_id: str, provider: str, callback_url: str) -> dict[str, Any]: ...


@dataclass
class ChunkSummary:
    accepted: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def all_duplicates(self) -> bool:
        return self.duplicates > 0 and self.accepted == 0 and not self.errors


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_date_range(
    year: str,
    now: datetime,
    backfilled_up_to: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """
    Date range covered by a backfill year.

    "ytd" runs from Jan 1 (or just after the previous YTD backfill) to now;
    a calendar year must lie in [2000, current year].
    """
    if year == YEAR_TO_DATE:
        if backfilled_up_to is not None:
            start = backfilled_up_to + timedelta(seconds=1)
        else:
            start = datetime(now.year, 1, 1, tzinfo=timezone.utc)
        return start, now

    try:
        year_num = int(year)
    except (TypeError, ValueError):
        raise JobDataError(f"Invalid year: {year}")
    if year_num < MIN_BACKFILL_YEAR or year_num > now.year:
        raise JobDataError(f"Invalid year: {year}")

    return (
        datetime(year_num, 1, 1, tzinfo=timezone.utc),
        datetime(year_num, 12, 31, 23, 59, 59, tzinfo=timezone.utc),
    )


async def _request_chunks(
    backend: BackfillBackend,
    user_id: str,
    provider: str,
    start: datetime,
    end: datetime,
) -> ChunkSummary:
    summary = ChunkSummary()
    current = start
    while current < end:
        chunk_end = min(current + timedelta(days=CHUNK_DAYS), end)
        try:
            if await backend.request_backfill_chunk(user_id, provider, current, chunk_end):
                summary.accepted += 1
                logger.info(f"[BackfillWorker] Chunk {summary.accepted} accepted")
            else:
                summary.duplicates += 1
                logger.warning(f"[BackfillWorker] Chunk starting {current.date()} already completed (409)")
        except MinStartDateError as e:
            if e.min_start > current:
                logger.warning(
                    f"[BackfillWorker] Adjusting start from {current.isoformat()} "
                    f"to provider minimum {e.min_start.isoformat()}"
                )
                current = e.min_start
                continue
            logger.error(f"[BackfillWorker] Chunk starting {current.date()} failed: {e}")
            summary.errors.append(f"Failed for {current.date()}: {e}")
        except Exception as e:
            # One failed window shouldn't stop the remaining windows
            logger.error(f"[BackfillWorker] Chunk starting {current.date()} failed: {e}")
            summary.errors.append(f"Failed for {current.date()}: {e}")
        current = chunk_end
    return summary


async def _backfill_year(
    backend: BackfillBackend,
    user_id: str,
    provider: str,
    year: str,
    now: datetime,
) -> None:
    backfilled_up_to = None
    if year == YEAR_TO_DATE:
        backfilled_up_to = await backend.get_backfilled_up_to(user_id, provider, year)

    start, end = resolve_date_range(year, now, backfilled_up_to)
    logger.info(f"[BackfillWorker] {provider} backfill range {start.isoformat()} - {end.isoformat()} ({year})")

    summary = await _request_chunks(backend, user_id, provider, start, end)
    logger.info(
        f"[BackfillWorker] {summary.accepted} chunks accepted, {summary.duplicates} duplicates ({year})"
    )

    if summary.all_duplicates:
        logger.warning(f"[BackfillWorker] Backfill already completed for {user_id} {year}")
        await backend.set_backfill_status(user_id, provider, year, "completed")
        return

    if year == YEAR_TO_DATE:
        await backend.set_backfill_status(
            user_id, provider, year, "in_progress", backfilled_up_to=end, only_if_not="completed"
        )

    if summary.accepted == 0 and summary.errors:
        raise RuntimeError(f"Failed to trigger any backfill chunks: {', '.join(summary.errors)}")
    # "completed" is set by the webhook side once activities arrive


def validate_callback_url(url: Any) -> str:
    if not isinstance(url, str) or not url.strip():
        raise JobDataError("Invalid job data: callback_url is required")
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise JobDataError("Invalid job data: callback_url must be an http(s) URL")
    return url.strip()


async def process_backfill_job(
    job: Job,
    *,
    backend: BackfillBackend,
    locks: ProviderLocks,
    clock: Callable[[], datetime] = _utcnow,
) -> None:
    user_id = require_str(job.data, "user_id")
    provider = require_str(job.data, "provider")
    if provider != "garmin":
        raise JobDataError(f"Unsupported provider for backfill: {provider}")

    if job.name == "processCallback":
        callback_url = validate_callback_url(job.data.get("callback_url"))
        logger.info(f"[BackfillWorker] Processing callback for user {user_id}")
        await backend.process_callback(user_id, provider, callback_url)
        return
    if job.name != "backfillYear":
        raise ValueError(f"Unknown backfill job type: {job.name}")

    year = require_str(job.data, "year")
    now = clock()
    # Reject bad years before touching backfill state
    if year != YEAR_TO_DATE:
        resolve_date_range(year, now)

    logger.info(f"[BackfillWorker] Processing backfill {provider}/{year} for user {user_id}")
    # A completed request is never downgraded
    await backend.set_backfill_status(user_id, provider, year, "in_progress", only_if_not="completed")

    lock = await locks.acquire("backfill", provider, user_id)
    if lock is None:
        raise LockNotAcquiredError(f"Lock not available for {provider}:{user_id}, will retry")

    try:
        await _backfill_year(backend, user_id, provider, year, now)
    except Exception as e:
        logger.error(f"[BackfillWorker] {provider}/{year} failed: {e}")
        await backend.set_backfill_status(user_id, provider, year, "failed")
        raise
    finally:
        await locks.release(lock)
        logger.info(f"[BackfillWorker] Released lock for {provider}:{user_id}")
