"""Backfill queue: low-priority historical imports and provider callbacks."""

from typing import Any, Literal, Mapping, Union

from pydantic import BaseModel

from .base import EnqueueResult, JobQueue, queues
from .broker import Backoff, BackoffKind, QueuePolicy
from .keys import build_backfill_job_id, build_callback_job_id

BackfillProvider = Literal["garmin"]

BACKFILL_JOB_NAMES: tuple[str, ...] = ("backfillYear", "processCallback")

# Lower priority than sync jobs (which are 1)
LOW_PRIORITY = 10

BACKFILL_POLICY = QueuePolicy(
    max_attempts=3,
    backoff=Backoff(BackoffKind.EXPONENTIAL, delay_seconds=60),
    priority=LOW_PRIORITY,
    remove_on_complete=50,
    remove_on_fail=100,
)


class BackfillJobData(BaseModel):
    user_id: str
    provider: BackfillProvider
    year: str  # "ytd", "2025", "2024", ...


class CallbackJobData(BaseModel):
    user_id: str
    provider: BackfillProvider
    callback_url: str


class BackfillQueue(JobQueue[BaseModel]):
    name = "backfill"
    job_names = BACKFILL_JOB_NAMES
    payload_model = BackfillJobData
    default_policy = BACKFILL_POLICY

    def payload_model_for(self, job_name: str) -> type[BaseModel]:
        if job_name == "processCallback":
            return CallbackJobData
        return BackfillJobData

    def build_key(self, job_name: str, payload: BaseModel) -> str:
        if isinstance(payload, CallbackJobData):
            # Callback URLs are unbounded text, so the id carries a hash
            return build_callback_job_id(payload.provider, payload.user_id, payload.callback_url)
        return build_backfill_job_id(payload.provider, payload.user_id, payload.year)


def get_backfill_queue() -> BackfillQueue:
    """Get or create the backfill queue singleton."""
    return queues.get(BackfillQueue)


async def enqueue_backfill_job(data: Union[BackfillJobData, Mapping[str, Any]]) -> EnqueueResult:
    """Enqueue a year backfill; a duplicate returns status "already_queued"."""
    return await get_backfill_queue().enqueue("backfillYear", data)


async def enqueue_callback_job(data: Union[CallbackJobData, Mapping[str, Any]]) -> EnqueueResult:
    """Enqueue processing of a provider backfill callback URL."""
    return await get_backfill_queue().enqueue("processCallback", data)


async def close_backfill_queue() -> None:
    await queues.close(BackfillQueue)
