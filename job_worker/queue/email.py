"""Email queue: transactional emails and the scheduled welcome series."""

import logging
from typing import Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel

from .base import EnqueueResult, JobQueue, queues
from .broker import Backoff, BackoffKind, QueuePolicy
from .keys import build_email_job_id

logger = logging.getLogger(__name__)

HOURS = 60 * 60
DAYS = 24 * HOURS

EmailJobName = Literal["activation", "welcome-1", "welcome-2", "welcome-3"]

EMAIL_JOB_NAMES: tuple[str, ...] = ("activation", "welcome-1", "welcome-2", "welcome-3")

# Welcome series delays after activation, in seconds
WELCOME_EMAIL_DELAYS: dict[str, int] = {
    "welcome-1": 1 * DAYS,  # Getting started tips
    "welcome-2": 3 * DAYS,  # Feature highlights
    "welcome-3": 7 * DAYS,  # Integration prompts
}

EMAIL_POLICY = QueuePolicy(
    max_attempts=3,
    backoff=Backoff(BackoffKind.EXPONENTIAL, delay_seconds=1),
    remove_on_complete=100,
    remove_on_fail=500,
)


class EmailJobData(BaseModel):
    user_id: str
    email: str
    name: Optional[str] = None
    temp_password: Optional[str] = None  # Only for activation emails


class EmailQueue(JobQueue[EmailJobData]):
    name = "email"
    job_names = EMAIL_JOB_NAMES
    payload_model = EmailJobData
    default_policy = EMAIL_POLICY

    def build_key(self, job_name: str, payload: EmailJobData) -> str:
        return build_email_job_id(job_name, payload.user_id)


def get_email_queue() -> EmailQueue:
    """Get or create the email queue singleton."""
    return queues.get(EmailQueue)


async def enqueue_activation_email(data: Union[EmailJobData, Mapping[str, Any]]) -> EnqueueResult:
    return await get_email_queue().enqueue("activation", data)


async def schedule_welcome_series(
    user_id: str,
    email: str,
    name: Optional[str] = None,
) -> list[EnqueueResult]:
    """
    Schedule the welcome email series for a newly activated user.

    Emails are sent at day 1, 3 and 7. Re-scheduling while the series is
    still pending reports every job as already queued.
    """
    queue = get_email_queue()
    data = EmailJobData(user_id=user_id, email=email, name=name)

    results = []
    for job_name, delay in WELCOME_EMAIL_DELAYS.items():
        results.append(await queue.enqueue(job_name, data, delay_seconds=delay))

    logger.info(f"[EmailQueue] Scheduled welcome series for user {user_id}")
    return results


async def cancel_welcome_series(user_id: str) -> list[str]:
    """Remove welcome emails that have not been sent yet. Returns the removed ids."""
    queue = get_email_queue()
    removed = []
    for job_name in WELCOME_EMAIL_DELAYS:
        job_id = build_email_job_id(job_name, user_id)
        if await queue.cancel(job_id):
            removed.append(job_id)

    if removed:
        logger.info(f"[EmailQueue] Cancelled {len(removed)} welcome emails for user {user_id}")
    return removed


async def close_email_queue() -> None:
    await queues.close(EmailQueue)
