"""Email job handler."""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

from job_worker.config import Settings, get_settings
from job_worker.lib.unsubscribe_token import generate_unsubscribe_token
from job_worker.queue.broker import Job
from . import email_templates
from .validation import JobDataError, require_str

logger = logging.getLogger(__name__)

# RFC 5322 simplified
EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MAX_EMAIL_LENGTH = 254  # RFC 5321
MAX_NAME_LENGTH = 100

MARKETING_JOBS = ("welcome-1", "welcome-2", "welcome-3")


class EmailSender(Protocol):
    async def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> str: ...


class UserPreferences(Protocol):
    async def is_email_unsubscribed(self, user_id: str) -> bool: ...


@dataclass(frozen=True)
class ValidatedEmailJob:
    user_id: str
    email: str
    name: Optional[str]
    temp_password: Optional[str]


def validate_email_job(job_name: str, data: dict) -> ValidatedEmailJob:
    """
    Validate and sanitize email job data.

    Raises:
        JobDataError: with a message naming the bad field
    """
    user_id = require_str(data, "user_id")

    email = data.get("email")
    if not isinstance(email, str):
        raise JobDataError("Invalid job data: email is required")
    email = email.strip().lower()
    if not email:
        raise JobDataError("Invalid job data: email cannot be empty")
    if len(email) > MAX_EMAIL_LENGTH:
        raise JobDataError(f"Invalid job data: email exceeds {MAX_EMAIL_LENGTH} characters")
    if not EMAIL_REGEX.match(email):
        raise JobDataError("Invalid job data: email format is invalid")

    name = data.get("name")
    if name is not None:
        if not isinstance(name, str):
            raise JobDataError("Invalid job data: name must be a string")
        name = name.strip() or None
        if name and len(name) > MAX_NAME_LENGTH:
            raise JobDataError(f"Invalid job data: name exceeds {MAX_NAME_LENGTH} characters")

    temp_password = data.get("temp_password")
    if job_name == "activation" and (not isinstance(temp_password, str) or not temp_password):
        raise JobDataError("Invalid job data: activation email requires temp_password")

    return ValidatedEmailJob(user_id=user_id, email=email, name=name, temp_password=temp_password)


def render_email(job_name: str, data: ValidatedEmailJob, settings: Settings) -> email_templates.RenderedEmail:
    token = generate_unsubscribe_token(data.user_id, settings.session_secret)
    unsubscribe_url = f"{settings.api_url}/api/email/unsubscribe?token={token}"
    frontend = settings.frontend_url

    if job_name == "activation":
        return email_templates.render_activation(
            data.name, data.email, data.temp_password, f"{frontend}/login", unsubscribe_url
        )
    if job_name == "welcome-1":
        return email_templates.render_welcome_1(data.name, f"{frontend}/dashboard", unsubscribe_url)
    if job_name == "welcome-2":
        return email_templates.render_welcome_2(data.name, f"{frontend}/gear", unsubscribe_url)
    if job_name == "welcome-3":
        return email_templates.render_welcome_3(data.name, f"{frontend}/settings", unsubscribe_url)
    raise ValueError(f"Unknown email job type: {job_name}")


async def process_email_job(
    job: Job,
    *,
    sender: EmailSender,
    users: UserPreferences,
    settings: Optional[Settings] = None,
) -> Optional[str]:
    """
    Send one email.

    Welcome emails are skipped for users who unsubscribed after the series
    was scheduled.

    Returns:
        Provider message id, or None when skipped
    """
    settings = settings or get_settings()
    data = validate_email_job(job.name, job.data)

    logger.info(f"[EmailWorker] Processing {job.name} for {data.email}")

    if job.name in MARKETING_JOBS and await users.is_email_unsubscribed(data.user_id):
        logger.info(f"[EmailWorker] Skipping {job.name} for {data.email} - user unsubscribed")
        return None

    rendered = render_email(job.name, data, settings)
    return await sender.send(data.email, rendered.subject, rendered.html)
