"""Deterministic job ids.

A job id is derived only from the fields that identify the work, never
from timestamps or free text, so the same logical job always maps to the
same broker key and a second enqueue is rejected as a duplicate.
"""

import hashlib
import re
from typing import Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def _part(name: str, value: str) -> str:
    """Check one required key component."""
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} is required to build a job id")
    if _CONTROL_CHARS.search(value):
        raise ValueError(f"{name} contains control characters")
    return value


def _optional_part(name: str, value: Optional[str]) -> Optional[str]:
    # An empty sub-identifier is the same as no sub-identifier
    if value is None or value == "":
        return None
    return _part(name, value)


def content_hash(value: str, length: int = 12) -> str:
    """
    Short stable digest of unbounded input.

    MD5 is fine here: the hash only deduplicates jobs, it is not a
    security boundary.
    """
    return hashlib.md5(value.encode("utf-8")).hexdigest()[:length]


def build_sync_job_id(
    job_name: str,
    provider: str,
    user_id: str,
    activity_id: Optional[str] = None,
) -> str:
    """
    Build a deterministic job id for sync jobs.

    Format: syncLatest:<provider>:<userId> or
    syncActivity:<provider>:<userId>:<activityId>

    "Latest" syncs are singular per user and provider, so an activity id is
    ignored for them.
    """
    parts = [
        _part("job_name", job_name),
        _part("provider", provider),
        _part("user_id", user_id),
    ]
    if job_name == "syncActivity":
        activity = _optional_part("activity_id", activity_id)
        if activity:
            parts.append(activity)
    return ":".join(parts)


def build_backfill_job_id(provider: str, user_id: str, year: str) -> str:
    """Format: backfillYear_<provider>_<userId>_<year>"""
    return "_".join([
        "backfillYear",
        _part("provider", provider),
        _part("user_id", user_id),
        _part("year", year),
    ])


def build_callback_job_id(provider: str, user_id: str, callback_url: str) -> str:
    """Format: processCallback_<provider>_<userId>_<md5(callbackURL)[:12]>"""
    url_hash = content_hash(_part("callback_url", callback_url))
    return "_".join([
        "processCallback",
        _part("provider", provider),
        _part("user_id", user_id),
        url_hash,
    ])


def build_email_job_id(job_name: str, user_id: str) -> str:
    """Format: <jobName>-<userId>, e.g. welcome-1-user123"""
    return f"{_part('job_name', job_name)}-{_part('user_id', user_id)}"


def build_geocode_job_id(ride_id: str) -> str:
    """One geocode job per ride."""
    return f"geocode-{_part('ride_id', ride_id)}"
