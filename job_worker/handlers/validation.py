"""Payload checks shared by the job handlers."""

import math
from typing import Any, Mapping


class JobDataError(ValueError):
    """
    The job payload is malformed.

    Raised before any side effect. It is handled like every other handler
    failure: the job is retried until its attempts run out.
    """


def require_str(data: Mapping[str, Any], field: str) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise JobDataError(f"Invalid job data: {field} is required")
    return value.strip()


def require_finite(data: Mapping[str, Any], field: str) -> float:
    value = data.get(field)
    # bool is an int subclass but never a coordinate
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise JobDataError(f"Invalid job data: {field} must be a finite number")
    return float(value)
