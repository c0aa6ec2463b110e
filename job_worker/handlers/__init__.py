"""Job handlers, one per queue."""

from .backfill import process_backfill_job
from .email import process_email_job
from .geocode import process_geocode_job
from .sync import process_sync_job
from .validation import JobDataError

__all__ = [
    "JobDataError",
    "process_backfill_job",
    "process_email_job",
    "process_geocode_job",
    "process_sync_job",
]
