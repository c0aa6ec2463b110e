"""Metrics endpoint for monitoring queue depth."""

from datetime import datetime, timezone
import logging

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from job_worker.queue import (
    get_backfill_queue,
    get_email_queue,
    get_geocode_queue,
    get_sync_queue,
)

router = APIRouter(prefix="/metrics", tags=["metrics"])
logger = logging.getLogger(__name__)

# Failed jobs above this count flag the queue in the summary
FAILED_ALERT_THRESHOLD = 10


def _all_queues():
    return [get_sync_queue(), get_backfill_queue(), get_email_queue(), get_geocode_queue()]


async def _collect_counts() -> dict[str, dict[str, int]]:
    return {queue.name: await queue.counts() for queue in _all_queues()}


@router.get("")
async def get_metrics():
    """
    Get current job counts per queue and state.

    Returns:
        Counts for waiting, delayed, active, completed and failed jobs
    """
    try:
        counts = await _collect_counts()
    except Exception as e:
        logger.error(f"Failed to get metrics: {e}")
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "error": str(e),
            "queues": {"error": "Redis unavailable"},
        }

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "redis_connected": True,
        "queues": counts,
        "total_pending": sum(c["waiting"] + c["delayed"] for c in counts.values()),
        "alerts": [
            f"{name} has {c['failed']} failed jobs"
            for name, c in counts.items()
            if c["failed"] > FAILED_ALERT_THRESHOLD
        ],
    }


@router.get("/prometheus", response_class=PlainTextResponse)
async def get_prometheus_metrics():
    """Get metrics in Prometheus exposition format."""
    try:
        counts = await _collect_counts()
    except Exception as e:
        return f"# Error getting metrics: {e}\n"

    lines = [
        "# HELP loam_jobs Number of jobs per queue and state",
        "# TYPE loam_jobs gauge",
    ]
    for name, by_state in counts.items():
        for state, count in by_state.items():
            lines.append(f'loam_jobs{{queue="{name}",state="{state}"}} {count}')
    lines.append("")
    return "\n".join(lines)
