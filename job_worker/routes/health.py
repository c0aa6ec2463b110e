"""Health check endpoints."""

from datetime import datetime, timezone
import asyncio
import logging

from fastapi import APIRouter

from job_worker.queue import get_connection_provider

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/")
async def health_check():
    """Basic health check - always returns ok if service is running."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "job-worker",
        "version": "0.1.0"
    }


@router.get("/ready")
async def readiness_check():
    """Readiness check: the broker must answer a ping."""
    redis_status = await _check_redis()
    return {
        "status": "ok" if redis_status["status"] == "ok" else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {"redis": redis_status},
        "config": {"redis_url": get_connection_provider().redacted_url},
    }


async def _check_redis() -> dict:
    """Check Redis connection."""
    client = get_connection_provider().create_client()
    try:
        await asyncio.wait_for(client.ping(), timeout=5.0)
        return {"status": "ok"}
    except asyncio.TimeoutError:
        return {"status": "timeout", "error": "Connection timed out"}
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        return {"status": "error", "error": str(e)}
    finally:
        await client.aclose()
