"""Tests for the health and metrics endpoints."""

import httpx
import pytest
from fastapi import FastAPI

from job_worker.queue import enqueue_sync_job, schedule_welcome_series
from job_worker.routes import health
from job_worker.routes.metrics import router as metrics_router


@pytest.fixture
def app():
    app = FastAPI()
    app.include_router(health.router, prefix="/health")
    app.include_router(metrics_router)
    return app


async def get(app, path):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.get(path)


async def test_health(app):
    response = await get(app, "/health/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_metrics_reports_counts_per_queue(app, queue_registry):
    await enqueue_sync_job("syncLatest", {"user_id": "u1", "provider": "strava"})
    await schedule_welcome_series("u1", "rider@example.com")

    metrics = (await get(app, "/metrics")).json()

    assert metrics["queues"]["sync"]["waiting"] == 1
    assert metrics["queues"]["email"]["delayed"] == 3
    assert metrics["total_pending"] == 4
    assert metrics["alerts"] == []


async def test_metrics_without_redis(app, queue_registry, redis_server):
    redis_server.connected = False

    metrics = (await get(app, "/metrics")).json()
    assert "error" in metrics


async def test_prometheus_format(app, queue_registry):
    await enqueue_sync_job("syncLatest", {"user_id": "u1", "provider": "strava"})

    response = await get(app, "/metrics/prometheus")
    assert 'loam_jobs{queue="sync",state="waiting"} 1' in response.text
