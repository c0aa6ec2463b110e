"""Shared fixtures: an in-memory Redis shared by every client of a test."""

import fakeredis
import pytest

from job_worker.config import clear_settings_cache
from job_worker.queue import (
    ConnectionParams,
    ConnectionProvider,
    Job,
    clear_connection_providers,
    queues,
)


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    monkeypatch.setenv("SESSION_SECRET", "test-session-secret")
    monkeypatch.setenv("API_URL", "https://api.example.com")
    monkeypatch.setenv("FRONTEND_URL", "https://app.example.com")
    monkeypatch.setenv("WORKER_DRAIN_DELAY_SECONDS", "0.01")
    clear_settings_cache()
    clear_connection_providers()
    yield
    clear_settings_cache()
    clear_connection_providers()


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def provider(redis_server):
    """Provider whose clients all talk to the same fake server."""
    return ConnectionProvider(
        ConnectionParams.from_url("redis://localhost:6379/0"),
        client_factory=lambda params: fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True),
    )


@pytest.fixture
async def redis_client(provider):
    client = provider.create_client()
    yield client
    await client.aclose()


@pytest.fixture
async def queue_registry(provider):
    """Route the global queue registry to the fake server."""
    await queues.close_all()
    queues.configure(provider=provider)
    yield queues
    await queues.close_all()


@pytest.fixture
def make_job():
    """Build a job record as a worker would receive it."""
    def _make(name: str, data: dict, queue: str = "test", job_id: str = "job-1") -> Job:
        return Job(id=job_id, name=name, queue=queue, data=data, timestamp=0)
    return _make
