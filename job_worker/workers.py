"""Worker wiring: which handler runs on which queue, and the process entry point."""

import asyncio
import functools
import logging
import signal
from typing import Optional

from job_worker.clients import BackendClient, ResendEmailSender
from job_worker.config import get_settings
from job_worker.geocoding import ReverseGeocoder
from job_worker.handlers import (
    process_backfill_job,
    process_email_job,
    process_geocode_job,
    process_sync_job,
)
from job_worker.lib.json_logger import setup_logging
from job_worker.lib.locks import ProviderLocks
from job_worker.queue import (
    Worker,
    get_backfill_queue,
    get_connection_provider,
    get_email_queue,
    get_geocode_queue,
    get_sync_queue,
    queues,
)

logger = logging.getLogger(__name__)


def create_provider_locks() -> ProviderLocks:
    settings = get_settings()
    return ProviderLocks(
        get_connection_provider().create_client(),
        ttl_seconds={
            "sync": settings.sync_lock_ttl_seconds,
            "backfill": settings.backfill_lock_ttl_seconds,
        },
    )


def create_sync_worker(backend: BackendClient, locks: ProviderLocks) -> Worker:
    return Worker(
        get_sync_queue(),
        functools.partial(process_sync_job, backend=backend, locks=locks),
        concurrency=get_settings().sync_worker_concurrency,
    )


def create_backfill_worker(backend: BackendClient, locks: ProviderLocks) -> Worker:
    return Worker(
        get_backfill_queue(),
        functools.partial(process_backfill_job, backend=backend, locks=locks),
        concurrency=get_settings().backfill_worker_concurrency,
    )


def create_email_worker(sender: ResendEmailSender, users: BackendClient) -> Worker:
    settings = get_settings()
    return Worker(
        get_email_queue(),
        functools.partial(process_email_job, sender=sender, users=users, settings=settings),
        concurrency=settings.email_worker_concurrency,
    )


def create_geocode_worker(geocoder: ReverseGeocoder, rides: BackendClient) -> Worker:
    # Concurrency stays at 1: Nominatim allows one request per second
    return Worker(
        get_geocode_queue(),
        functools.partial(process_geocode_job, geocoder=geocoder, rides=rides),
        concurrency=1,
    )


class WorkerGroup:
    """
    All workers of one process plus the clients they share.

    Shutdown order: stop claiming, wait for in-flight jobs, close queue
    connections, then close the clients the handlers used.
    """

    def __init__(
        self,
        backend: Optional[BackendClient] = None,
        sender: Optional[ResendEmailSender] = None,
        geocoder: Optional[ReverseGeocoder] = None,
        locks: Optional[ProviderLocks] = None,
    ):
        self.backend = backend or BackendClient()
        self.sender = sender or ResendEmailSender()
        self.geocoder = geocoder or ReverseGeocoder()
        self.locks = locks or create_provider_locks()
        self.workers = [
            create_sync_worker(self.backend, self.locks),
            create_backfill_worker(self.backend, self.locks),
            create_email_worker(self.sender, self.backend),
            create_geocode_worker(self.geocoder, self.backend),
        ]

    async def start(self) -> None:
        for worker in self.workers:
            await worker.start()
        logger.info(f"Started {len(self.workers)} workers")

    def stop(self) -> None:
        for worker in self.workers:
            worker.stop()

    async def close(self, timeout: Optional[float] = None) -> None:
        timeout = get_settings().worker_shutdown_timeout_seconds if timeout is None else timeout
        try:
            await asyncio.wait_for(
                asyncio.gather(*(worker.close() for worker in self.workers)),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Workers did not finish within {timeout}s, closing anyway")

        await queues.close_all()
        for name, closer in (
            ("locks", self.locks.close),
            ("backend", self.backend.close),
            ("email", self.sender.close),
        ):
            try:
                await closer()
            except Exception as e:
                logger.error(f"Failed to close {name} client: {e}")
        logger.info("All workers stopped")


async def run_workers() -> None:
    """Run every worker until SIGTERM or SIGINT."""
    group = WorkerGroup()
    stopped = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stopped.set)

    try:
        await group.start()
        await stopped.wait()
        logger.info("Shutdown signal received")
        group.stop()
    finally:
        await group.close()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)


def main() -> None:
    settings = get_settings()
    setup_logging(level=settings.log_level, log_format=settings.log_format)
    asyncio.run(run_workers())


if __name__ == "__main__":
    main()
