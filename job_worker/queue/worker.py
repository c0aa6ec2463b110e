"""Pull-based worker bound to one queue.

A worker claims ready jobs, runs the handler and reports the outcome back
to the broker. Retry and backoff belong to the queue policy; the worker
only says "done" or "failed".
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from job_worker.config import get_settings
from job_worker.lib.json_logger import job_logger
from .base import JobQueue
from .broker import Job

logger = logging.getLogger(__name__)

Handler = Callable[[Job], Awaitable[Any]]


class Worker:
    """
    Consumes one queue with a bounded number of concurrent handler runs.

    Args:
        queue: Queue to consume
        handler: Coroutine function called with each claimed job
        concurrency: Parallel handler runs; use 1 for rate-limited handlers
        drain_delay_seconds: Sleep between polls of an empty queue
        lock_seconds: Lock period of a claimed job; renewed every half period while its handler runs
        stalled_interval_seconds: How often stalled jobs are swept back to waiting
    """

    def __init__(
        self,
        queue: JobQueue,
        handler: Handler,
        *,
        concurrency: int = 1,
        drain_delay_seconds: Optional[float] = None,
        lock_seconds: Optional[float] = None,
        stalled_interval_seconds: Optional[float] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        settings = get_settings()
        self.queue = queue
        self.handler = handler
        self.concurrency = concurrency
        self.drain_delay = (
            settings.worker_drain_delay_seconds if drain_delay_seconds is None else drain_delay_seconds
        )
        self.lock_seconds = settings.worker_lock_seconds if lock_seconds is None else lock_seconds
        self.stalled_interval = (
            settings.worker_stalled_interval_seconds
            if stalled_interval_seconds is None
            else stalled_interval_seconds
        )
        self._tag = f"[{queue.name.capitalize()}Worker]"
        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._in_flight = 0

    @property
    def is_running(self) -> bool:
        return bool(self._tasks) and not self._stopping.is_set()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def start(self) -> None:
        """Connect and start consuming. Connection errors propagate."""
        if self._tasks:
            return
        await self.queue.connect()

        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._consume(slot), name=f"{self.queue.name}-worker-{slot}")
            for slot in range(self.concurrency)
        ]
        self._tasks.append(
            asyncio.create_task(self._sweep_stalled(), name=f"{self.queue.name}-stalled")
        )
        logger.info(f"{self._tag} Started (concurrency={self.concurrency})")

    async def run(self) -> None:
        """Start and block until stopped."""
        await self.start()
        await asyncio.gather(*self._tasks)

    def stop(self) -> None:
        """Stop claiming new jobs; running handlers finish."""
        self._stopping.set()

    async def close(self) -> None:
        """Stop and wait for in-flight jobs. Safe to call repeatedly."""
        if not self._tasks:
            return
        self.stop()
        tasks, self._tasks = self._tasks, []
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"{self._tag} Worker task ended with error: {result}")
        logger.info(f"{self._tag} Stopped")

    async def _idle(self, seconds: float) -> None:
        """Sleep, but wake up early when stopping."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _consume(self, slot: int) -> None:
        while not self._stopping.is_set():
            try:
                job = await self.queue.broker.claim(self.lock_seconds)
            except Exception as e:
                # Broker trouble must not kill the worker
                logger.error(f"{self._tag} Worker error: {e}")
                await self._idle(self.drain_delay)
                continue

            if job is None:
                await self._idle(self.drain_delay)
                continue

            await self.process(job)

    async def process(self, job: Job) -> None:
        """Run the handler for one claimed job and report the outcome."""
        self._in_flight += 1
        try:
            await self._process(job)
        finally:
            # Counted until the outcome is written
            self._in_flight -= 1

    async def _process(self, job: Job) -> None:
        log = job_logger(job.id, job.name, queue=self.queue.name)
        started = time.monotonic()
        try:
            log.info(f"{self._tag} Processing job {job.id} ({job.name})", extra={"attempts": job.attempts_made})
            await self._run_holding_lock(job)
        except Exception as e:
            log.error(
                f"{self._tag} Job {job.id} ({job.name}) failed: {e}",
                extra={"duration_ms": int((time.monotonic() - started) * 1000), "status": "failed"},
            )
            try:
                await self.queue.broker.fail(job, str(e) or type(e).__name__)
            except Exception as report_error:
                log.error(f"{self._tag} Could not record failure of job {job.id}: {report_error}")
            return

        try:
            await self.queue.broker.complete(job)
        except Exception as report_error:
            log.error(f"{self._tag} Could not record completion of job {job.id}: {report_error}")
            return
        log.info(
            f"{self._tag} Job {job.id} ({job.name}) completed",
            extra={"duration_ms": int((time.monotonic() - started) * 1000), "status": "completed"},
        )

    async def _run_holding_lock(self, job: Job) -> None:
        renewal = asyncio.create_task(self._keep_lock(job), name=f"{self.queue.name}-lock-{job.id}")
        try:
            await self.handler(job)
        finally:
            renewal.cancel()
            await asyncio.gather(renewal, return_exceptions=True)

    async def _keep_lock(self, job: Job) -> None:
        """Extend the job's lock every half lock period while the handler runs."""
        interval = self.lock_seconds / 2
        while True:
            await asyncio.sleep(interval)
            try:
                extended = await self.queue.broker.extend_lock(job, self.lock_seconds)
            except Exception as e:
                logger.error(f"{self._tag} Could not extend lock of job {job.id}: {e}")
                continue
            if not extended:
                logger.warning(f"{self._tag} Lost lock of job {job.id}")
                return

    async def _sweep_stalled(self) -> None:
        while not self._stopping.is_set():
            await self._idle(self.stalled_interval)
            if self._stopping.is_set():
                break
            try:
                await self.queue.broker.recover_stalled()
            except Exception as e:
                logger.error(f"{self._tag} Stalled job check failed: {e}")
