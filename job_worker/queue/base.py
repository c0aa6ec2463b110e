"""Generic job queue with idempotent enqueue, and the per-process registry."""

import threading
import logging
from typing import Any, ClassVar, Generic, Literal, Mapping, Optional, TypeVar, Union

from pydantic import BaseModel

from job_worker.config import get_settings
from .broker import DuplicateJobError, Job, QueuePolicy, RedisBroker
from .connection import ConnectionProvider, get_connection_provider

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)


class EnqueueResult(BaseModel):
    """Outcome of an enqueue call. Both statuses mean the work is scheduled."""
    status: Literal["queued", "already_queued"]
    job_id: str

    @property
    def queued(self) -> bool:
        return self.status == "queued"

    @property
    def key(self) -> str:
        return self.job_id


class JobQueue(Generic[PayloadT]):
    """
    A named queue for one workload class.

    Subclasses declare the queue name, accepted job names, payload model and
    default policy, and derive the job id from the payload. The broker
    channel is opened lazily on first use.
    """

    name: ClassVar[str]
    job_names: ClassVar[tuple[str, ...]]
    payload_model: ClassVar[type[BaseModel]]
    default_policy: ClassVar[QueuePolicy]

    def __init__(
        self,
        provider: Optional[ConnectionProvider] = None,
        policy: Optional[QueuePolicy] = None,
        prefix: Optional[str] = None,
    ):
        self.provider = provider or get_connection_provider()
        self.policy = policy or self.default_policy
        self.prefix = prefix or get_settings().queue_prefix
        self._broker: Optional[RedisBroker] = None
        self._log_tag = f"[{type(self).__name__}]"

    def build_key(self, job_name: str, payload: PayloadT) -> str:
        raise NotImplementedError

    @property
    def broker(self) -> RedisBroker:
        if self._broker is None:
            self._broker = RedisBroker(
                self.provider.create_client(),
                self.name,
                self.policy,
                prefix=self.prefix,
            )
        return self._broker

    @property
    def is_open(self) -> bool:
        return self._broker is not None

    async def connect(self) -> None:
        """Verify the broker is reachable. Connection errors propagate."""
        await self.broker.ping()
        logger.info(f"{self._log_tag} Connected to {self.provider.redacted_url}")

    def payload_model_for(self, job_name: str) -> type[BaseModel]:
        """Payload model for a job name; one model per queue unless overridden."""
        return self.payload_model

    def _coerce(self, job_name: str, payload: Union[PayloadT, Mapping[str, Any]]) -> PayloadT:
        model = self.payload_model_for(job_name)
        if isinstance(payload, model):
            return payload
        return model.model_validate(payload)

    async def enqueue(
        self,
        job_name: str,
        payload: Union[PayloadT, Mapping[str, Any]],
        *,
        delay_seconds: Optional[float] = None,
    ) -> EnqueueResult:
        """
        Enqueue a job with deduplication.

        Performs a single atomic insert keyed by the deterministic job id.
        A rejected duplicate is reported as "already_queued"; any other
        broker error is raised unchanged.
        """
        if job_name not in self.job_names:
            raise ValueError(f"Unknown job name for {self.name} queue: {job_name}")

        data = self._coerce(job_name, payload)
        job_id = self.build_key(job_name, data)
        delay_ms = int(delay_seconds * 1000) if delay_seconds else 0
        job = self.broker.new_job(job_id, job_name, data.model_dump(mode="json"), delay_ms=delay_ms)

        try:
            await self.broker.add(job)
        except DuplicateJobError:
            logger.info(f"{self._log_tag} Job {job_id} already exists (duplicate rejected)")
            return EnqueueResult(status="already_queued", job_id=job_id)

        logger.info(f"{self._log_tag} Enqueued job {job_id}")
        return EnqueueResult(status="queued", job_id=job_id)

    async def get_job(self, job_id: str) -> Optional[Job]:
        """Look up a waiting, delayed or active job by id."""
        return await self.broker.get_job(job_id)

    async def remove(self, job_id: str) -> bool:
        """Remove a job that has not been claimed yet."""
        return await self.broker.remove(job_id)

    async def cancel(self, job_id: str) -> bool:
        """
        Cancel a pending or delayed job by id.

        Returns False when there is nothing to cancel (never enqueued,
        already finished, or already claimed by a worker).
        """
        job = await self.get_job(job_id)
        if job is None:
            return False
        return await self.remove(job_id)

    async def counts(self) -> dict[str, int]:
        return await self.broker.get_counts()

    async def close(self) -> None:
        """Release the broker connection. Safe to call repeatedly."""
        if self._broker is not None:
            broker, self._broker = self._broker, None
            await broker.close()
            logger.info(f"{self._log_tag} Connection closed")


QueueT = TypeVar("QueueT", bound=JobQueue)


class QueueRegistry:
    """
    One queue instance per workload class per process.

    Queues are built lazily on first access and shared afterwards. Policy
    overrides, keyed by queue name, replace the class defaults.
    """

    def __init__(
        self,
        provider: Optional[ConnectionProvider] = None,
        policies: Optional[Mapping[str, QueuePolicy]] = None,
    ):
        self._provider = provider
        self._policies = dict(policies or {})
        self._queues: dict[str, JobQueue] = {}
        self._lock = threading.Lock()

    def get(self, queue_cls: type[QueueT]) -> QueueT:
        queue = self._queues.get(queue_cls.name)
        if queue is not None:
            return queue
        with self._lock:
            queue = self._queues.get(queue_cls.name)
            if queue is None:
                queue = queue_cls(
                    provider=self._provider,
                    policy=self._policies.get(queue_cls.name),
                )
                self._queues[queue_cls.name] = queue
        return queue

    def configure(
        self,
        provider: Optional[ConnectionProvider] = None,
        policies: Optional[Mapping[str, QueuePolicy]] = None,
    ) -> None:
        """Change how queues are built. Only affects queues not yet built."""
        with self._lock:
            if provider is not None:
                self._provider = provider
            if policies is not None:
                self._policies = dict(policies)

    def open_queues(self) -> list[JobQueue]:
        return list(self._queues.values())

    async def close(self, queue_cls: type[JobQueue]) -> None:
        with self._lock:
            queue = self._queues.pop(queue_cls.name, None)
        if queue is not None:
            await queue.close()

    async def close_all(self) -> None:
        """Close every queue; failures are logged so the rest still close."""
        with self._lock:
            queues = list(self._queues.values())
            self._queues.clear()
        for queue in queues:
            try:
                await queue.close()
            except Exception as e:
                logger.error(f"Failed to close {queue.name} queue: {e}")


# Global registry
queues = QueueRegistry()
