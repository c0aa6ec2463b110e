"""Redis broker adapter for job queues.

Layout per queue (``<prefix>:<queue>``):

- ``job:<id>``   job record (JSON), created with SET NX so the id is unique
- ``wait``       sorted set, score = priority * 2**32 + sequence
- ``delayed``    sorted set, score = ready-at (ms)
- ``active``     sorted set, score = lock deadline (ms)
- ``lock:<id>``  token of the worker holding an active job
- ``completed``  list of finished records, newest first, trimmed
- ``failed``     list of exhausted records, newest first, trimmed
- ``seq``        counter giving FIFO order within a priority

A job id occupies its key while it is waiting, delayed or active. Terminal
transitions delete the record, which frees the id for a new job.

Every transition that touches the record and an index runs as one Lua
script, so a record is never left outside every index.
"""

import random
import time
import uuid
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import redis.asyncio as redis
from pydantic import BaseModel

logger = logging.getLogger(__name__)

PRIORITY_SHIFT = 2 ** 32
MAX_PRIORITY = 2 ** 21  # keeps wait scores exact in a double
PROMOTE_BATCH = 100
CLAIM_ATTEMPTS = 5
STALLED_REASON = "job stalled more than allowable limit"

# KEYS: record, index   ARGV: record json, job id, score
_LUA_ADD = """
if not redis.call('SET', KEYS[1], ARGV[1], 'NX') then
    return 0
end
redis.call('ZADD', KEYS[2], ARGV[3], ARGV[2])
return 1
"""

# KEYS: source, target, record   ARGV: job id, record json, score
_LUA_MOVE = """
if redis.call('ZREM', KEYS[1], ARGV[1]) == 0 then
    return 0
end
redis.call('SET', KEYS[3], ARGV[2], 'XX')
redis.call('ZADD', KEYS[2], ARGV[3], ARGV[1])
return 1
"""

# KEYS: wait, active, record, lock   ARGV: job id, record json, deadline, token
_LUA_CLAIM = """
if redis.call('ZREM', KEYS[1], ARGV[1]) == 0 then
    return 0
end
redis.call('SET', KEYS[3], ARGV[2], 'XX')
redis.call('SET', KEYS[4], ARGV[4])
redis.call('ZADD', KEYS[2], ARGV[3], ARGV[1])
return 1
"""

# KEYS: active, lock   ARGV: job id, token, deadline
_LUA_EXTEND = """
if redis.call('GET', KEYS[2]) ~= ARGV[2] then
    return 0
end
redis.call('ZADD', KEYS[1], 'XX', ARGV[3], ARGV[1])
return 1
"""

# KEYS: active, delayed, record, lock   ARGV: job id, token, record json, ready-at
_LUA_RETRY = """
if redis.call('GET', KEYS[4]) ~= ARGV[2] then
    return 0
end
redis.call('ZREM', KEYS[1], ARGV[1])
redis.call('DEL', KEYS[4])
redis.call('SET', KEYS[3], ARGV[3], 'XX')
redis.call('ZADD', KEYS[2], ARGV[4], ARGV[1])
return 1
"""

# KEYS: active, record, lock, history   ARGV: job id, token, record json, keep
_LUA_FINISH = """
if redis.call('GET', KEYS[3]) ~= ARGV[2] then
    return 0
end
redis.call('ZREM', KEYS[1], ARGV[1])
redis.call('DEL', KEYS[2], KEYS[3])
local keep = tonumber(ARGV[4])
if keep > 0 then
    redis.call('LPUSH', KEYS[4], ARGV[3])
    redis.call('LTRIM', KEYS[4], 0, keep - 1)
end
return 1
"""

# KEYS: active, wait, record, lock   ARGV: job id, record json, score, now
_LUA_REQUEUE_STALLED = """
local deadline = redis.call('ZSCORE', KEYS[1], ARGV[1])
if not deadline or tonumber(deadline) > tonumber(ARGV[4]) then
    return 0
end
redis.call('ZREM', KEYS[1], ARGV[1])
redis.call('DEL', KEYS[4])
redis.call('SET', KEYS[3], ARGV[2], 'XX')
redis.call('ZADD', KEYS[2], ARGV[3], ARGV[1])
return 1
"""

# KEYS: active, record, lock, failed   ARGV: job id, record json, keep, now
_LUA_DROP_STALLED = """
local deadline = redis.call('ZSCORE', KEYS[1], ARGV[1])
if not deadline or tonumber(deadline) > tonumber(ARGV[4]) then
    return 0
end
redis.call('ZREM', KEYS[1], ARGV[1])
redis.call('DEL', KEYS[2], KEYS[3])
local keep = tonumber(ARGV[3])
if keep > 0 then
    redis.call('LPUSH', KEYS[4], ARGV[2])
    redis.call('LTRIM', KEYS[4], 0, keep - 1)
end
return 1
"""

# KEYS: wait, delayed, record   ARGV: job id
_LUA_REMOVE = """
local removed = redis.call('ZREM', KEYS[1], ARGV[1]) + redis.call('ZREM', KEYS[2], ARGV[1])
if removed > 0 then
    redis.call('DEL', KEYS[3])
end
return removed
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


class DuplicateJobError(Exception):
    """A job with this id is already waiting, delayed or active."""

    def __init__(self, queue: str, job_id: str):
        super().__init__(f"Job {job_id} already exists in queue {queue}")
        self.queue = queue
        self.job_id = job_id


class BackoffKind(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class Backoff:
    """Delay curve between retry attempts."""
    kind: BackoffKind = BackoffKind.EXPONENTIAL
    delay_seconds: float = 1.0
    max_delay_seconds: Optional[float] = None
    jitter: bool = False  # Add 0-50% randomness to spread retries

    def get_delay(self, attempt: int) -> float:
        """Calculate delay after the given failed attempt (1-based)."""
        if self.kind == BackoffKind.FIXED:
            delay = self.delay_seconds
        else:
            delay = self.delay_seconds * (2 ** max(attempt - 1, 0))
        if self.max_delay_seconds is not None:
            delay = min(delay, self.max_delay_seconds)
        if self.jitter:
            delay *= (1 + random.random() * 0.5)
        return delay


@dataclass(frozen=True)
class QueuePolicy:
    """Static per-queue job options."""
    max_attempts: int = 1
    backoff: Backoff = field(default_factory=Backoff)
    priority: int = 0  # lower is served first
    remove_on_complete: int = 100  # completed records to keep
    remove_on_fail: int = 500  # failed records to keep
    max_stalled_count: int = 1  # lock expiries tolerated before the job fails

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0 <= self.priority <= MAX_PRIORITY:
            raise ValueError(f"priority must be between 0 and {MAX_PRIORITY}")
        if self.backoff.delay_seconds < 0:
            raise ValueError("backoff delay cannot be negative")
        if self.max_stalled_count < 0:
            raise ValueError("max_stalled_count cannot be negative")


class JobState(str, Enum):
    """Job lifecycle states."""
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(BaseModel):
    """A job record as stored in the broker."""
    id: str
    name: str
    queue: str
    data: dict[str, Any]
    priority: int = 0
    delay_ms: int = 0
    timestamp: int
    attempts_made: int = 0
    max_attempts: int = 1
    stalled_count: int = 0
    state: JobState = JobState.WAITING
    token: Optional[str] = None
    processed_on: Optional[int] = None
    finished_on: Optional[int] = None
    failed_reason: Optional[str] = None
    error_history: list[str] = []


class RedisBroker:
    """One queue's channel on Redis."""

    def __init__(
        self,
        client: redis.Redis,
        queue_name: str,
        policy: QueuePolicy,
        prefix: str = "jobs",
    ):
        self._redis = client
        self.queue_name = queue_name
        self.policy = policy
        self._base = f"{prefix}:{queue_name}"

        self._add_script = client.register_script(_LUA_ADD)
        self._move_script = client.register_script(_LUA_MOVE)
        self._claim_script = client.register_script(_LUA_CLAIM)
        self._extend_script = client.register_script(_LUA_EXTEND)
        self._retry_script = client.register_script(_LUA_RETRY)
        self._finish_script = client.register_script(_LUA_FINISH)
        self._requeue_stalled_script = client.register_script(_LUA_REQUEUE_STALLED)
        self._drop_stalled_script = client.register_script(_LUA_DROP_STALLED)
        self._remove_script = client.register_script(_LUA_REMOVE)

    # ==================== Keys ====================

    def _job_key(self, job_id: str) -> str:
        return f"{self._base}:job:{job_id}"

    def _lock_key(self, job_id: str) -> str:
        return f"{self._base}:lock:{job_id}"

    @property
    def _wait(self) -> str:
        return f"{self._base}:wait"

    @property
    def _delayed(self) -> str:
        return f"{self._base}:delayed"

    @property
    def _active(self) -> str:
        return f"{self._base}:active"

    @property
    def _completed(self) -> str:
        return f"{self._base}:completed"

    @property
    def _failed(self) -> str:
        return f"{self._base}:failed"

    @property
    def _seq(self) -> str:
        return f"{self._base}:seq"

    async def _wait_score(self, priority: int) -> int:
        # Gaps in the sequence are harmless, so it is taken outside the scripts
        seq = await self._redis.incr(self._seq)
        return priority * PRIORITY_SHIFT + seq

    # ==================== Producer side ====================

    def new_job(self, job_id: str, name: str, data: dict, delay_ms: int = 0) -> Job:
        """Build a record carrying this queue's policy."""
        return Job(
            id=job_id,
            name=name,
            queue=self.queue_name,
            data=data,
            priority=self.policy.priority,
            delay_ms=max(delay_ms, 0),
            timestamp=_now_ms(),
            max_attempts=self.policy.max_attempts,
            state=JobState.DELAYED if delay_ms > 0 else JobState.WAITING,
        )

    async def add(self, job: Job) -> Job:
        """
        Insert a job if its id is free.

        The record and its index entry are written by one script; the
        SET NX inside it is the only dedup step.

        Raises:
            DuplicateJobError: a job with this id is waiting, delayed or active
        """
        if job.delay_ms > 0:
            index, score = self._delayed, job.timestamp + job.delay_ms
        else:
            index, score = self._wait, await self._wait_score(job.priority)

        created = await self._add_script(
            keys=[self._job_key(job.id), index],
            args=[job.model_dump_json(), job.id, score],
        )
        if not created:
            raise DuplicateJobError(self.queue_name, job.id)
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        """Get a waiting, delayed or active job."""
        raw = await self._redis.get(self._job_key(job_id))
        if raw is None:
            return None
        return Job.model_validate_json(raw)

    async def remove(self, job_id: str) -> bool:
        """Remove a job that has not been claimed yet. Active jobs stay."""
        removed = await self._remove_script(
            keys=[self._wait, self._delayed, self._job_key(job_id)],
            args=[job_id],
        )
        if not removed:
            return False
        logger.info(f"Removed job {job_id} from {self.queue_name}")
        return True

    # ==================== Consumer side ====================

    async def promote_delayed(self, now_ms: Optional[int] = None) -> int:
        """Move delayed jobs whose time has come into the wait set."""
        now_ms = _now_ms() if now_ms is None else now_ms
        due = await self._redis.zrangebyscore(self._delayed, "-inf", now_ms, start=0, num=PROMOTE_BATCH)

        promoted = 0
        for job_id in due:
            job = await self.get_job(job_id)
            if job is None:
                await self._redis.zrem(self._delayed, job_id)
                continue
            job.state = JobState.WAITING
            # Only the caller whose ZREM succeeds promotes the job
            moved = await self._move_script(
                keys=[self._delayed, self._wait, self._job_key(job_id)],
                args=[job_id, job.model_dump_json(), await self._wait_score(job.priority)],
            )
            promoted += moved

        if promoted:
            logger.debug(f"Promoted {promoted} delayed jobs in {self.queue_name}")
        return promoted

    async def claim(self, lock_seconds: float = 300, now_ms: Optional[int] = None) -> Optional[Job]:
        """
        Take the next ready job, or None if nothing is ready.

        The job gets a fresh token; only the holder of that token may
        extend its lock, complete it or fail it.
        """
        now_ms = _now_ms() if now_ms is None else now_ms
        await self.promote_delayed(now_ms)

        for _ in range(CLAIM_ATTEMPTS):
            head = await self._redis.zrange(self._wait, 0, 0)
            if not head:
                return None

            job_id = head[0]
            job = await self.get_job(job_id)
            if job is None:
                logger.warning(f"Job {job_id} not found in storage")
                await self._redis.zrem(self._wait, job_id)
                continue

            job.state = JobState.ACTIVE
            job.token = uuid.uuid4().hex
            job.processed_on = now_ms

            claimed = await self._claim_script(
                keys=[self._wait, self._active, self._job_key(job_id), self._lock_key(job_id)],
                args=[job_id, job.model_dump_json(), now_ms + int(lock_seconds * 1000), job.token],
            )
            if claimed:
                logger.debug(f"Claimed job {job_id} from {self.queue_name}")
                return job
            # Another worker took it first

        return None

    async def extend_lock(self, job: Job, lock_seconds: float) -> bool:
        """Push the lock deadline of a job this worker still holds."""
        extended = await self._extend_script(
            keys=[self._active, self._lock_key(job.id)],
            args=[job.id, job.token or "", _now_ms() + int(lock_seconds * 1000)],
        )
        return bool(extended)

    async def complete(self, job: Job) -> bool:
        """Mark an active job completed and free its id."""
        token = job.token
        job.state = JobState.COMPLETED
        job.finished_on = _now_ms()
        job.token = None

        finished = await self._finish_script(
            keys=[self._active, self._job_key(job.id), self._lock_key(job.id), self._completed],
            args=[job.id, token or "", job.model_dump_json(), self.policy.remove_on_complete],
        )
        if not finished:
            logger.warning(f"Job {job.id} lock lost, ignoring outcome")
            return False
        return True

    async def fail(self, job: Job, error: str) -> Optional[JobState]:
        """
        Record a failed attempt.

        Retries with backoff while attempts remain, otherwise moves the job
        to the failed list and frees its id. Returns the new state, or None
        if this worker no longer owns the job.
        """
        token = job.token or ""
        now_ms = _now_ms()
        job.attempts_made += 1
        job.failed_reason = error
        job.error_history.append(f"[{now_ms}] {error}")
        job.token = None

        if job.attempts_made < job.max_attempts:
            delay = self.policy.backoff.get_delay(job.attempts_made)
            job.state = JobState.DELAYED
            retried = await self._retry_script(
                keys=[self._active, self._delayed, self._job_key(job.id), self._lock_key(job.id)],
                args=[job.id, token, job.model_dump_json(), now_ms + int(delay * 1000)],
            )
            if not retried:
                logger.warning(f"Job {job.id} lock lost, ignoring outcome")
                return None
            logger.warning(
                f"Job {job.id} failed, retry {job.attempts_made}/{job.max_attempts} in {delay:.0f}s: {error}"
            )
            return JobState.DELAYED

        job.state = JobState.FAILED
        job.finished_on = now_ms
        finished = await self._finish_script(
            keys=[self._active, self._job_key(job.id), self._lock_key(job.id), self._failed],
            args=[job.id, token, job.model_dump_json(), self.policy.remove_on_fail],
        )
        if not finished:
            logger.warning(f"Job {job.id} lock lost, ignoring outcome")
            return None
        logger.error(f"Job {job.id} failed after {job.attempts_made} attempts: {error}")
        return JobState.FAILED

    async def recover_stalled(self, now_ms: Optional[int] = None) -> int:
        """
        Handle active jobs whose lock expired.

        A stalled job goes back to the wait set without using an attempt.
        Once it has stalled more than ``max_stalled_count`` times it is
        moved to the failed list instead. Returns how many jobs left the
        active set.
        """
        now_ms = _now_ms() if now_ms is None else now_ms
        expired = await self._redis.zrangebyscore(self._active, "-inf", now_ms)

        recovered = 0
        for job_id in expired:
            job = await self.get_job(job_id)
            if job is None:
                await self._redis.zrem(self._active, job_id)
                continue

            job.stalled_count += 1
            job.token = None
            if job.stalled_count > self.policy.max_stalled_count:
                job.state = JobState.FAILED
                job.finished_on = now_ms
                job.failed_reason = STALLED_REASON
                job.error_history.append(f"[{now_ms}] {STALLED_REASON}")
                dropped = await self._drop_stalled_script(
                    keys=[self._active, self._job_key(job_id), self._lock_key(job_id), self._failed],
                    args=[job_id, job.model_dump_json(), self.policy.remove_on_fail, now_ms],
                )
                if dropped:
                    recovered += 1
                    logger.error(f"Job {job_id} in {self.queue_name} failed: {STALLED_REASON}")
                continue

            job.state = JobState.WAITING
            requeued = await self._requeue_stalled_script(
                keys=[self._active, self._wait, self._job_key(job_id), self._lock_key(job_id)],
                args=[job_id, job.model_dump_json(), await self._wait_score(job.priority), now_ms],
            )
            if requeued:
                recovered += 1
                logger.warning(f"Recovered stalled job {job_id} in {self.queue_name}")
        return recovered

    # ==================== Inspection ====================

    async def get_counts(self) -> dict[str, int]:
        """Number of jobs per state."""
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.zcard(self._wait)
            pipe.zcard(self._delayed)
            pipe.zcard(self._active)
            pipe.llen(self._completed)
            pipe.llen(self._failed)
            waiting, delayed, active, completed, failed = await pipe.execute()
        return {
            "waiting": waiting,
            "delayed": delayed,
            "active": active,
            "completed": completed,
            "failed": failed,
        }

    async def _list_jobs(self, key: str, limit: int) -> list[Job]:
        raw_jobs = await self._redis.lrange(key, 0, limit - 1)
        return [Job.model_validate_json(raw) for raw in raw_jobs]

    async def get_completed(self, limit: int = 100) -> list[Job]:
        return await self._list_jobs(self._completed, limit)

    async def get_failed(self, limit: int = 100) -> list[Job]:
        return await self._list_jobs(self._failed, limit)

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()
