"""Distributed locks on Redis for per-user provider work.

Prevents two workers from syncing or backfilling the same user and
provider at once. A lock is released only by the holder of its value.
"""

import json
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

logger = logging.getLogger(__name__)

LOCK_PREFIX = "lock:"


class LockNotAcquiredError(Exception):
    """Another worker holds the lock; the job should be retried later."""


@dataclass(frozen=True)
class Lock:
    key: str
    value: str


class ProviderLocks:
    """Lock per (provider, user) with a TTL per lock type."""

    def __init__(self, client: redis.Redis, ttl_seconds: dict[str, int]):
        self._redis = client
        self._ttl = ttl_seconds

    @staticmethod
    def build_key(provider: str, user_id: str) -> str:
        return f"{LOCK_PREFIX}{provider}:{user_id}"

    async def acquire(self, lock_type: str, provider: str, user_id: str) -> Optional[Lock]:
        """Try to take the lock. Returns None if it is already held."""
        key = self.build_key(provider, user_id)
        value = json.dumps({
            "token": uuid.uuid4().hex,
            "type": lock_type,
            "locked_at": datetime.now(timezone.utc).isoformat(),
        })
        acquired = await self._redis.set(key, value, nx=True, ex=self._ttl.get(lock_type, 300))
        if not acquired:
            logger.info(f"Lock {key} already held")
            return None
        return Lock(key=key, value=value)

    async def release(self, lock: Lock) -> bool:
        # GET + DEL in a WATCH transaction keeps this atomic without Lua
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(lock.key)
                current = await pipe.get(lock.key)
                if current != lock.value:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.delete(lock.key)
                await pipe.execute()
            except WatchError:
                return False
        return True

    async def close(self) -> None:
        await self._redis.aclose()
