"""Broker connection parameters shared by every queue and worker.

One provider exists per broker endpoint. It hands out connection
parameters and builds clients; it never opens a connection by itself, so
connectivity problems surface on the first real round-trip.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional
from urllib.parse import unquote, urlparse
import logging

import redis.asyncio as redis

from job_worker.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6379


@dataclass(frozen=True)
class ConnectionParams:
    """Where and how to reach the broker."""
    host: str
    port: int = DEFAULT_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    db: int = 0
    ssl: bool = False

    @classmethod
    def from_url(cls, url: str) -> "ConnectionParams":
        """Parse a redis:// or rediss:// URL."""
        if not url:
            raise ValueError("REDIS_URL is required")

        parsed = urlparse(url)
        if parsed.scheme not in ("redis", "rediss"):
            raise ValueError(f"Unsupported broker URL scheme: {parsed.scheme!r}")

        db = 0
        path = parsed.path.lstrip("/")
        if path:
            try:
                db = int(path)
            except ValueError:
                raise ValueError(f"Invalid Redis database in URL: {path!r}")

        return cls(
            host=parsed.hostname or "localhost",
            port=parsed.port or DEFAULT_PORT,
            username=unquote(parsed.username) if parsed.username else None,
            password=unquote(parsed.password) if parsed.password else None,
            db=db,
            ssl=parsed.scheme == "rediss",
        )

    @property
    def redacted_url(self) -> str:
        """Endpoint without credentials, safe for logs."""
        scheme = "rediss" if self.ssl else "redis"
        return f"{scheme}://{self.host}:{self.port}/{self.db}"


def _redis_from_params(params: ConnectionParams) -> redis.Redis:
    return redis.Redis(
        host=params.host,
        port=params.port,
        username=params.username,
        password=params.password,
        db=params.db,
        ssl=params.ssl,
        encoding="utf-8",
        decode_responses=True,
    )


ClientFactory = Callable[[ConnectionParams], redis.Redis]


class ConnectionProvider:
    """Supplies broker clients for one endpoint."""

    def __init__(self, params: ConnectionParams, client_factory: Optional[ClientFactory] = None):
        self.params = params
        self._client_factory = client_factory or _redis_from_params

    @property
    def redacted_url(self) -> str:
        return self.params.redacted_url

    def create_client(self) -> redis.Redis:
        """Create a new client handle. The caller owns and closes it."""
        logger.debug(f"Creating broker client for {self.redacted_url}")
        return self._client_factory(self.params)


@lru_cache(maxsize=8)
def _provider_for_url(url: str) -> ConnectionProvider:
    return ConnectionProvider(ConnectionParams.from_url(url))


def get_connection_provider(redis_url: Optional[str] = None) -> ConnectionProvider:
    """Get the process-wide provider for a broker endpoint."""
    return _provider_for_url(redis_url or get_settings().redis_url)


def clear_connection_providers():
    """Forget memoised providers (useful for testing)."""
    _provider_for_url.cache_clear()
