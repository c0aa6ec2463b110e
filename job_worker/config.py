"""Configuration settings for the job worker."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis (queue broker)
    redis_url: str = "redis://localhost:6379"
    queue_prefix: str = "jobs"

    # Server
    port: int = 5000
    debug: bool = False
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "text"

    # Worker polling
    worker_drain_delay_seconds: float = 5.0  # sleep between empty polls
    worker_lock_seconds: int = 300  # visibility timeout for active jobs
    worker_stalled_interval_seconds: float = 60.0
    worker_shutdown_timeout_seconds: float = 10.0
    email_worker_concurrency: int = 2
    sync_worker_concurrency: int = 1
    backfill_worker_concurrency: int = 1

    # Backend API
    backend_url: str = "http://localhost:4000"
    service_token: str = ""  # JWT token for service-to-service auth

    # Email
    resend_api_key: str = ""
    resend_api_url: str = "https://api.resend.com"
    email_from: str = "Loam Logger <noreply@loamlogger.com>"
    api_url: str = "http://localhost:4000"
    frontend_url: str = "http://localhost:5173"
    session_secret: str = ""  # signs unsubscribe tokens

    # Geocoding
    nominatim_user_agent: str = "LoamLogger/1.0 (bike ride tracking app)"
    geocode_min_interval_seconds: float = 1.1  # Nominatim allows 1 req/sec

    # Provider locks
    sync_lock_ttl_seconds: int = 300
    backfill_lock_ttl_seconds: int = 600

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def clear_settings_cache():
    """Clear settings cache (useful for testing)."""
    get_settings.cache_clear()
