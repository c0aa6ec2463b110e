"""Queue module for background job processing.

Features:
- One queue per workload class (sync, backfill, email, geocode)
- Deterministic job ids so duplicate enqueues are rejected atomically
- Priority ordering, delayed jobs, retry with backoff
- Bounded retention of completed and failed jobs
"""

from .backfill import (
    BackfillJobData,
    BackfillQueue,
    CallbackJobData,
    close_backfill_queue,
    enqueue_backfill_job,
    enqueue_callback_job,
    get_backfill_queue,
)
from .base import EnqueueResult, JobQueue, QueueRegistry, queues
from .broker import (
    Backoff,
    BackoffKind,
    DuplicateJobError,
    Job,
    JobState,
    QueuePolicy,
    RedisBroker,
)
from .connection import (
    ConnectionParams,
    ConnectionProvider,
    clear_connection_providers,
    get_connection_provider,
)
from .email import (
    WELCOME_EMAIL_DELAYS,
    EmailJobData,
    EmailQueue,
    cancel_welcome_series,
    close_email_queue,
    enqueue_activation_email,
    get_email_queue,
    schedule_welcome_series,
)
from .geocode import (
    GeocodeJobData,
    GeocodeQueue,
    add_geocode_job,
    close_geocode_queue,
    get_geocode_queue,
)
from .sync import (
    SyncJobData,
    SyncQueue,
    close_sync_queue,
    enqueue_sync_job,
    get_sync_queue,
)
from .worker import Worker

__all__ = [
    # Broker
    'Backoff',
    'BackoffKind',
    'DuplicateJobError',
    'Job',
    'JobState',
    'QueuePolicy',
    'RedisBroker',
    # Connection
    'ConnectionParams',
    'ConnectionProvider',
    'clear_connection_providers',
    'get_connection_provider',
    # Queues
    'EnqueueResult',
    'JobQueue',
    'QueueRegistry',
    'queues',
    'SyncJobData',
    'SyncQueue',
    'close_sync_queue',
    'enqueue_sync_job',
    'get_sync_queue',
    'BackfillJobData',
    'BackfillQueue',
    'CallbackJobData',
    'close_backfill_queue',
    'enqueue_backfill_job',
    'enqueue_callback_job',
    'get_backfill_queue',
    'WELCOME_EMAIL_DELAYS',
    'EmailJobData',
    'EmailQueue',
    'cancel_welcome_series',
    'close_email_queue',
    'enqueue_activation_email',
    'get_email_queue',
    'schedule_welcome_series',
    'GeocodeJobData',
    'GeocodeQueue',
    'add_geocode_job',
    'close_geocode_queue',
    'get_geocode_queue',
    # Worker
    'Worker',
]
