"""Structured JSON logging for queue workers.

Each line is one JSON object. Job context (id, queue, attempt) travels as
top-level fields so log search can follow a single job across retries.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from .pii_redactor import PIIRedactor

# Fields a worker attaches to job log lines, in output order
STANDARD_FIELDS = (
    "job_id", "job_type", "queue", "attempts",
    "duration_ms", "status", "error_code",
)

# Present on every LogRecord; never copied into the output as extras
_BUILTIN_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

NOISY_LOGGERS = ("httpx", "httpcore", "geopy", "urllib3")


class JSONFormatter(logging.Formatter):
    """Render a record as one JSON line, redacting PII from text values."""

    def __init__(self, redact_pii: bool = True):
        super().__init__()
        self.redact_pii = redact_pii

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": self._clean(record.getMessage()),
        }

        entry.update(
            (name, getattr(record, name))
            for name in STANDARD_FIELDS
            if getattr(record, name, None) is not None
        )

        for name, value in vars(record).items():
            if name in _BUILTIN_ATTRS or name in STANDARD_FIELDS or name.startswith("_"):
                continue
            entry[name] = self._clean(value)

        if record.exc_info and record.exc_info[0] is not None:
            entry["error"] = {
                "type": record.exc_info[0].__name__,
                "message": self._clean(str(record.exc_info[1])),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str, ensure_ascii=False)

    def _clean(self, value: Any) -> Any:
        if self.redact_pii and isinstance(value, str):
            return PIIRedactor.redact(value)
        return value


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Adapter whose context is merged into every record's `extra`."""

    def __init__(self, logger: logging.Logger, extra: Optional[dict] = None):
        super().__init__(logger, extra or {})

    def process(self, msg, kwargs):
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs

    def with_context(self, **context) -> "StructuredLoggerAdapter":
        return StructuredLoggerAdapter(self.logger, {**self.extra, **context})


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def setup_json_logging(level: str = "INFO", redact_pii: bool = True):
    """Send every log record to stdout as JSON, replacing existing handlers."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(redact_pii=redact_pii))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(_level(level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging(level: str = "INFO", log_format: str = "json"):
    """JSON in deployed environments, plain text for local runs."""
    if log_format == "json":
        setup_json_logging(level=level)
    else:
        logging.basicConfig(
            level=_level(level),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


def get_structured_logger(name: str, **context) -> StructuredLoggerAdapter:
    return StructuredLoggerAdapter(logging.getLogger(name), context)


def job_logger(
    job_id: str,
    job_type: str,
    queue: Optional[str] = None
) -> StructuredLoggerAdapter:
    """Logger for one job; records carry its id, name and queue."""
    return get_structured_logger(
        f"worker.{queue or job_type}",
        job_id=job_id,
        job_type=job_type,
        queue=queue,
    )
