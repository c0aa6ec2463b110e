"""Tests for structured logging and PII redaction."""

import json
import logging

from job_worker.lib import JSONFormatter, PIIRedactor, job_logger


def make_record(msg, **extra):
    record = logging.LogRecord("worker.email", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestPIIRedactor:
    def test_email_redacted(self):
        assert PIIRedactor.redact("sending to rider@example.com now") == "sending to [EMAIL_REDACTED] now"

    def test_phone_redacted(self):
        assert "[PHONE_INTL_REDACTED]" in PIIRedactor.redact("call +1 541 555 0100")

    def test_token_query_param_redacted(self):
        text = "link https://api.example.com/api/email/unsubscribe?token=eyJabc.def.ghi&x=1"
        assert PIIRedactor.redact(text).endswith("?token=[TOKEN_REDACTED]&x=1")

    def test_contains_pii(self):
        assert PIIRedactor.contains_pii("rider@example.com")
        assert not PIIRedactor.contains_pii("ride 42 synced")
        assert not PIIRedactor.contains_pii(None)

    def test_empty(self):
        assert PIIRedactor.redact(None) == ""


class TestJSONFormatter:
    def test_structured_fields_and_redaction(self):
        formatter = JSONFormatter(redact_pii=True)
        record = make_record("Processing welcome-1 for rider@example.com", job_id="welcome-1-u1", queue="email")

        output = json.loads(formatter.format(record))

        assert output["level"] == "INFO"
        assert output["logger"] == "worker.email"
        assert output["message"] == "Processing welcome-1 for [EMAIL_REDACTED]"
        assert output["job_id"] == "welcome-1-u1"
        assert output["queue"] == "email"

    def test_redaction_can_be_disabled(self):
        formatter = JSONFormatter(redact_pii=False)
        output = json.loads(formatter.format(make_record("to rider@example.com")))
        assert output["message"] == "to rider@example.com"

    def test_custom_extra_included(self):
        output = json.loads(JSONFormatter().format(make_record("chunk done", chunk=3)))
        assert output["chunk"] == 3


def test_job_logger_carries_context(caplog):
    log = job_logger("geocode-ride-1", "geocodeRide", queue="geocode")

    with caplog.at_level(logging.INFO, logger="worker.geocode"):
        log.info("Processing", extra={"attempts": 2})

    record = caplog.records[-1]
    assert record.job_id == "geocode-ride-1"
    assert record.job_type == "geocodeRide"
    assert record.queue == "geocode"
    assert record.attempts == 2
