"""Tests for unsubscribe tokens."""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from job_worker.lib.unsubscribe_token import (
    ALGORITHM,
    generate_unsubscribe_token,
    verify_unsubscribe_token,
)


def test_round_trip_uses_configured_secret():
    token = generate_unsubscribe_token("user123")
    assert verify_unsubscribe_token(token) == "user123"


def test_wrong_secret_rejected():
    token = generate_unsubscribe_token("user123", secret="one")
    assert verify_unsubscribe_token(token, secret="two") is None


def test_expired_token_rejected():
    claims = {"uid": "user123", "purpose": "unsubscribe", "exp": datetime.now(timezone.utc) - timedelta(days=1)}
    token = jwt.encode(claims, "test-session-secret", algorithm=ALGORITHM)
    assert verify_unsubscribe_token(token) is None


def test_other_purpose_rejected():
    claims = {"uid": "user123", "purpose": "password-reset", "exp": datetime.now(timezone.utc) + timedelta(days=1)}
    token = jwt.encode(claims, "test-session-secret", algorithm=ALGORITHM)
    assert verify_unsubscribe_token(token) is None


def test_token_lasts_ninety_days():
    token = generate_unsubscribe_token("user123")
    exp = jwt.get_unverified_claims(token)["exp"]
    remaining = datetime.fromtimestamp(exp, timezone.utc) - datetime.now(timezone.utc)
    assert timedelta(days=89) < remaining <= timedelta(days=90)


def test_missing_secret():
    with pytest.raises(RuntimeError, match="SESSION_SECRET"):
        generate_unsubscribe_token("user123", secret="")
