"""Signed, long-lived tokens for one-click email unsubscribe links."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from job_worker.config import get_settings

UNSUBSCRIBE_PURPOSE = "unsubscribe"
TOKEN_TTL = timedelta(days=90)
ALGORITHM = "HS256"


def _secret(secret: Optional[str]) -> str:
    value = secret if secret is not None else get_settings().session_secret
    if not value:
        raise RuntimeError("SESSION_SECRET is not set")
    return value


def generate_unsubscribe_token(user_id: str, secret: Optional[str] = None) -> str:
    claims = {
        "uid": user_id,
        "purpose": UNSUBSCRIBE_PURPOSE,
        "exp": datetime.now(timezone.utc) + TOKEN_TTL,
    }
    return jwt.encode(claims, _secret(secret), algorithm=ALGORITHM)


def verify_unsubscribe_token(token: str, secret: Optional[str] = None) -> Optional[str]:
    """Return the user id for a valid token, None if invalid or expired."""
    try:
        claims = jwt.decode(token, _secret(secret), algorithms=[ALGORITHM])
    except JWTError:
        return None
    if claims.get("purpose") != UNSUBSCRIBE_PURPOSE or not claims.get("uid"):
        return None
    return claims["uid"]
