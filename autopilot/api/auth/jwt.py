"""JWT token creation and validation utilities.

Uses python-jose for HS256 bearer tokens carrying a subject and scopes.
"""
import hmac
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel
import structlog

logger = structlog.get_logger(__name__)


_jwt_secret = os.getenv("JWT_SECRET_KEY")
if not _jwt_secret:
    raise ValueError("JWT_SECRET_KEY environment variable must be set")
JWT_SECRET_KEY: str = _jwt_secret
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(
    os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "30")
)


class TokenData(BaseModel):
    """Data extracted from a validated JWT token."""

    sub: str  # Subject (user id)
    exp: Optional[datetime] = None
    scopes: list[str] = []


def create_access_token(
    subject: str,
    scopes: Optional[list[str]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        subject: The subject of the token (user id)
        scopes: Optional list of permission scopes
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "exp": now + expires_delta,
        "iat": now,
        "scopes": scopes or [],
    }

    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> TokenData:
    """
    Verify and decode a JWT token.

    Args:
        token: The JWT token string to verify

    Returns:
        TokenData with the decoded token information

    Raises:
        JWTError: If the token is invalid or expired
    """
    payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])

    sub = payload.get("sub")
    if sub is None:
        raise JWTError("Token missing subject claim")

    exp = payload.get("exp")
    exp_datetime = datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None

    return TokenData(sub=str(sub), exp=exp_datetime, scopes=payload.get("scopes", []))


def verify_webhook_secret(provided: Optional[str], expected: Optional[str]) -> bool:
    """
    Check an inbound webhook secret in constant time.

    An automation without a configured secret accepts no deliveries.
    """
    if not expected or not provided:
        logger.warning("webhook_secret_missing", configured=bool(expected))
        return False
    matches = hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
    if not matches:
        logger.warning("webhook_secret_mismatch")
    return matches
