"""
Access token verification.

Tokens are issued by the hosted Supabase auth service and signed with the
project JWT secret. The `sub` claim is the profile id.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Any
import logging
import uuid

from jose import JWTError, jwt

from app.config import settings


logger = logging.getLogger(__name__)


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a Supabase access token.

    Args:
        token: The JWT token to decode

    Returns:
        Decoded token payload or None if invalid
    """
    if not settings.SUPABASE_JWT_SECRET:
        logger.error("SUPABASE_JWT_SECRET is not configured; rejecting token")
        return None

    try:
        payload = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.SUPABASE_JWT_ALGORITHM],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
        return payload
    except JWTError as e:
        logger.debug(f"Token rejected: {e}")
        return None


def verify_access_token(token: str) -> Optional[str]:
    """
    Verify an access token and return the subject (profile ID).

    Args:
        token: The JWT access token

    Returns:
        Profile ID string or None if invalid
    """
    payload = decode_token(token)
    if payload is None:
        return None

    return payload.get("sub")


def create_access_token(
    subject: str | uuid.UUID,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[dict[str, Any]] = None
) -> str:
    """
    Create a token shaped like a Supabase access token.

    Production tokens come from the auth service; this is used by local
    tooling and tests that need a token the service accepts.
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=1))

    to_encode = {
        "sub": str(subject),
        "aud": settings.SUPABASE_JWT_AUDIENCE,
        "role": "authenticated",
        "exp": expire,
        "iat": now,
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(
        to_encode,
        settings.SUPABASE_JWT_SECRET,
        algorithm=settings.SUPABASE_JWT_ALGORITHM
    )
