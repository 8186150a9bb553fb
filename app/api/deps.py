from typing import Annotated
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import get_db, get_session_factory
from app.core.circuit_breaker import FeatureBreaker
from app.core.security import verify_access_token
from app.models.organization import Profile


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_profile(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Profile:
    """
    Dependency to get the profile of the authenticated user.
    Validates the Supabase access token; its subject is the profile id.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token = credentials.credentials
    profile_id = verify_access_token(token)

    if profile_id is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    try:
        profile_uuid = uuid.UUID(profile_id)
    except ValueError:
        logger.warning(f"Invalid profile id in token: {profile_id}")
        raise credentials_exception

    result = await db.execute(select(Profile).where(Profile.id == profile_uuid))
    profile = result.scalar_one_or_none()

    if profile is None:
        logger.warning(f"Profile {profile_id} not found")
        raise credentials_exception

    if profile.archived_at is not None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is archived"
        )

    return profile


def get_feature_breaker() -> FeatureBreaker:
    """A fresh breaker per request."""
    return FeatureBreaker()


# Type aliases for cleaner endpoint signatures
CurrentProfile = Annotated[Profile, Depends(get_current_profile)]
DB = Annotated[AsyncSession, Depends(get_db)]
Breaker = Annotated[FeatureBreaker, Depends(get_feature_breaker)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
