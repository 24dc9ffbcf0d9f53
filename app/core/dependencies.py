"""FastAPI dependency providers."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth import get_current_user
from app.core.database import async_session_maker, get_async_session
from app.schemas.auth import CurrentUser
from app.services.verification_center_service import VerificationCenterService


async def get_verification_service(
    db_session: Annotated[AsyncSession, Depends(get_async_session)],
) -> VerificationCenterService:
    """Dependency to create a VerificationCenterService per request."""
    return VerificationCenterService(db_session)


async def get_current_user_id(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> UUID:
    """Internal user id of the authenticated caller (the token subject)."""
    try:
        return UUID(current_user.id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token subject is not a valid user id",
        ) from e


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that needs one transaction per item."""
    return async_session_maker
