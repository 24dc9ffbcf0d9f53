"""Repository for user data access operations.

The verification core never writes users; it only reads identity and the
email confirmation flag through the collaborator interfaces.
"""

from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.models import User, VerificationPillar
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

STUDENT_ROLE = "student"


class UserRepository:
    """Repository for User entity reads."""

    def __init__(self, db_session: AsyncSession):
        """Initialize repository with database session.

        Args:
            db_session: SQLAlchemy async session
        """
        self.db_session = db_session

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        """Get user by internal ID.

        Args:
            user_id: Internal user ID

        Returns:
            User instance or None if not found
        """
        stmt = select(User).where(User.id == user_id)
        result = await self.db_session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_ids(self, user_ids: Iterable[UUID]) -> list[User]:
        ids = list(set(user_ids))
        if not ids:
            return []
        stmt = select(User).where(User.id.in_(ids))
        result = await self.db_session.execute(stmt)
        return list(result.scalars().all())

    async def is_email_verified(self, user_id: UUID) -> bool:
        """Whether the user confirmed their email address at signup.

        Unknown users count as unverified.
        """
        stmt = select(User.email_verified_at).where(User.id == user_id)
        result = await self.db_session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def list_students_without_pillars(self) -> list[UUID]:
        """Ids of students whose verification center was never initialized."""
        stmt = (
            select(User.id)
            .outerjoin(VerificationPillar, VerificationPillar.user_id == User.id)
            .where(User.user_role == STUDENT_ROLE)
            .where(VerificationPillar.id.is_(None))
            .distinct()
            .order_by(User.id)
        )
        result = await self.db_session.execute(stmt)
        user_ids = list(result.scalars().all())
        LOGGER.info(f"Found {len(user_ids)} students without verification pillars")
        return user_ids
