"""Interfaces the verification engine consumes from the rest of the platform."""

from abc import ABC, abstractmethod
from typing import Iterable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.verification import UserIdentity
from app.repositories.user_repository import UserRepository


class EmailVerificationOracle(ABC):
    """Tells whether a user already confirmed their email address."""

    @abstractmethod
    async def is_email_verified(self, user_id: UUID) -> bool:
        pass


class UserIdentityResolver(ABC):
    """Resolves user ids to the identity shown to reviewers."""

    @abstractmethod
    async def resolve(self, user_ids: Iterable[UUID]) -> dict[UUID, UserIdentity]:
        """Return an identity for every requested id.

        Ids the platform does not know map to an identity with empty name
        and email.
        """
        pass


class DatabaseEmailVerificationOracle(EmailVerificationOracle):
    """Reads the signup confirmation timestamp from the ``users`` table."""

    def __init__(self, session: AsyncSession):
        self.users = UserRepository(session)

    async def is_email_verified(self, user_id: UUID) -> bool:
        return await self.users.is_email_verified(user_id)


class DatabaseUserIdentityResolver(UserIdentityResolver):
    def __init__(self, session: AsyncSession):
        self.users = UserRepository(session)

    async def resolve(self, user_ids: Iterable[UUID]) -> dict[UUID, UserIdentity]:
        requested = list(user_ids)
        found = {user.id: user for user in await self.users.get_by_ids(requested)}

        identities: dict[UUID, UserIdentity] = {}
        for user_id in requested:
            user = found.get(user_id)
            if user is None:
                identities[user_id] = UserIdentity(user_id=str(user_id))
            else:
                identities[user_id] = UserIdentity(
                    user_id=str(user_id),
                    name=user.full_name,
                    email=user.email,
                    role=user.user_role,
                )
        return identities
