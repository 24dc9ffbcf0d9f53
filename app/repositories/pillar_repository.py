"""Pillar store: the four weighted verification pillars of each user."""

from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock
from app.core.exceptions import AlreadyInitializedError, PillarNotFoundError
from app.database.models import VerificationPillar
from app.models.verification import PILLAR_ORDER, PillarKind, PillarStatus
from app.repositories.base_repository import BaseRepository

_PILLAR_RANK = {kind.value: index for index, kind in enumerate(PILLAR_ORDER)}


class PillarRepository(BaseRepository[VerificationPillar]):
    """Repository for VerificationPillar records."""

    def __init__(self, session: AsyncSession, clock: Optional[Clock] = None):
        super().__init__(session, VerificationPillar, clock)

    async def has_pillars(self, user_id: UUID) -> bool:
        query = select(func.count()).select_from(VerificationPillar).where(VerificationPillar.user_id == user_id)
        result = await self.session.execute(query)
        return result.scalar_one() > 0

    async def initialize_pillars(
        self,
        user_id: UUID,
        weights: Iterable[tuple[PillarKind, int]],
    ) -> list[VerificationPillar]:
        """Create every pillar of a user in ``not_verified``.

        Args:
            user_id: Owning user
            weights: (pillar kind, weight percentage) for each of the four pillars

        Returns:
            The new pillars in display order

        Raises:
            AlreadyInitializedError: If the user already has any pillar
        """
        if await self.has_pillars(user_id):
            raise AlreadyInitializedError(user_id)

        now = self.clock.now()
        pillars = [
            VerificationPillar(
                user_id=user_id,
                pillar_name=kind.value,
                weight_percentage=weight,
                completion_percentage=0,
                status=PillarStatus.NOT_VERIFIED.value,
                created_at=now,
                updated_at=now,
            )
            for kind, weight in weights
        ]
        self.session.add_all(pillars)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # Another request initialized the same user between check and insert
            raise AlreadyInitializedError(user_id, original_error=e) from e

        self.logger.info(f"Created {len(pillars)} verification pillars for user {user_id}")
        return sorted(pillars, key=lambda p: _PILLAR_RANK.get(p.pillar_name, len(_PILLAR_RANK)))

    async def get_pillars(self, user_id: UUID) -> list[VerificationPillar]:
        """All pillars of a user in display order (empty if never initialized)."""
        query = select(VerificationPillar).where(VerificationPillar.user_id == user_id)
        result = await self.session.execute(query)
        pillars: Sequence[VerificationPillar] = result.scalars().all()
        return sorted(pillars, key=lambda p: _PILLAR_RANK.get(p.pillar_name, len(_PILLAR_RANK)))

    async def get_pillar(self, user_id: UUID, kind: PillarKind) -> Optional[VerificationPillar]:
        query = select(VerificationPillar).where(
            VerificationPillar.user_id == user_id,
            VerificationPillar.pillar_name == kind.value,
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def lock_pillar(self, pillar_id: UUID) -> VerificationPillar:
        """Load a pillar with a row lock held until the transaction ends.

        Raises:
            PillarNotFoundError: If the pillar does not exist
        """
        query = select(VerificationPillar).where(VerificationPillar.id == pillar_id).with_for_update()
        result = await self.session.execute(query)
        pillar = result.scalar_one_or_none()
        if pillar is None:
            raise PillarNotFoundError(f"Verification pillar {pillar_id} not found")
        return pillar

    async def set_status(
        self,
        pillar_id: UUID,
        status: PillarStatus,
        completion_percentage: Optional[int] = None,
    ) -> VerificationPillar:
        """Update a pillar's status and, when supplied, its completion.

        Only the verification engine's recompute path calls this.
        """
        pillar = await self.get_by_id(pillar_id)
        if pillar is None:
            raise PillarNotFoundError(f"Verification pillar {pillar_id} not found")

        pillar.status = status.value
        if completion_percentage is not None:
            pillar.completion_percentage = completion_percentage
        pillar.updated_at = self.clock.now()
        await self.session.flush()
        return pillar
