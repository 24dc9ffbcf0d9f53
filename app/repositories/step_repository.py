"""Step store: verification steps, their retry budget and review fields."""

from dataclasses import dataclass
from typing import Any, Optional, Sequence
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock
from app.core.exceptions import RetryLimitExceededError, StepNotFoundError
from app.database.models import VerificationPillar, VerificationStep
from app.models.verification import PillarKind, RequirementItem, StepStatus, StepType
from app.repositories.base_repository import BaseRepository

# Fields updateStatus may set besides the status itself
UPDATABLE_STEP_FIELDS = frozenset(
    {
        "status_message",
        "failure_reason",
        "failure_suggestion",
        "last_attempted_at",
        "verified_at",
        "retry_count",
        "admin_reviewer_id",
        "admin_review_notes",
    }
)


@dataclass(frozen=True)
class StepTally:
    """Status counts of one pillar's steps."""

    total: int
    verified: int
    attempted: int


@dataclass(frozen=True)
class PendingStepRow:
    step: VerificationStep
    pillar_name: str
    weight_percentage: int


class StepRepository(BaseRepository[VerificationStep]):
    """Repository for VerificationStep records."""

    def __init__(self, session: AsyncSession, clock: Optional[Clock] = None):
        super().__init__(session, VerificationStep, clock)

    async def create_step(
        self,
        user_id: UUID,
        pillar_id: UUID,
        name: str,
        order: int,
        step_type: StepType,
        checklist: Optional[Sequence[RequirementItem]] = None,
        metadata: Optional[dict[str, Any]] = None,
        max_retries: int = 3,
    ) -> VerificationStep:
        """Create a step in ``not_verified``.

        Args:
            user_id: Owning user
            pillar_id: Owning pillar (never changes afterwards)
            name: Human-readable step name
            order: Position within the pillar
            step_type: automatic, manual or external
            checklist: Descriptive requirement checklist
            metadata: Free-form step metadata
            max_retries: Retry budget

        Returns:
            The created step
        """
        now = self.clock.now()
        return await self.create(
            user_id=user_id,
            pillar_id=pillar_id,
            step_name=name,
            step_order=order,
            step_type=step_type.value,
            status=StepStatus.NOT_VERIFIED.value,
            requirement_checklist=[item.model_dump() for item in checklist] if checklist else None,
            step_metadata=metadata,
            retry_count=0,
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
        )

    async def get_steps_by_pillar(self, pillar_id: UUID) -> list[VerificationStep]:
        """Steps of a pillar ordered by their catalog position."""
        query = (
            select(VerificationStep)
            .where(VerificationStep.pillar_id == pillar_id)
            .order_by(VerificationStep.step_order.asc())
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_steps_by_user(self, user_id: UUID) -> list[VerificationStep]:
        query = (
            select(VerificationStep)
            .where(VerificationStep.user_id == user_id)
            .order_by(VerificationStep.pillar_id, VerificationStep.step_order.asc())
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_step(self, step_id: UUID) -> VerificationStep:
        """Fetch a step.

        Raises:
            StepNotFoundError: If no step has this id
        """
        step = await self.get_by_id(step_id)
        if step is None:
            raise StepNotFoundError(step_id)
        return step

    async def update_status(
        self,
        step_id: UUID,
        status: StepStatus,
        **fields: Any,
    ) -> VerificationStep:
        """Set a step's status plus any subset of its updatable fields.

        ``updated_at`` is always stamped.

        Raises:
            StepNotFoundError: If no step has this id
            ValueError: If a field outside UPDATABLE_STEP_FIELDS is passed
        """
        unknown = set(fields) - UPDATABLE_STEP_FIELDS
        if unknown:
            raise ValueError(f"Cannot update step fields: {sorted(unknown)}")

        step = await self.get_step(step_id)
        step.status = status.value
        for key, value in fields.items():
            setattr(step, key, value)
        step.updated_at = self.clock.now()
        await self.session.flush()
        return step

    async def can_retry(self, step_id: UUID) -> bool:
        step = await self.get_step(step_id)
        return step.retry_count < step.max_retries

    async def record_retry(self, step_id: UUID) -> VerificationStep:
        """Spend one retry: bump the counter and put the step back in ``pending``.

        Raises:
            StepNotFoundError: If no step has this id
            RetryLimitExceededError: If the retry budget is already used up
        """
        step = await self.get_step(step_id)
        if step.retry_count >= step.max_retries:
            raise RetryLimitExceededError(step_id, step.retry_count, step.max_retries)

        return await self.update_status(
            step_id,
            StepStatus.PENDING,
            retry_count=step.retry_count + 1,
            last_attempted_at=self.clock.now(),
        )

    async def tally_pillar(self, pillar_id: UUID) -> StepTally:
        """Count a pillar's steps straight from the table.

        Reading the counts with SQL rather than from loaded objects means the
        result reflects every committed step plus this transaction's own
        flushed writes.
        """
        query = select(
            func.count(VerificationStep.id),
            func.coalesce(
                func.sum(case((VerificationStep.status == StepStatus.VERIFIED.value, 1), else_=0)), 0
            ),
            func.coalesce(
                func.sum(
                    case((VerificationStep.status != StepStatus.NOT_VERIFIED.value, 1), else_=0)
                ),
                0,
            ),
        ).where(VerificationStep.pillar_id == pillar_id)
        result = await self.session.execute(query)
        total, verified, attempted = result.one()
        return StepTally(total=int(total), verified=int(verified), attempted=int(attempted))

    def _pending_filters(self, pillar: Optional[PillarKind], step_name: Optional[str]) -> list:
        conditions = [VerificationStep.status == StepStatus.PENDING.value]
        if pillar is not None:
            conditions.append(VerificationPillar.pillar_name == pillar.value)
        if step_name:
            conditions.append(VerificationStep.step_name == step_name)
        return conditions

    async def count_pending(
        self,
        pillar: Optional[PillarKind] = None,
        step_name: Optional[str] = None,
    ) -> int:
        query = (
            select(func.count(VerificationStep.id))
            .join(VerificationPillar, VerificationStep.pillar_id == VerificationPillar.id)
            .where(*self._pending_filters(pillar, step_name))
        )
        result = await self.session.execute(query)
        return int(result.scalar_one())

    async def list_pending(
        self,
        pillar: Optional[PillarKind] = None,
        step_name: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> list[PendingStepRow]:
        """Pending steps for the reviewer queue.

        Ordered by most recently attempted first (never-attempted last), then
        by creation time, newest first.
        """
        query = (
            select(VerificationStep, VerificationPillar.pillar_name, VerificationPillar.weight_percentage)
            .join(VerificationPillar, VerificationStep.pillar_id == VerificationPillar.id)
            .where(*self._pending_filters(pillar, step_name))
            .order_by(
                VerificationStep.last_attempted_at.desc().nulls_last(),
                VerificationStep.created_at.desc(),
                VerificationStep.id,
            )
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [
            PendingStepRow(step=step, pillar_name=pillar_name, weight_percentage=weight)
            for step, pillar_name, weight in result.all()
        ]
