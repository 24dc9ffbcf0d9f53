"""Verification engine: the per-user pillar and step state machine.

The engine owns no state of its own. Each operation reads and writes the
pillar, step and evidence stores through one session, and every mutating
operation runs inside a single ``unit_of_work`` so that a step write and
the recompute of its pillar commit or roll back together.
"""

from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Union
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.core.database import unit_of_work
from app.core.exceptions import (
    ConcurrentModificationError,
    InvalidStepTransitionError,
    PillarNotFoundError,
    RetryLimitExceededError,
    StepNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from app.database.models import VerificationStep
from app.models.verification import PillarKind, ReviewDecision, StepStatus, StepType
from app.repositories.evidence_repository import EvidenceRepository
from app.repositories.pillar_repository import PillarRepository
from app.repositories.step_repository import StepRepository
from app.schemas.verification import (
    EvidenceResponse,
    PendingVerificationItem,
    PendingVerificationPage,
    PillarResponse,
    StepDetailsResponse,
    StepResponse,
    VerificationCenterResponse,
)
from app.services.verification.catalog import CONTACT_VERIFICATION_STEP, StepCatalog, get_step_catalog
from app.services.verification.collaborators import (
    DatabaseEmailVerificationOracle,
    DatabaseUserIdentityResolver,
    EmailVerificationOracle,
    UserIdentityResolver,
)
from app.services.verification.completion import (
    is_fully_verified,
    overall_percentage,
    pillar_completion,
    pillar_status,
    validate_transition,
)
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

EMAIL_FAST_PATH_MESSAGE = "Email verified during signup. Phone verification required for full completion."
ADMIN_VERIFIED_MESSAGE = "Verified by admin"


class VerificationEngine:
    """Orchestrates initialization, transitions, retries and admin reviews."""

    def __init__(
        self,
        session: AsyncSession,
        catalog: Optional[StepCatalog] = None,
        email_oracle: Optional[EmailVerificationOracle] = None,
        identity_resolver: Optional[UserIdentityResolver] = None,
        clock: Optional[Clock] = None,
        max_retries: Optional[int] = None,
    ):
        """Initialize the engine.

        Args:
            session: Session shared by all stores for this request
            catalog: Step catalog (defaults to the configured one)
            email_oracle: Signup email confirmation lookup
            identity_resolver: Reviewer-facing identity lookup
            clock: Time source for every timestamp written
            max_retries: Retry budget given to new steps
        """
        self.session = session
        self.clock = clock or system_clock
        self.catalog = catalog or get_step_catalog()
        self.email_oracle = email_oracle or DatabaseEmailVerificationOracle(session)
        self.identity_resolver = identity_resolver or DatabaseUserIdentityResolver(session)
        self.max_retries = (
            max_retries if max_retries is not None else settings.verification.default_max_retries
        )

        self.pillars = PillarRepository(session, self.clock)
        self.steps = StepRepository(session, self.clock)
        self.evidence = EvidenceRepository(session, self.clock)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[None]:
        """One commit for everything written inside the block."""
        try:
            async with unit_of_work(self.session):
                yield
        except StaleDataError as e:
            LOGGER.warning(f"Concurrent modification detected: {str(e)}")
            raise ConcurrentModificationError(
                "Verification step was changed by another request. Reload and try again.",
                original_error=e,
            ) from e
        except SQLAlchemyError as e:
            LOGGER.error(f"Verification storage failure: {str(e)}", exc_info=True)
            raise

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def initialize_for_user(self, user_id: UUID) -> VerificationCenterResponse:
        """Create the four pillars and every catalog step for a new user.

        Runs as one transaction: either the whole center exists afterwards or
        nothing was written, so a retry after a failure is safe.

        Raises:
            AlreadyInitializedError: If the user already has pillars
        """
        LOGGER.info(f"Initializing verification center for user {user_id} (catalog {self.catalog.version})")

        async with self._transaction():
            pillars = await self.pillars.initialize_pillars(
                user_id, [(entry.pillar, entry.weight) for entry in self.catalog.pillars]
            )
            by_kind = {pillar.pillar_name: pillar for pillar in pillars}

            step_total = 0
            for entry in self.catalog.pillars:
                pillar = by_kind[entry.pillar.value]
                fast_path_applied = False

                for blueprint in entry.steps:
                    step = await self.steps.create_step(
                        user_id=user_id,
                        pillar_id=pillar.id,
                        name=blueprint.name,
                        order=blueprint.order,
                        step_type=blueprint.type,
                        checklist=blueprint.requirement_checklist(),
                        metadata={"catalog_version": self.catalog.version},
                        max_retries=self.max_retries,
                    )
                    step_total += 1

                    if entry.pillar == PillarKind.PERSONAL_INFO and blueprint.name == CONTACT_VERIFICATION_STEP:
                        fast_path_applied = await self._apply_email_fast_path(user_id, step)

                if fast_path_applied:
                    await self._recompute_pillar(pillar.id)

        LOGGER.info(f"Initialized {len(pillars)} pillars and {step_total} steps for user {user_id}")
        return await self.get_center(user_id)

    async def _apply_email_fast_path(self, user_id: UUID, step: VerificationStep) -> bool:
        """Verify Contact Verification when the signup email is already confirmed."""
        if not await self.email_oracle.is_email_verified(user_id):
            return False

        now = self.clock.now()
        await self.steps.update_status(
            step.id,
            StepStatus.VERIFIED,
            status_message=EMAIL_FAST_PATH_MESSAGE,
            verified_at=now,
            last_attempted_at=now,
        )
        LOGGER.info(f"Contact Verification auto-verified for user {user_id} (email confirmed at signup)")
        return True

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def _recompute_pillar(self, pillar_id: UUID) -> None:
        """Refresh a pillar's completion and status from its steps.

        The pillar row is locked first so concurrent recomputes of the same
        pillar run one after another and each sees the other's steps.
        """
        pillar = await self.pillars.lock_pillar(pillar_id)
        tally = await self.steps.tally_pillar(pillar_id)

        completion = pillar_completion(tally.verified, tally.total)
        status = pillar_status(completion, tally.attempted)

        if pillar.completion_percentage != completion or pillar.status != status.value:
            LOGGER.info(
                f"Pillar {pillar.pillar_name} of user {pillar.user_id}: "
                f"{pillar.completion_percentage}% {pillar.status} -> {completion}% {status.value}"
            )
        await self.pillars.set_status(pillar_id, status, completion)

    async def get_center(self, user_id: UUID) -> VerificationCenterResponse:
        """Aggregate view of a user's progress; empty when never initialized."""
        pillars = await self.pillars.get_pillars(user_id)
        if not pillars:
            return VerificationCenterResponse(
                user_id=user_id,
                initialized=False,
                overall_percentage=0,
                fully_verified=False,
                pillars=[],
            )

        steps_by_pillar = defaultdict(list)
        for step in await self.steps.get_steps_by_user(user_id):
            steps_by_pillar[step.pillar_id].append(step)

        return VerificationCenterResponse(
            user_id=user_id,
            initialized=True,
            overall_percentage=overall_percentage(
                (pillar.completion_percentage, pillar.weight_percentage) for pillar in pillars
            ),
            fully_verified=is_fully_verified(pillar.status for pillar in pillars),
            pillars=[
                PillarResponse.from_pillar(
                    pillar, sorted(steps_by_pillar[pillar.id], key=lambda s: s.step_order)
                )
                for pillar in pillars
            ],
        )

    async def get_user_verification_status(self, user_id: UUID) -> VerificationCenterResponse:
        """Center of an arbitrary user, for administrators.

        Raises:
            UserNotFoundError: If the user was never initialized
        """
        center = await self.get_center(user_id)
        if not center.initialized:
            raise UserNotFoundError(f"No verification center found for user {user_id}")
        return center

    async def get_pillar(self, user_id: UUID, kind: Union[PillarKind, str]) -> PillarResponse:
        """One pillar of a user with its steps.

        Raises:
            PillarNotFoundError: If the user has no such pillar
        """
        kind = self._parse_pillar_kind(kind)
        pillar = await self.pillars.get_pillar(user_id, kind)
        if pillar is None:
            raise PillarNotFoundError(f"Pillar '{kind.value}' not found for user {user_id}")

        steps = await self.steps.get_steps_by_pillar(pillar.id)
        return PillarResponse.from_pillar(pillar, steps)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _get_owned_step(self, step_id: UUID, user_id: Optional[UUID]) -> VerificationStep:
        step = await self.steps.get_step(step_id)
        if user_id is not None and step.user_id != user_id:
            raise StepNotFoundError(step_id)
        return step

    async def _transition(
        self,
        step: VerificationStep,
        status: StepStatus,
        fields: Dict[str, Any],
    ) -> VerificationStep:
        """Apply a status change and recompute the step's pillar."""
        try:
            validate_transition(step.id, step.status, status)
        except InvalidStepTransitionError as e:
            LOGGER.warning(f"Rejected step transition: {e.message}")
            raise

        now = self.clock.now()
        fields = dict(fields, last_attempted_at=now)
        if status == StepStatus.VERIFIED:
            fields["verified_at"] = now

        previous = step.status
        step = await self.steps.update_status(step.id, status, **fields)
        await self._recompute_pillar(step.pillar_id)

        LOGGER.info(f"Step {step.id} ({step.step_name}): {previous} -> {status.value}")
        return step

    async def update_step_status(
        self,
        step_id: UUID,
        status: Union[StepStatus, str],
        status_message: Optional[str] = None,
        failure_reason: Optional[str] = None,
        failure_suggestion: Optional[str] = None,
        user_id: Optional[UUID] = None,
    ) -> StepResponse:
        """Move a step to a new status and refresh its pillar.

        Args:
            step_id: Step to update
            status: New status
            status_message: Optional message shown to the user
            failure_reason: Optional failure reason
            failure_suggestion: Optional hint on how to fix a failure
            user_id: When given, the step must belong to this user, and only
                automatic steps may be marked verified

        Raises:
            StepNotFoundError: If the step does not exist (or is not the user's)
            InvalidStepTransitionError: If the lifecycle forbids the change, the
                step failed with its retry budget spent, or the user tries to
                verify a manual or external step
        """
        status = self._parse_step_status(status)
        fields = {
            key: value
            for key, value in (
                ("status_message", status_message),
                ("failure_reason", failure_reason),
                ("failure_suggestion", failure_suggestion),
            )
            if value is not None
        }

        async with self._transaction():
            step = await self._get_owned_step(step_id, user_id)

            # Only an admin review can settle a failed step with no retries left
            if step.status == StepStatus.FAILED.value and step.retry_count >= step.max_retries:
                LOGGER.warning(
                    f"Update rejected for step {step_id}: failed with retries exhausted "
                    f"({step.retry_count}/{step.max_retries})"
                )
                raise InvalidStepTransitionError(step.id, step.status, status.value)

            if (
                user_id is not None
                and status == StepStatus.VERIFIED
                and step.step_type != StepType.AUTOMATIC.value
            ):
                LOGGER.warning(f"User {user_id} may not verify {step.step_type} step {step_id}")
                raise InvalidStepTransitionError(step.id, step.status, status.value)

            step = await self._transition(step, status, fields)

        return StepResponse.from_step(step)

    async def retry_step(self, step_id: UUID, user_id: Optional[UUID] = None) -> StepResponse:
        """Spend one retry and put a failed step back in ``pending``.

        Raises:
            StepNotFoundError: If the step does not exist (or is not the user's)
            InvalidStepTransitionError: If the step is not in ``failed``
            RetryLimitExceededError: If the retry budget is used up; nothing is written
        """
        async with self._transaction():
            step = await self._get_owned_step(step_id, user_id)

            if step.status != StepStatus.FAILED.value:
                LOGGER.warning(f"Retry rejected for step {step_id} in status {step.status}")
                raise InvalidStepTransitionError(step.id, step.status, StepStatus.PENDING.value)

            if not await self.steps.can_retry(step.id):
                LOGGER.warning(
                    f"Retry limit reached for step {step_id} ({step.retry_count}/{step.max_retries})"
                )
                raise RetryLimitExceededError(step.id, step.retry_count, step.max_retries)

            previous = step.status
            step = await self.steps.record_retry(step.id)
            await self._recompute_pillar(step.pillar_id)

        LOGGER.info(
            f"Step {step.id} ({step.step_name}) retried: {previous} -> {step.status} "
            f"(attempt {step.retry_count}/{step.max_retries})"
        )
        return StepResponse.from_step(step)

    async def review_step_as_admin(
        self,
        step_id: UUID,
        admin_id: Union[UUID, str],
        decision: Union[ReviewDecision, str],
        notes: Optional[str],
    ) -> StepResponse:
        """Force a terminal outcome on a step, regardless of its retry budget.

        Raises:
            ValidationError: If notes are missing or the decision is unknown;
                raised before anything is read or written
            StepNotFoundError: If the step does not exist
            InvalidStepTransitionError: If the step is already verified
        """
        if notes is None or not notes.strip():
            raise ValidationError("Admin review notes are required")
        try:
            decision = ReviewDecision(decision)
        except ValueError as e:
            raise ValidationError(f"Invalid review decision: {decision}", original_error=e) from e

        notes = notes.strip()
        fields: Dict[str, Any] = {
            "admin_reviewer_id": str(admin_id),
            "admin_review_notes": notes,
        }
        if decision == ReviewDecision.VERIFIED:
            fields["status_message"] = ADMIN_VERIFIED_MESSAGE
        else:
            fields["status_message"] = f"Failed: {notes}"
            fields["failure_reason"] = notes

        async with self._transaction():
            step = await self._get_owned_step(step_id, None)
            step = await self._transition(step, StepStatus(decision.value), fields)

        LOGGER.info(f"Admin {admin_id} reviewed step {step_id}: {decision.value}")
        return StepResponse.from_step(step)

    # ------------------------------------------------------------------
    # Evidence and reviewer queue
    # ------------------------------------------------------------------

    async def upload_step_evidence(
        self,
        step_id: UUID,
        evidence_type: str,
        evidence_url: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[UUID] = None,
    ) -> EvidenceResponse:
        """Attach an evidence reference to a step. The step status is untouched.

        Raises:
            ValidationError: If type or url is blank
            StepNotFoundError: If the step does not exist (or is not the user's)
        """
        if not evidence_type or not evidence_type.strip():
            raise ValidationError("Evidence type is required")
        if not evidence_url or not evidence_url.strip():
            raise ValidationError("Evidence URL is required")

        async with self._transaction():
            step = await self._get_owned_step(step_id, user_id)
            evidence = await self.evidence.add_evidence(
                step.id, evidence_type.strip(), evidence_url.strip(), metadata
            )

        LOGGER.info(f"Evidence '{evidence.evidence_type}' uploaded for step {step_id}")
        return EvidenceResponse.model_validate(evidence)

    async def get_step_details(self, step_id: UUID) -> StepDetailsResponse:
        """A step with its pillar kind and all of its evidence, newest first.

        Raises:
            StepNotFoundError: If the step does not exist
        """
        step = await self.steps.get_step(step_id)
        pillar = await self.pillars.get_by_id(step.pillar_id)
        if pillar is None:
            raise PillarNotFoundError(f"Verification pillar {step.pillar_id} not found")

        evidence = await self.evidence.get_evidence_for_step(step.id)
        return StepDetailsResponse(
            step=StepResponse.from_step(step),
            pillar_name=pillar.pillar_name,
            evidence=[EvidenceResponse.model_validate(item) for item in evidence],
        )

    async def list_pending_verifications(
        self,
        page: int = 1,
        limit: Optional[int] = None,
        pillar: Optional[Union[PillarKind, str]] = None,
        step_name: Optional[str] = None,
    ) -> PendingVerificationPage:
        """Reviewer queue of pending steps, most recently attempted first.

        Raises:
            ValidationError: If page or limit is out of range
        """
        if limit is None:
            limit = settings.verification.pending_page_size
        if page < 1:
            raise ValidationError("page must be at least 1")
        if limit < 1 or limit > settings.verification.pending_max_page_size:
            raise ValidationError(
                f"limit must be between 1 and {settings.verification.pending_max_page_size}"
            )
        kind = self._parse_pillar_kind(pillar) if pillar is not None else None

        total = await self.steps.count_pending(kind, step_name)
        rows = await self.steps.list_pending(kind, step_name, offset=(page - 1) * limit, limit=limit)
        identities = await self.identity_resolver.resolve({row.step.user_id for row in rows})

        items = []
        for row in rows:
            identity = identities.get(row.step.user_id)
            items.append(
                PendingVerificationItem(
                    step=StepResponse.from_step(row.step),
                    pillar_name=row.pillar_name,
                    weight_percentage=row.weight_percentage,
                    user_email=identity.email if identity else "",
                    user_name=identity.name if identity else "",
                )
            )

        return PendingVerificationPage(
            items=items,
            total=total,
            page=page,
            limit=limit,
            total_pages=(total + limit - 1) // limit,
        )

    # ------------------------------------------------------------------
    # Input parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_step_status(status: Union[StepStatus, str]) -> StepStatus:
        try:
            return StepStatus(status)
        except ValueError as e:
            raise ValidationError(f"Invalid step status: {status}", original_error=e) from e

    @staticmethod
    def _parse_pillar_kind(kind: Union[PillarKind, str]) -> PillarKind:
        try:
            return PillarKind(kind)
        except ValueError as e:
            raise ValidationError(f"Invalid pillar: {kind}", original_error=e) from e
