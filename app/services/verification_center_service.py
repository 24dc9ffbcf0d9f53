"""Verification Center service: the command surface callers use."""

from typing import Any, Dict, Optional, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError
from app.models.verification import PillarKind, ReviewDecision, StepStatus
from app.schemas.verification import (
    BackfillResult,
    EvidenceResponse,
    PendingVerificationPage,
    PillarResponse,
    StepDetailsResponse,
    StepResponse,
    VerificationCenterResponse,
)
from app.services.base_service import BaseService
from app.services.verification.engine import VerificationEngine
from app.services.verification.initializer import initialize_verification_for_existing_students
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


class VerificationCenterService(BaseService):
    """Service wrapping the verification engine for the API layer.

    Every public operation goes through BaseService.execute(), so store
    errors reach callers as StorageError and input problems as
    ValidationError.
    """

    def __init__(self, session: AsyncSession, engine: Optional[VerificationEngine] = None):
        """Initialize verification center service.

        Args:
            session: Async database session for repository access
            engine: Engine override, mainly for tests
        """
        super().__init__()
        self.session = session
        self.engine = engine or VerificationEngine(session)

    async def run(self, *args, **kwargs) -> Any:
        """Route to the engine operation named by ``action``."""
        action = kwargs.get("action")

        if action == "initialize":
            return await self.engine.initialize_for_user(kwargs["user_id"])
        elif action == "get_center":
            return await self.engine.get_center(kwargs["user_id"])
        elif action == "get_pillar":
            return await self.engine.get_pillar(kwargs["user_id"], kwargs["pillar"])
        elif action == "update_step_status":
            return await self.engine.update_step_status(
                kwargs["step_id"],
                kwargs["status"],
                status_message=kwargs.get("status_message"),
                failure_reason=kwargs.get("failure_reason"),
                failure_suggestion=kwargs.get("failure_suggestion"),
                user_id=kwargs.get("user_id"),
            )
        elif action == "retry_step":
            return await self.engine.retry_step(kwargs["step_id"], user_id=kwargs.get("user_id"))
        elif action == "review_step":
            return await self.engine.review_step_as_admin(
                kwargs["step_id"],
                kwargs["admin_id"],
                kwargs["decision"],
                kwargs.get("notes"),
            )
        elif action == "upload_evidence":
            return await self.engine.upload_step_evidence(
                kwargs["step_id"],
                kwargs["evidence_type"],
                kwargs["evidence_url"],
                metadata=kwargs.get("metadata"),
                user_id=kwargs.get("user_id"),
            )
        elif action == "get_step_details":
            return await self.engine.get_step_details(kwargs["step_id"])
        elif action == "list_pending":
            return await self.engine.list_pending_verifications(
                page=kwargs.get("page", 1),
                limit=kwargs.get("limit"),
                pillar=kwargs.get("pillar"),
                step_name=kwargs.get("step_name"),
            )
        elif action == "get_user_status":
            return await self.engine.get_user_verification_status(kwargs["user_id"])
        else:
            raise ValidationError(f"Unknown action: {action}")

    def validate(self, *args, **kwargs):
        """Validate service inputs based on the action being performed.

        Raises:
            ValidationError: If validation fails
        """
        action = kwargs.get("action")

        if action in ("initialize", "get_center", "get_pillar", "get_user_status"):
            if not kwargs.get("user_id"):
                raise ValidationError("user_id is required")
        if action in ("update_step_status", "retry_step", "review_step", "upload_evidence", "get_step_details"):
            if not kwargs.get("step_id"):
                raise ValidationError("step_id is required")
        if action == "review_step" and not kwargs.get("admin_id"):
            raise ValidationError("admin_id is required")

    async def initialize(self, user_id: UUID) -> VerificationCenterResponse:
        """Create the verification center of a new user."""
        return await self.execute(action="initialize", user_id=user_id)

    async def get_center(self, user_id: UUID) -> VerificationCenterResponse:
        return await self.execute(action="get_center", user_id=user_id)

    async def get_pillar(self, user_id: UUID, pillar: Union[PillarKind, str]) -> PillarResponse:
        return await self.execute(action="get_pillar", user_id=user_id, pillar=pillar)

    async def update_step_status(
        self,
        user_id: UUID,
        step_id: UUID,
        status: Union[StepStatus, str],
        status_message: Optional[str] = None,
        failure_reason: Optional[str] = None,
        failure_suggestion: Optional[str] = None,
    ) -> StepResponse:
        """Update one of the user's own steps."""
        return await self.execute(
            action="update_step_status",
            user_id=user_id,
            step_id=step_id,
            status=status,
            status_message=status_message,
            failure_reason=failure_reason,
            failure_suggestion=failure_suggestion,
        )

    async def retry_step(self, user_id: UUID, step_id: UUID) -> StepResponse:
        return await self.execute(action="retry_step", user_id=user_id, step_id=step_id)

    async def upload_evidence(
        self,
        user_id: UUID,
        step_id: UUID,
        evidence_type: str,
        evidence_url: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> EvidenceResponse:
        return await self.execute(
            action="upload_evidence",
            user_id=user_id,
            step_id=step_id,
            evidence_type=evidence_type,
            evidence_url=evidence_url,
            metadata=metadata,
        )

    async def review_step(
        self,
        admin_id: str,
        step_id: UUID,
        decision: Union[ReviewDecision, str],
        notes: Optional[str],
    ) -> StepResponse:
        """Apply an administrator's decision to any step."""
        return await self.execute(
            action="review_step",
            admin_id=admin_id,
            step_id=step_id,
            decision=decision,
            notes=notes,
        )

    async def get_step_details(self, step_id: UUID) -> StepDetailsResponse:
        return await self.execute(action="get_step_details", step_id=step_id)

    async def list_pending(
        self,
        page: int = 1,
        limit: Optional[int] = None,
        pillar: Optional[Union[PillarKind, str]] = None,
        step_name: Optional[str] = None,
    ) -> PendingVerificationPage:
        return await self.execute(
            action="list_pending",
            page=page,
            limit=limit,
            pillar=pillar,
            step_name=step_name,
        )

    async def get_user_status(self, user_id: UUID) -> VerificationCenterResponse:
        return await self.execute(action="get_user_status", user_id=user_id)


async def run_backfill(session_factory) -> BackfillResult:
    """Initialize every student that has no verification center yet."""
    LOGGER.info("Starting verification backfill for existing students")
    return await initialize_verification_for_existing_students(session_factory)
