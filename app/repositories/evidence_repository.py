"""Evidence store: append-only proof references bound to a step."""

from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock
from app.database.models import VerificationStepEvidence
from app.repositories.base_repository import BaseRepository


class EvidenceRepository(BaseRepository[VerificationStepEvidence]):
    """Repository for VerificationStepEvidence records.

    Rows are never updated or deleted; a correction is recorded as a new
    evidence row.
    """

    def __init__(self, session: AsyncSession, clock: Optional[Clock] = None):
        super().__init__(session, VerificationStepEvidence, clock)

    async def add_evidence(
        self,
        step_id: UUID,
        evidence_type: str,
        evidence_url: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> VerificationStepEvidence:
        """Attach a new evidence reference to a step.

        Args:
            step_id: Step the evidence supports
            evidence_type: Free-form tag (e.g. "selfie", "student_id")
            evidence_url: Object store URL or reference
            metadata: Optional free-form key/value bag

        Returns:
            The created evidence row
        """
        return await self.create(
            step_id=step_id,
            evidence_type=evidence_type,
            evidence_url=evidence_url,
            evidence_metadata=metadata,
            uploaded_at=self.clock.now(),
        )

    async def get_evidence_for_step(self, step_id: UUID) -> list[VerificationStepEvidence]:
        """All evidence of a step, newest first."""
        query = (
            select(VerificationStepEvidence)
            .where(VerificationStepEvidence.step_id == step_id)
            .order_by(VerificationStepEvidence.uploaded_at.desc(), VerificationStepEvidence.id.desc())
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
