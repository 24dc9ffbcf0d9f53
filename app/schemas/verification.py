"""Request and response schemas for the Verification Center."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.verification import (
    PillarKind,
    PillarStatus,
    RequirementItem,
    ReviewDecision,
    StepStatus,
    StepType,
)


class UpdateStepStatusRequest(BaseModel):
    """Body of a step status update."""

    status: StepStatus = Field(..., description="New step status")
    status_message: Optional[str] = Field(None, max_length=1000)
    failure_reason: Optional[str] = Field(None, max_length=1000)
    failure_suggestion: Optional[str] = Field(None, max_length=1000)


class AdminReviewRequest(BaseModel):
    """Administrator decision on a step; notes are mandatory."""

    decision: ReviewDecision = Field(..., description="verified or failed")
    notes: str = Field(..., min_length=5, max_length=2000, description="Reviewer notes")


class EvidenceUploadRequest(BaseModel):
    evidence_type: str = Field(..., min_length=1, max_length=100, description="Free-form evidence tag")
    evidence_url: str = Field(..., min_length=1, description="Reference to the stored artifact")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Opaque evidence metadata")

    @field_validator("evidence_type", "evidence_url")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class StepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    user_id: UUID
    pillar_id: UUID
    step_name: str
    step_order: int
    step_type: StepType
    status: StepStatus
    status_message: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_suggestion: Optional[str] = None
    requirement_checklist: List[RequirementItem] = Field(default_factory=list)
    retry_count: int
    max_retries: int
    can_retry: bool = False
    admin_reviewer_id: Optional[str] = None
    admin_review_notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="step_metadata")
    last_attempted_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("requirement_checklist", mode="before")
    @classmethod
    def _empty_checklist(cls, value):
        return value or []

    @classmethod
    def from_step(cls, step) -> "StepResponse":
        response = cls.model_validate(step)
        response.can_retry = (
            step.status != StepStatus.VERIFIED.value and step.retry_count < step.max_retries
        )
        return response


class PillarResponse(BaseModel):
    id: UUID
    user_id: UUID
    pillar_name: PillarKind
    weight_percentage: int
    completion_percentage: int
    status: PillarStatus
    created_at: datetime
    updated_at: datetime
    steps: List[StepResponse] = Field(default_factory=list)

    @classmethod
    def from_pillar(cls, pillar, steps) -> "PillarResponse":
        """Build from a pillar row and its already loaded steps."""
        return cls(
            id=pillar.id,
            user_id=pillar.user_id,
            pillar_name=pillar.pillar_name,
            weight_percentage=pillar.weight_percentage,
            completion_percentage=pillar.completion_percentage,
            status=pillar.status,
            created_at=pillar.created_at,
            updated_at=pillar.updated_at,
            steps=[StepResponse.from_step(step) for step in steps],
        )


class VerificationCenterResponse(BaseModel):
    """Aggregate view of a user's verification progress."""

    user_id: UUID
    initialized: bool
    overall_percentage: int = Field(..., ge=0, le=100)
    fully_verified: bool
    pillars: List[PillarResponse] = Field(default_factory=list)


class EvidenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    step_id: UUID
    evidence_type: str
    evidence_url: str
    evidence_metadata: Optional[Dict[str, Any]] = None
    uploaded_at: datetime


class StepDetailsResponse(BaseModel):
    step: StepResponse
    pillar_name: PillarKind
    evidence: List[EvidenceResponse] = Field(default_factory=list)


class PendingVerificationItem(BaseModel):
    """A pending step as shown in the reviewer queue."""

    step: StepResponse
    pillar_name: PillarKind
    weight_percentage: int
    user_email: str = ""
    user_name: str = ""


class PendingVerificationPage(BaseModel):
    items: List[PendingVerificationItem] = Field(default_factory=list)
    total: int
    page: int
    limit: int
    total_pages: int


class BackfillResult(BaseModel):
    """Outcome counts of initializing existing students."""

    total: int = 0
    initialized: int = 0
    skipped: int = 0
    failed: int = 0
    failed_user_ids: List[UUID] = Field(default_factory=list)
