"""SQLAlchemy models for all database tables."""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class User(Base):
    """Account row owned by the identity subsystem.

    The verification core never writes here; it only reads identity and
    email confirmation through the collaborator interfaces.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    user_role: Mapped[str] = mapped_column(
        String(32), nullable=False, default="student"
    )  # student | institution | admin
    email_verified_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())

    # Relationships
    pillars: Mapped[list["VerificationPillar"]] = relationship(
        "VerificationPillar", back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class VerificationPillar(Base):
    """One of the four weighted verification categories of a user."""

    __tablename__ = "verification_pillars"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pillar_name: Mapped[str] = mapped_column(
        String(32), nullable=False
    )  # personal_info | academic_info | documents | school
    weight_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=25)
    completion_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="not_verified"
    )  # not_verified | in_progress | verified
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="pillars")
    steps: Mapped[list["VerificationStep"]] = relationship(
        "VerificationStep",
        back_populates="pillar",
        order_by="VerificationStep.step_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "pillar_name", name="uq_verification_pillar_user_name"),
        {"comment": "Weighted verification pillars, four per user"},
    )


class VerificationStep(Base):
    """A checkable unit of verification work inside a pillar."""

    __tablename__ = "verification_steps"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pillar_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("verification_pillars.id", ondelete="CASCADE"), nullable=False
    )
    step_name: Mapped[str] = mapped_column(String, nullable=False)
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    step_type: Mapped[str] = mapped_column(String(16), nullable=False)  # automatic | manual | external
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="not_verified"
    )  # not_verified | pending | failed | verified
    status_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_suggestion: Mapped[str | None] = mapped_column(Text, nullable=True)
    requirement_checklist: Mapped[list | None] = mapped_column(
        JSONType, nullable=True, comment="Ordered [{requirement, met}] pairs"
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    admin_reviewer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    admin_review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    step_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    last_attempted_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())

    # Relationships
    pillar: Mapped["VerificationPillar"] = relationship("VerificationPillar", back_populates="steps")
    evidence: Mapped[list["VerificationStepEvidence"]] = relationship(
        "VerificationStepEvidence", back_populates="step", cascade="all, delete-orphan"
    )

    # Every UPDATE is guarded by the version it was read at
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("pillar_id", "step_order", name="uq_verification_step_pillar_order"),
        Index("ix_verification_steps_status_attempted", "status", "last_attempted_at"),
        {"comment": "Verification steps created from the step catalog"},
    )


class VerificationStepEvidence(Base):
    """Append-only proof artifact reference attached to a step."""

    __tablename__ = "verification_step_evidence"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    step_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("verification_steps.id", ondelete="CASCADE"), nullable=False
    )
    evidence_type: Mapped[str] = mapped_column(String, nullable=False)
    evidence_url: Mapped[str] = mapped_column(Text, nullable=False)
    evidence_metadata: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())

    # Relationships
    step: Mapped["VerificationStep"] = relationship("VerificationStep", back_populates="evidence")

    __table_args__ = (
        Index("ix_verification_step_evidence_step_uploaded", "step_id", "uploaded_at"),
        {"comment": "Evidence references; rows are never updated or deleted"},
    )
