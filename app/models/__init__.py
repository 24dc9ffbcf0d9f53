"""Domain value types shared by the database, service and API layers."""

from app.models.verification import (
    PILLAR_ORDER,
    PillarKind,
    PillarStatus,
    RequirementItem,
    ReviewDecision,
    StepStatus,
    StepType,
    UserIdentity,
)

__all__ = [
    "PILLAR_ORDER",
    "PillarKind",
    "PillarStatus",
    "RequirementItem",
    "ReviewDecision",
    "StepStatus",
    "StepType",
    "UserIdentity",
]
