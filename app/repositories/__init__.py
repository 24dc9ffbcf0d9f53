"""Repository layer modules."""

from app.repositories.evidence_repository import EvidenceRepository
from app.repositories.pillar_repository import PillarRepository
from app.repositories.step_repository import PendingStepRow, StepRepository, StepTally
from app.repositories.user_repository import UserRepository

__all__ = [
    "EvidenceRepository",
    "PendingStepRow",
    "PillarRepository",
    "StepRepository",
    "StepTally",
    "UserRepository",
]
