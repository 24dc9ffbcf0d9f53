"""Value types of the verification domain."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PillarKind(str, Enum):
    """The four fixed verification categories."""

    PERSONAL_INFO = "personal_info"
    ACADEMIC_INFO = "academic_info"
    DOCUMENTS = "documents"
    SCHOOL = "school"


# Display order of pillars in the aggregate view
PILLAR_ORDER: tuple[PillarKind, ...] = (
    PillarKind.PERSONAL_INFO,
    PillarKind.ACADEMIC_INFO,
    PillarKind.DOCUMENTS,
    PillarKind.SCHOOL,
)


class PillarStatus(str, Enum):
    NOT_VERIFIED = "not_verified"
    IN_PROGRESS = "in_progress"
    VERIFIED = "verified"


class StepStatus(str, Enum):
    NOT_VERIFIED = "not_verified"
    PENDING = "pending"
    FAILED = "failed"
    VERIFIED = "verified"


class StepType(str, Enum):
    """Who performs the check: system logic, a human reviewer or a third party."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"
    EXTERNAL = "external"


class ReviewDecision(str, Enum):
    """Outcomes an administrator may force on a step."""

    VERIFIED = "verified"
    FAILED = "failed"


class RequirementItem(BaseModel):
    """One line of a step's descriptive requirement checklist."""

    requirement: str = Field(..., min_length=1)
    met: bool = False


class UserIdentity(BaseModel):
    """Minimal identity the reviewer queue shows next to a step."""

    user_id: str
    name: str = ""
    email: str = ""
    role: Optional[str] = None
