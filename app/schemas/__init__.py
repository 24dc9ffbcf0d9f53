from .common import ApiResponse, ErrorDetail, ResponseMeta
from .verification import (
    AdminReviewRequest,
    BackfillResult,
    EvidenceResponse,
    EvidenceUploadRequest,
    PendingVerificationItem,
    PendingVerificationPage,
    PillarResponse,
    StepDetailsResponse,
    StepResponse,
    UpdateStepStatusRequest,
    VerificationCenterResponse,
)

__all__ = [
    "ApiResponse",
    "ErrorDetail",
    "ResponseMeta",
    "AdminReviewRequest",
    "BackfillResult",
    "EvidenceResponse",
    "EvidenceUploadRequest",
    "PendingVerificationItem",
    "PendingVerificationPage",
    "PillarResponse",
    "StepDetailsResponse",
    "StepResponse",
    "UpdateStepStatusRequest",
    "VerificationCenterResponse",
]
