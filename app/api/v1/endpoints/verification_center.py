"""Verification Center endpoints for the authenticated student."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status

from app.core.dependencies import get_current_user_id, get_verification_service
from app.models.verification import PillarKind
from app.schemas.common import ApiResponse
from app.schemas.verification import EvidenceUploadRequest, UpdateStepStatusRequest
from app.services.verification_center_service import VerificationCenterService
from app.utils.logging import get_logger
from app.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()


@router.post(
    "/initialize",
    response_model=ApiResponse,
    summary="Initialize verification center",
    description="Create the four verification pillars and their steps for the current user",
    operation_id="initialize_verification_center",
)
async def initialize_verification_center(
    request: Request,
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    service: Annotated[VerificationCenterService, Depends(get_verification_service)],
):
    center = await service.initialize(user_id)
    return create_api_response(center, message="Verification center initialized", request=request)


@router.get(
    "",
    response_model=ApiResponse,
    summary="Get verification center",
    description="Overall percentage, fully verified flag and every pillar with its steps",
    operation_id="get_verification_center",
)
async def get_verification_center(
    request: Request,
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    service: Annotated[VerificationCenterService, Depends(get_verification_service)],
):
    center = await service.get_center(user_id)
    return create_api_response(center, message="Verification center retrieved", request=request)


@router.get(
    "/pillar/{pillar}",
    response_model=ApiResponse,
    summary="Get pillar details",
    operation_id="get_verification_pillar",
)
async def get_verification_pillar(
    pillar: PillarKind,
    request: Request,
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    service: Annotated[VerificationCenterService, Depends(get_verification_service)],
):
    result = await service.get_pillar(user_id, pillar)
    return create_api_response(result, message="Pillar retrieved", request=request)


@router.patch(
    "/step/{step_id}/status",
    response_model=ApiResponse,
    summary="Update step status",
    operation_id="update_verification_step_status",
)
async def update_step_status(
    step_id: UUID,
    body: UpdateStepStatusRequest,
    request: Request,
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    service: Annotated[VerificationCenterService, Depends(get_verification_service)],
):
    step = await service.update_step_status(
        user_id,
        step_id,
        body.status,
        status_message=body.status_message,
        failure_reason=body.failure_reason,
        failure_suggestion=body.failure_suggestion,
    )
    return create_api_response(step, message="Step status updated", request=request)


@router.post(
    "/step/{step_id}/retry",
    response_model=ApiResponse,
    summary="Retry a verification step",
    description="Spend one retry attempt; answers 429 once the retry budget is used up",
    operation_id="retry_verification_step",
)
async def retry_step(
    step_id: UUID,
    request: Request,
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    service: Annotated[VerificationCenterService, Depends(get_verification_service)],
):
    step = await service.retry_step(user_id, step_id)
    return create_api_response(step, message="Step retry initiated", request=request)


@router.post(
    "/step/{step_id}/evidence",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload step evidence",
    operation_id="upload_verification_step_evidence",
)
async def upload_step_evidence(
    step_id: UUID,
    body: EvidenceUploadRequest,
    request: Request,
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    service: Annotated[VerificationCenterService, Depends(get_verification_service)],
):
    evidence = await service.upload_evidence(
        user_id,
        step_id,
        body.evidence_type,
        body.evidence_url,
        metadata=body.metadata,
    )
    return create_api_response(evidence, message="Evidence uploaded", request=request)
