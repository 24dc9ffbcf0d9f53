"""Administrator endpoints of the Verification Center."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth import require_admin
from app.core.config import settings
from app.core.dependencies import get_session_factory, get_verification_service
from app.models.verification import PillarKind
from app.schemas.auth import CurrentUser
from app.schemas.common import ApiResponse
from app.schemas.verification import AdminReviewRequest
from app.services.verification_center_service import VerificationCenterService, run_backfill
from app.utils.logging import get_logger
from app.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()


@router.post(
    "/step/{step_id}/review",
    response_model=ApiResponse,
    summary="Review a step",
    description="Force a step to verified or failed; notes are mandatory",
    operation_id="admin_review_verification_step",
)
async def review_step(
    step_id: UUID,
    body: AdminReviewRequest,
    request: Request,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    service: Annotated[VerificationCenterService, Depends(get_verification_service)],
):
    step = await service.review_step(admin.id, step_id, body.decision, body.notes)
    return create_api_response(step, message=f"Step marked as {body.decision.value}", request=request)


@router.get(
    "/step/{step_id}",
    response_model=ApiResponse,
    summary="Get step details",
    description="A step with all of its evidence, newest first",
    operation_id="admin_get_verification_step",
)
async def get_step_details(
    step_id: UUID,
    request: Request,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    service: Annotated[VerificationCenterService, Depends(get_verification_service)],
):
    details = await service.get_step_details(step_id)
    return create_api_response(details, message="Step details retrieved", request=request)


@router.get(
    "/pending",
    response_model=ApiResponse,
    summary="List pending verifications",
    operation_id="admin_list_pending_verifications",
)
async def list_pending_verifications(
    request: Request,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    service: Annotated[VerificationCenterService, Depends(get_verification_service)],
    page: int = Query(1, ge=1),
    limit: int = Query(
        settings.verification.pending_page_size,
        ge=1,
        le=settings.verification.pending_max_page_size,
    ),
    pillar: Optional[PillarKind] = Query(None),
    step_name: Optional[str] = Query(None, min_length=1),
):
    result = await service.list_pending(page=page, limit=limit, pillar=pillar, step_name=step_name)
    return create_api_response(result, message="Pending verifications retrieved", request=request)


@router.get(
    "/user/{user_id}",
    response_model=ApiResponse,
    summary="Get a user's verification center",
    operation_id="admin_get_user_verification_status",
)
async def get_user_verification_status(
    user_id: UUID,
    request: Request,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    service: Annotated[VerificationCenterService, Depends(get_verification_service)],
):
    center = await service.get_user_status(user_id)
    return create_api_response(center, message="User verification status retrieved", request=request)


@router.post(
    "/backfill",
    response_model=ApiResponse,
    summary="Initialize existing students",
    description="Create verification centers for every student that has none",
    operation_id="admin_backfill_verification_centers",
)
async def backfill_verification_centers(
    request: Request,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
):
    LOGGER.info(f"Admin {admin.id} requested verification backfill")
    result = await run_backfill(session_factory)
    return create_api_response(result, message="Verification backfill completed", request=request)
