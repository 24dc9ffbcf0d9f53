from fastapi import APIRouter

from app.api.v1.endpoints import admin_verifications, verification_center

# Create API router
api_router = APIRouter()

# Include routers
api_router.include_router(
    verification_center.router, prefix="/verification-center", tags=["Verification Center"]
)
api_router.include_router(
    admin_verifications.router, prefix="/verification-center/admin", tags=["Verification Admin"]
)

__all__ = ["api_router"]
