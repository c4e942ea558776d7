"""API Routes."""

from fastapi import APIRouter

from .billing import router as billing_router
from .crm import router as crm_router
from .entitlements import router as entitlements_router
from .events import router as events_router
from .health import router as health_router
from .team_invitations import router as team_invitations_router
from .teams import router as teams_router

# Create main API router
api_router = APIRouter()

# Include route modules
api_router.include_router(health_router, tags=["Health"])
api_router.include_router(teams_router)
api_router.include_router(team_invitations_router)
api_router.include_router(billing_router)
api_router.include_router(entitlements_router)
api_router.include_router(events_router)
api_router.include_router(crm_router)
