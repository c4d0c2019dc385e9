"""
API routes for the calendar sync service.
"""

from fastapi import APIRouter

from app.api.events import router as events_router
from app.api.integrations import router as integrations_router
from app.api.settings import router as settings_router
from app.api.websocket import router as websocket_router

# Main API router
api_router = APIRouter(prefix="/api")

# Include sub-routers
api_router.include_router(integrations_router, tags=["Integrations"])
api_router.include_router(events_router, tags=["Events"])
api_router.include_router(settings_router, tags=["Settings"])

__all__ = ["api_router", "websocket_router"]
