"""
User settings API endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_settings_service
from app.database import get_db
from app.schemas.settings import SettingsResponse, SettingsUpdate
from app.services import timezone_service
from app.services.settings_service import SettingsService

router = APIRouter(prefix="/settings")


@router.get("", response_model=SettingsResponse)
async def get_user_settings(
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: SettingsService = Depends(get_settings_service),
):
    return service.to_response(await service.get(db, user_id))


@router.put("", response_model=SettingsResponse)
async def update_user_settings(
    request: SettingsUpdate,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: SettingsService = Depends(get_settings_service),
):
    """Update timezone, clock format, working hours or unavailability."""
    return service.to_response(await service.update(db, user_id, request))


@router.get("/timezones")
async def list_timezones():
    """Selectable timezones with display labels."""
    return timezone_service.list_timezones()
