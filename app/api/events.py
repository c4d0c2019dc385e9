"""
Event API endpoints.
"""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    get_current_user,
    get_event_service,
    get_job_tracker,
    get_settings_service,
)
from app.core.errors import JobNotFound
from app.database import get_db
from app.schemas.event import (
    CalendarViewType,
    EventCreate,
    EventFilterType,
    EventListResponse,
    EventResponse,
    EventsByDayResponse,
    EventUpdate,
)
from app.schemas.sync import SyncJob
from app.services import timezone_service
from app.services.event_service import EventService, group_by_day
from app.services.job_tracker import JobTracker
from app.services.settings_service import SettingsService

router = APIRouter(prefix="/events")


@router.get("", response_model=EventListResponse)
async def list_events(
    start_date: datetime = Query(alias="startDate"),
    end_date: datetime = Query(alias="endDate"),
    view_type: CalendarViewType = Query(default=CalendarViewType.WEEK, alias="viewType"),
    provider_filter: EventFilterType = Query(default=EventFilterType.ALL, alias="providerFilter"),
    search_query: Optional[str] = Query(default=None, alias="searchQuery"),
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: EventService = Depends(get_event_service),
):
    """Events overlapping [startDate, endDate], optionally filtered."""
    return await service.query_events(
        db,
        user_id,
        view_type,
        start_date,
        end_date,
        provider_filter=provider_filter,
        search_query=search_query,
    )


@router.get("/by-day", response_model=EventsByDayResponse)
async def list_events_by_day(
    start_date: date = Query(alias="startDate"),
    end_date: date = Query(alias="endDate"),
    timezone: Optional[str] = Query(default=None),
    provider_filter: EventFilterType = Query(default=EventFilterType.ALL, alias="providerFilter"),
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: EventService = Depends(get_event_service),
    settings_service: SettingsService = Depends(get_settings_service),
):
    """Events grouped into local days; multi-day events appear on each day."""
    tz = timezone_service.resolve_timezone(
        timezone, await settings_service.get_timezone(db, user_id)
    )
    range_start, range_end = timezone_service.all_day_bounds(start_date, tz, end_date)
    events = await service.find_in_range(
        db, user_id, range_start, range_end, provider_filter=provider_filter
    )
    return EventsByDayResponse(
        timezone=tz,
        days=group_by_day(events, tz, start_date, max(start_date, end_date)),
    )


@router.get("/sync/{job_id}", response_model=SyncJob)
async def get_sync_status(
    job_id: str,
    user_id: str = Depends(get_current_user),
    tracker: JobTracker = Depends(get_job_tracker),
):
    """Current state of a sync or connect job."""
    job = await tracker.get_status(job_id)
    if job.user_id != user_id:
        raise JobNotFound(job_id)
    return job


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: UUID,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: EventService = Depends(get_event_service),
):
    return EventResponse.model_validate(await service.get_event(db, user_id, event_id))


@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    request: EventCreate,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: EventService = Depends(get_event_service),
    settings_service: SettingsService = Depends(get_settings_service),
):
    """Create an event on its provider (Google by default) and store it."""
    user_timezone = await settings_service.get_timezone(db, user_id)
    event = await service.create_event(db, user_id, request, user_timezone)
    return EventResponse.model_validate(event)


@router.put("/{event_id}", response_model=EventResponse)
@router.patch("/{event_id}", response_model=EventResponse)
async def update_event(
    event_id: UUID,
    request: EventUpdate,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: EventService = Depends(get_event_service),
):
    event = await service.update_event(db, user_id, event_id, request)
    return EventResponse.model_validate(event)


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event(
    event_id: UUID,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: EventService = Depends(get_event_service),
):
    await service.delete_event(db, user_id, event_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
