"""
Event service: querying the canonical store and writing changes back
through the owning provider.
"""

import logging
import uuid
from datetime import date, datetime, time, timedelta
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    EventNotFound,
    InvalidEvent,
    ProviderApiError,
    ProviderAuthExpired,
    ProviderReauthRequired,
)
from app.core.notifications import Notifier
from app.models import Event, UserIntegration
from app.providers.base import CalendarProvider
from app.schemas.event import (
    CalendarViewType,
    DateRange,
    DayBucket,
    EventCreate,
    EventFilterType,
    EventListResponse,
    EventResponse,
    EventUpdate,
    MeetingType,
)
from app.services import timezone_service
from app.services.integration_service import IntegrationService
from app.services.sync_service import as_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_DAY_BUCKETS = 366


def _local_day(value: datetime, tz: str) -> date:
    """Calendar day of a naive (wall-clock in ``tz``) or aware datetime."""
    if value.tzinfo is None:
        return value.date()
    return timezone_service.local_date(value, tz)


def normalize_times(
    start: datetime,
    end: datetime,
    is_all_day: bool,
    tz: str,
) -> tuple[datetime, datetime]:
    """
    UTC bounds for an event.

    Naive values are wall-clock times in ``tz``. All-day events cover
    local midnight of the first day through the end of the last day.
    """
    if is_all_day:
        return timezone_service.all_day_bounds(_local_day(start, tz), tz, _local_day(end, tz))
    return timezone_service.to_utc(start, tz), timezone_service.to_utc(end, tz)


def event_days(event: Event, tz: str) -> tuple[date, date]:
    """First and last local day an event touches in ``tz``."""
    if event.is_all_day:
        # All-day events keep the days they were authored with
        tz = event.timezone or tz
    first = timezone_service.local_date(event.start_date, tz)
    last = timezone_service.local_date(event.end_date, tz)
    end_local = timezone_service.from_utc(event.end_date, tz)
    # An event ending exactly at midnight does not touch that day
    if last > first and end_local.time() == time.min:
        last -= timedelta(days=1)
    return first, last


def group_by_day(
    events: list[Event],
    tz: str,
    start_day: date,
    end_day: date,
) -> list[DayBucket]:
    """
    Bucket events by local day for [start_day, end_day].

    A multi-day event is placed in every day it overlaps. Every day in
    the range gets a bucket, empty or not.
    """
    if (end_day - start_day).days >= MAX_DAY_BUCKETS:
        raise InvalidEvent(f"Day grouping is limited to {MAX_DAY_BUCKETS} days")

    buckets: dict[date, list[EventResponse]] = {}
    day = start_day
    while day <= end_day:
        buckets[day] = []
        day += timedelta(days=1)

    for event in sorted(events, key=lambda e: as_utc(e.start_date)):
        first, last = event_days(event, tz)
        response = EventResponse.model_validate(event)
        day = max(first, start_day)
        while day <= min(last, end_day):
            buckets[day].append(response)
            day += timedelta(days=1)

    return [DayBucket(date=day, events=items) for day, items in buckets.items()]


class EventService:
    """
    Range queries and provider-backed create/update/delete.

    Every successful write is pushed to the owner's sessions as an
    ``event_updated`` message when a notifier is configured.
    """

    def __init__(
        self,
        integration_service: Optional[IntegrationService] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.integration_service = integration_service or IntegrationService()
        self.notifier = notifier

    # ============== Queries ==============

    async def get_event(self, db: AsyncSession, user_id: str, event_id: uuid.UUID) -> Event:
        result = await db.execute(
            select(Event).where(Event.id == event_id, Event.user_id == user_id)
        )
        event = result.scalar_one_or_none()
        if event is None:
            raise EventNotFound(str(event_id))
        return event

    async def find_in_range(
        self,
        db: AsyncSession,
        user_id: str,
        start: datetime,
        end: datetime,
        provider_filter: EventFilterType = EventFilterType.ALL,
        search_query: Optional[str] = None,
    ) -> list[Event]:
        """Events overlapping [start, end], ordered by start."""
        query = select(Event).where(
            Event.user_id == user_id,
            Event.start_date < as_utc(end),
            Event.end_date > as_utc(start),
        )
        if provider_filter and provider_filter != EventFilterType.ALL:
            query = query.where(Event.provider_type == EventFilterType(provider_filter).value)
        if search_query:
            query = query.where(func.lower(Event.title).contains(search_query.lower()))

        result = await db.execute(query.order_by(Event.start_date))
        return list(result.scalars().all())

    async def query_events(
        self,
        db: AsyncSession,
        user_id: str,
        view_type: CalendarViewType,
        start: datetime,
        end: datetime,
        provider_filter: EventFilterType = EventFilterType.ALL,
        search_query: Optional[str] = None,
    ) -> EventListResponse:
        start, end = as_utc(start), as_utc(end)
        if start > end:
            raise InvalidEvent("startDate must not be after endDate")
        events = await self.find_in_range(db, user_id, start, end, provider_filter, search_query)
        return EventListResponse(
            events=[EventResponse.model_validate(e) for e in events],
            date_range=DateRange(start=start, end=end),
            view_type=view_type,
            total_count=len(events),
        )

    # ============== Write-back ==============

    async def _with_refresh(
        self,
        db: AsyncSession,
        adapter: CalendarProvider,
        integration: UserIntegration,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run a provider write, refreshing the access token at most once.

        If the provider refuses the refresh the integration is deactivated
        before the error propagates.
        """
        try:
            if integration.token_expired():
                await adapter.refresh_token(integration)
                return await operation()
            try:
                return await operation()
            except ProviderAuthExpired:
                await adapter.refresh_token(integration)
                return await operation()
        except ProviderReauthRequired as e:
            await self.integration_service.deactivate(db, integration, e.message)
            raise

    async def _notify_change(self, user_id: str, action: str, event: EventResponse) -> None:
        if self.notifier is None:
            return
        payload = {
            "event": "event_updated",
            "data": {"action": action, "userId": user_id, "event": event.to_wire()},
        }
        try:
            await self.notifier.notify_user(user_id, payload)
        except Exception:
            logger.exception(f"Failed to push {action} event {event.id} to user {user_id}")

    async def create_event(
        self,
        db: AsyncSession,
        user_id: str,
        data: EventCreate,
        user_timezone: str,
    ) -> Event:
        """Create the event on its provider, then store it."""
        tz = timezone_service.resolve_timezone(data.timezone, user_timezone)
        start, end = normalize_times(data.start_date, data.end_date, data.is_all_day, tz)
        if start > end:
            raise InvalidEvent("Start date must be before end date")

        provider_type = data.provider_type.value
        integration = await self.integration_service.get_active(db, user_id, provider_type)
        adapter = self.integration_service.get_adapter(provider_type)

        is_video = data.meeting_type == MeetingType.VIDEO_CALL
        event = Event(
            id=uuid.uuid4(),
            user_id=user_id,
            provider_type=provider_type,
            title=data.title.strip(),
            description=data.description,
            location=data.location,
            start_date=start,
            end_date=end,
            is_all_day=data.is_all_day,
            timezone=tz,
            status="confirmed",
            meeting_type=data.meeting_type.value if data.meeting_type else None,
            meeting_url=data.meeting_url,
            attendees=list(data.attendees) if is_video else [],
        )

        event.external_event_id = await self._with_refresh(
            db, adapter, integration, lambda: adapter.create_event(integration, event)
        )
        event.synced_at = datetime.now(timezone_service.UTC)
        db.add(event)
        await db.flush()
        logger.info(f"Created {provider_type} event {event.id} for user {user_id}")
        await self._notify_change(user_id, "created", EventResponse.model_validate(event))
        return event

    async def update_event(
        self,
        db: AsyncSession,
        user_id: str,
        event_id: uuid.UUID,
        data: EventUpdate,
    ) -> Event:
        """Apply a partial update locally and mirror it to the provider."""
        event = await self.get_event(db, user_id, event_id)
        changes = data.changes()
        if not changes:
            raise InvalidEvent("No valid data provided for update")

        tz = event.timezone
        if "timezone" in changes:
            tz = timezone_service.get_zone(changes["timezone"]).key

        is_all_day = changes.get("is_all_day", event.is_all_day)
        timing_changed = any(k in changes for k in ("start_date", "end_date", "is_all_day", "timezone"))
        if timing_changed:
            # Unchanged bounds are re-read as wall-clock times in the new zone
            start = changes.get("start_date") or timezone_service.from_utc(event.start_date, event.timezone)
            end = changes.get("end_date") or timezone_service.from_utc(event.end_date, event.timezone)
            start, end = normalize_times(start, end, is_all_day, tz)
            if start > end:
                raise InvalidEvent("Start date must be before end date")
            event.start_date, event.end_date = start, end
            event.is_all_day = is_all_day
            event.timezone = tz

        for field in ("title", "description", "location", "meeting_url", "attendees"):
            if field in changes:
                setattr(event, field, changes[field])
        if "title" in changes:
            event.title = changes["title"].strip()
            if not event.title:
                raise InvalidEvent("Event title cannot be empty")
        for field in ("status", "meeting_type"):
            if field in changes:
                setattr(event, field, getattr(changes[field], "value", changes[field]))
        if event.meeting_type != MeetingType.VIDEO_CALL.value:
            event.attendees = []

        if event.external_event_id:
            integration = await self.integration_service.get_active(db, user_id, event.provider_type)
            adapter = self.integration_service.get_adapter(event.provider_type)
            await self._with_refresh(
                db, adapter, integration, lambda: adapter.update_event(integration, event)
            )
            event.synced_at = datetime.now(timezone_service.UTC)

        await db.flush()
        logger.info(f"Updated event {event.id} for user {user_id}")
        await self._notify_change(user_id, "updated", EventResponse.model_validate(event))
        return event

    async def delete_event(
        self,
        db: AsyncSession,
        user_id: str,
        event_id: uuid.UUID,
    ) -> None:
        """Delete on the provider, then locally."""
        event = await self.get_event(db, user_id, event_id)

        if event.external_event_id:
            integration = await self.integration_service.get_active(db, user_id, event.provider_type)
            adapter = self.integration_service.get_adapter(event.provider_type)
            external_id = event.external_event_id
            try:
                await self._with_refresh(
                    db, adapter, integration, lambda: adapter.delete_event(integration, external_id)
                )
            except ProviderApiError as e:
                # Already gone on the provider side
                if e.provider_status not in (404, 410):
                    raise
                logger.info(f"Event {event.id} already removed on {event.provider_type}")

        snapshot = EventResponse.model_validate(event)
        await db.delete(event)
        await db.flush()
        logger.info(f"Deleted event {event_id} for user {user_id}")
        await self._notify_change(user_id, "deleted", snapshot)
