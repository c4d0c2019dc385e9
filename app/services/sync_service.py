"""
Sync orchestrator: pulls events from every connected provider and merges
them into the canonical event store.
"""

import asyncio
import calendar
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Union

from pydantic import ValidationError
from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.core.errors import (
    CalendarSyncError,
    ProviderApiError,
    ProviderAuthExpired,
    ProviderReauthRequired,
)
from app.models import Event, UserIntegration
from app.providers.base import CalendarProvider
from app.providers.registry import ProviderRegistry, get_provider_registry
from app.schemas.event import CanonicalEvent, DateRange
from app.schemas.sync import ProviderSyncResult, SyncSummary
from app.services import timezone_service

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProviderSyncResult, int, int], Awaitable[None]]
FetchOutcome = Union[list[CanonicalEvent], CalendarSyncError]

# Canonical fields copied onto stored rows
SYNCED_FIELDS = (
    "title",
    "description",
    "location",
    "start_date",
    "end_date",
    "is_all_day",
    "timezone",
    "status",
    "meeting_type",
    "meeting_url",
    "attendees",
)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def shift_months(value: datetime, months: int) -> datetime:
    """Move ``value`` by whole months, clamping the day to the month length."""
    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    day = min(value.day, calendar.monthrange(year, month + 1)[1])
    return value.replace(year=year, month=month + 1, day=day)


def canonical_values(event: CanonicalEvent) -> dict:
    """Column values for a stored ``Event`` row."""
    data = event.model_dump()
    values = {name: data[name] for name in SYNCED_FIELDS}
    for name in ("status", "meeting_type"):
        if values[name] is not None:
            values[name] = getattr(values[name], "value", values[name])
    values["start_date"] = as_utc(values["start_date"])
    values["end_date"] = as_utc(values["end_date"])
    values["attendees"] = list(values["attendees"] or [])
    return values


class SyncService:
    """
    Orchestrates a sync for one user.

    Provider fetches run concurrently; merging into the database happens
    one provider at a time as each fetch finishes, so the session is only
    ever used by a single coroutine. Each provider's changes are committed
    independently.
    """

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.registry = registry or get_provider_registry()
        self.settings = settings or get_settings()

    def default_window(self, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
        now = now or datetime.now(timezone.utc)
        return (
            shift_months(now, -self.settings.sync_months_back),
            shift_months(now, self.settings.sync_months_forward),
        )

    async def active_integrations(
        self,
        db: AsyncSession,
        user_id: str,
        provider_types: Optional[list[str]] = None,
    ) -> list[UserIntegration]:
        query = select(UserIntegration).where(
            UserIntegration.user_id == user_id,
            UserIntegration.is_active.is_(True),
        )
        if provider_types:
            query = query.where(UserIntegration.provider_type.in_(provider_types))
        result = await db.execute(query.order_by(UserIntegration.provider_type))
        return list(result.scalars().all())

    async def active_user_ids(self, db: AsyncSession) -> list[str]:
        """Users with at least one active integration."""
        result = await db.execute(
            select(UserIntegration.user_id)
            .where(UserIntegration.is_active.is_(True))
            .distinct()
        )
        return list(result.scalars().all())

    async def sync_user(
        self,
        db: AsyncSession,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        provider_types: Optional[list[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SyncSummary:
        """
        Sync every active integration of ``user_id`` over [start, end].

        Provider failures are recorded in the summary, not raised. Database
        errors propagate and fail the whole sync.
        """
        if start is None or end is None:
            default_start, default_end = self.default_window()
            start = start or default_start
            end = end or default_end
        start, end = as_utc(start), as_utc(end)

        summary = SyncSummary(window=DateRange(start=start, end=end))
        integrations = await self.active_integrations(db, user_id, provider_types)
        if not integrations:
            logger.info(f"No active integrations to sync for user {user_id}")
            return summary

        logger.info(
            f"Syncing {len(integrations)} provider(s) for user {user_id} "
            f"from {start.isoformat()} to {end.isoformat()}"
        )

        fetches = [
            asyncio.ensure_future(self._fetch(integration, start, end))
            for integration in integrations
        ]
        try:
            for done, next_fetch in enumerate(asyncio.as_completed(fetches), start=1):
                integration, outcome = await next_fetch
                result = await self._apply(db, integration, outcome, start, end)
                summary.add(result)
                if on_progress:
                    await on_progress(result, done, len(fetches))
        except BaseException:
            for fetch in fetches:
                fetch.cancel()
            raise

        logger.info(f"Sync for user {user_id}: {summary.message()}")
        return summary

    # ============== Fetch ==============

    async def _fetch(
        self,
        integration: UserIntegration,
        start: datetime,
        end: datetime,
    ) -> tuple[UserIntegration, FetchOutcome]:
        """Fetch and map one provider's events; errors are returned."""
        provider_type = integration.provider_type
        try:
            adapter = self.registry.get(provider_type)
            natives = await asyncio.wait_for(
                self._list_with_refresh(adapter, integration, start, end),
                timeout=self.settings.provider_sync_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"{provider_type} sync timed out for user {integration.user_id}")
            return integration, ProviderApiError(
                f"{provider_type} did not respond in time",
                provider_type=provider_type,
            )
        except CalendarSyncError as e:
            logger.warning(
                f"{provider_type} sync failed for user {integration.user_id}: {e.message}"
            )
            return integration, e
        except Exception:
            logger.exception(
                f"Unexpected error syncing {provider_type} for user {integration.user_id}"
            )
            return integration, ProviderApiError(
                f"{provider_type} sync failed unexpectedly",
                provider_type=provider_type,
            )

        events = []
        for native in natives:
            try:
                events.append(adapter.to_canonical(native, integration.primary_timezone))
            except (KeyError, ValueError, ValidationError, CalendarSyncError) as e:
                logger.warning(
                    f"Skipping unreadable {provider_type} event {native.get('id')}: {e}"
                )
        return integration, events

    async def _list_with_refresh(
        self,
        adapter: CalendarProvider,
        integration: UserIntegration,
        start: datetime,
        end: datetime,
    ) -> list[dict]:
        """List events, refreshing the access token at most once."""
        refreshed = False
        if integration.token_expired():
            await adapter.refresh_token(integration)
            refreshed = True
        try:
            return await adapter.list_events(integration, start, end)
        except ProviderAuthExpired:
            if refreshed:
                raise
            logger.info(
                f"{integration.provider_type} token rejected for user "
                f"{integration.user_id}, refreshing"
            )
            await adapter.refresh_token(integration)
            return await adapter.list_events(integration, start, end)

    # ============== Merge ==============

    async def _apply(
        self,
        db: AsyncSession,
        integration: UserIntegration,
        outcome: FetchOutcome,
        start: datetime,
        end: datetime,
    ) -> ProviderSyncResult:
        provider_type = integration.provider_type

        if isinstance(outcome, CalendarSyncError):
            if isinstance(outcome, ProviderReauthRequired):
                integration.is_active = False
                logger.warning(
                    f"Deactivated {provider_type} for user {integration.user_id}: "
                    "reconnect required"
                )
            integration.last_error = outcome.message
            await db.commit()
            return ProviderSyncResult(
                provider_type=provider_type,
                status="failed",
                error=outcome.message,
                error_code=outcome.code,
            )

        try:
            counts = await self.upsert_events(
                db,
                integration.user_id,
                provider_type,
                outcome,
                start,
                end,
            )
            integration.last_sync_at = datetime.now(timezone.utc)
            integration.last_error = None
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception(f"Failed to store {provider_type} events for {integration.user_id}")
            raise

        return ProviderSyncResult(provider_type=provider_type, status="completed", **counts)

    async def upsert_events(
        self,
        db: AsyncSession,
        user_id: str,
        provider_type: str,
        events: list[CanonicalEvent],
        start: datetime,
        end: datetime,
    ) -> dict:
        """
        Merge one provider's events for [start, end] into the store.

        Rows are matched on (user, provider, native id). Unchanged rows are
        left alone; rows in the window that the provider no longer returns
        are deleted. Does not commit.
        """
        start, end = as_utc(start), as_utc(end)
        incoming_ids = {event.external_event_id for event in events}

        in_window = and_(Event.start_date < end, Event.end_date > start)
        match = or_(in_window, Event.external_event_id.in_(incoming_ids)) if incoming_ids else in_window
        result = await db.execute(
            select(Event).where(
                Event.user_id == user_id,
                Event.provider_type == provider_type,
                Event.external_event_id.is_not(None),
                match,
            )
        )
        stored = {row.external_event_id: row for row in result.scalars().all()}

        now = datetime.now(timezone.utc)
        created = updated = deleted = 0
        seen: set[str] = set()

        # Applied in provider order so a repeated id ends with its last version
        for event in events:
            values = canonical_values(event)
            row = stored.get(event.external_event_id)
            if row is None:
                row = Event(
                    user_id=user_id,
                    provider_type=provider_type,
                    external_event_id=event.external_event_id,
                    synced_at=now,
                    **values,
                )
                db.add(row)
                stored[event.external_event_id] = row
                created += 1
            elif self._apply_changes(row, values):
                row.synced_at = now
                if event.external_event_id not in seen:
                    updated += 1
            seen.add(event.external_event_id)

        for external_id, row in stored.items():
            if external_id in seen:
                continue
            if as_utc(row.start_date) < end and as_utc(row.end_date) > start:
                await db.delete(row)
                deleted += 1

        await db.flush()
        return {
            "synced": len(events),
            "created": created,
            "updated": updated,
            "deleted": deleted,
        }

    @staticmethod
    def _apply_changes(row: Event, values: dict) -> bool:
        """Copy differing values onto ``row``; return whether anything changed."""
        all_day = values["is_all_day"] and row.is_all_day
        changed = False
        for name, value in values.items():
            current = getattr(row, name)
            if name in ("start_date", "end_date"):
                if all_day:
                    same = timezone_service.local_date(
                        current, row.timezone
                    ) == timezone_service.local_date(value, values["timezone"])
                else:
                    same = as_utc(current) == value
            else:
                same = current == value
            if not same:
                setattr(row, name, value)
                changed = True
        return changed
