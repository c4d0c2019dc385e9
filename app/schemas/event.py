"""
Event-related Pydantic schemas.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import Field, field_validator, model_validator

from app.schemas.base import CamelModel

MAX_TITLE_LENGTH = 200


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ProviderType(str, Enum):
    GOOGLE = "google"
    MICROSOFT = "microsoft"
    ZOOM = "zoom"


class MeetingType(str, Enum):
    VIDEO_CALL = "video_call"
    PHONE_CALL = "phone_call"
    IN_PERSON = "in_person"


class EventStatus(str, Enum):
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class CalendarViewType(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class EventFilterType(str, Enum):
    ALL = "all"
    GOOGLE = "google"
    MICROSOFT = "microsoft"
    ZOOM = "zoom"


class CanonicalEvent(CamelModel):
    """
    Provider-independent event produced by an adapter's ``to_canonical``.

    ``start_date``/``end_date`` are UTC instants. For all-day events they
    span local midnight to end of day in ``timezone``.
    """

    external_event_id: str
    provider_type: ProviderType
    title: str
    start_date: datetime
    end_date: datetime
    is_all_day: bool = False
    timezone: str = "UTC"
    status: EventStatus = EventStatus.CONFIRMED
    meeting_type: Optional[MeetingType] = None
    meeting_url: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_range(self) -> "CanonicalEvent":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        if self.meeting_type != MeetingType.VIDEO_CALL:
            self.attendees = []
        return self


class EventCreate(CamelModel):
    """Request to create an event on a provider."""

    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)
    start_date: datetime
    end_date: datetime
    is_all_day: bool = False
    timezone: Optional[str] = None
    provider_type: ProviderType = ProviderType.GOOGLE
    meeting_type: Optional[MeetingType] = None
    meeting_url: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_event(self) -> "EventCreate":
        if not self.title.strip():
            raise ValueError("Event title cannot be empty")
        if _as_utc(self.start_date) > _as_utc(self.end_date):
            raise ValueError("Start date must be before end date")
        return self


class EventUpdate(CamelModel):
    """Partial update; fields left as None are not changed."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=MAX_TITLE_LENGTH)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_all_day: Optional[bool] = None
    timezone: Optional[str] = None
    status: Optional[EventStatus] = None
    meeting_type: Optional[MeetingType] = None
    meeting_url: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: Optional[list[str]] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_none=True)


class EventResponse(CamelModel):
    """Response representing a stored event."""

    id: UUID
    title: str
    start_date: datetime
    end_date: datetime
    is_all_day: bool
    timezone: str
    status: str
    provider_type: str
    external_event_id: Optional[str] = None
    meeting_type: Optional[str] = None
    meeting_url: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: list[str] = Field(default_factory=list)
    synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_date", "end_date", "synced_at", "created_at", "updated_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # SQLite hands back naive values; they are stored as UTC
        return _as_utc(value) if value is not None else None


class DateRange(CamelModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("start must not be after end")
        return self


class EventListResponse(CamelModel):
    """Events overlapping a date range."""

    events: list[EventResponse]
    date_range: DateRange
    view_type: CalendarViewType
    total_count: int


class DayBucket(CamelModel):
    """Events touching one local calendar day."""

    date: date
    events: list[EventResponse]


class EventsByDayResponse(CamelModel):
    timezone: str
    days: list[DayBucket]
