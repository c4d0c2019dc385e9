"""
Pydantic schemas for API request/response validation.
"""

from app.schemas.base import CamelModel
from app.schemas.event import (
    CalendarViewType,
    CanonicalEvent,
    DateRange,
    DayBucket,
    EventCreate,
    EventFilterType,
    EventListResponse,
    EventResponse,
    EventsByDayResponse,
    EventStatus,
    EventUpdate,
    MeetingType,
    ProviderType,
)
from app.schemas.integration import (
    AuthData,
    AuthUrlResponse,
    ConnectProviderRequest,
    DisconnectResponse,
    IntegrationSummary,
    ProviderConfig,
    ProviderStatus,
)
from app.schemas.settings import (
    SettingsResponse,
    SettingsUpdate,
)
from app.schemas.sync import (
    JobAccepted,
    JobStatus,
    JobType,
    ProviderSyncResult,
    SyncJob,
    SyncRequest,
    SyncSummary,
    SyncUpdate,
    SyncUpdateType,
)

__all__ = [
    "CamelModel",
    "CalendarViewType",
    "CanonicalEvent",
    "DateRange",
    "DayBucket",
    "EventCreate",
    "EventFilterType",
    "EventListResponse",
    "EventResponse",
    "EventsByDayResponse",
    "EventStatus",
    "EventUpdate",
    "MeetingType",
    "ProviderType",
    "AuthData",
    "AuthUrlResponse",
    "ConnectProviderRequest",
    "DisconnectResponse",
    "IntegrationSummary",
    "ProviderConfig",
    "ProviderStatus",
    "SettingsResponse",
    "SettingsUpdate",
    "JobAccepted",
    "JobStatus",
    "JobType",
    "ProviderSyncResult",
    "SyncJob",
    "SyncRequest",
    "SyncSummary",
    "SyncUpdate",
    "SyncUpdateType",
]
