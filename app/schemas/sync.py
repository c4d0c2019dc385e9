"""
Sync job Pydantic schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import Field

from app.schemas.base import CamelModel
from app.schemas.event import DateRange


class JobType(str, Enum):
    SYNC_EVENTS = "sync_events"
    CONNECT_CALENDAR = "connect_calendar"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def is_active(self) -> bool:
        return not self.is_terminal


class SyncUpdateType(str, Enum):
    """Message types pushed on the ``sync_update`` channel."""

    SYNC_STARTED = "sync_started"
    SYNC_PROGRESS = "sync_progress"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    CALENDAR_CONNECTION_STARTED = "calendar_connection_started"
    CALENDAR_CONNECTED = "calendar_connected"
    CALENDAR_CONNECTION_FAILED = "calendar_connection_failed"


class SyncJob(CamelModel):
    """
    Snapshot of a tracked job.

    ``params`` holds what the job was enqueued with (user, providers,
    window, auth code for connects); it is never sent to clients.
    """

    id: str
    type: JobType
    status: JobStatus = JobStatus.PENDING
    user_id: str
    params: dict[str, Any] = Field(default_factory=dict, exclude=True)
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[dict[str, Any]] = None


class SyncRequest(CamelModel):
    """Request to sync all connected providers."""

    date_range: Optional[DateRange] = None
    providers: Optional[list[str]] = Field(
        default=None,
        description="Restrict the sync to these provider types",
    )


class JobAccepted(CamelModel):
    """Response from enqueueing a job."""

    job_id: str
    status: JobStatus


class ProviderSyncResult(CamelModel):
    """Outcome of one provider branch of a sync."""

    provider_type: str
    status: str  # completed, failed
    synced: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None


class SyncSummary(CamelModel):
    """Aggregate result of a sync; stored as ``SyncJob.result``."""

    synced: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    providers: list[ProviderSyncResult] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)
    window: Optional[DateRange] = None

    @property
    def succeeded(self) -> list[ProviderSyncResult]:
        return [p for p in self.providers if p.status == "completed"]

    @property
    def failed(self) -> list[ProviderSyncResult]:
        return [p for p in self.providers if p.status == "failed"]

    def add(self, result: ProviderSyncResult) -> None:
        self.providers.append(result)
        if result.status == "completed":
            self.synced += result.synced
            self.created += result.created
            self.updated += result.updated
            self.deleted += result.deleted
        elif result.error:
            self.errors[result.provider_type] = result.error

    def message(self) -> str:
        text = (
            f"Sync completed: {self.synced} events processed "
            f"({self.created} new, {self.updated} updated)"
        )
        if self.deleted:
            text += f", {self.deleted} removed"
        if self.errors:
            text += f"; failed providers: {', '.join(sorted(self.errors))}"
        return text


class SyncUpdate(CamelModel):
    """Payload of a ``sync_update`` push."""

    type: SyncUpdateType
    user_id: str
    job_id: str
    message: Optional[str] = None
    data: Optional[dict[str, Any]] = None
