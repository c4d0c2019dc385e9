"""
Error taxonomy for calendar sync operations.

Every error carries an HTTP status code, a machine-readable code and a
message that is safe to show to the user. The API layer turns these into
JSON responses; the sync orchestrator records provider errors in the job
result instead of raising them.
"""

from typing import Optional


class CalendarSyncError(Exception):
    """Base class for expected, user-visible failures."""

    status_code: int = 500
    code: str = "calendar_sync_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class InvalidTimezone(CalendarSyncError):
    status_code = 400
    code = "invalid_timezone"

    def __init__(self, timezone: str):
        super().__init__(f"Unrecognized timezone: {timezone!r}")
        self.timezone = timezone


# ============== Provider Errors ==============


class ProviderError(CalendarSyncError):
    """Base class for failures reported by, or about, an external provider."""

    status_code = 502
    code = "provider_error"

    def __init__(
        self,
        message: str,
        provider_type: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.provider_type = provider_type


class ProviderAuthError(ProviderError):
    """The authorization code was rejected (invalid, expired or reused)."""

    status_code = 401
    code = "provider_auth_error"


class ProviderAuthExpired(ProviderError):
    """The access token was rejected; one refresh-and-retry is expected."""

    status_code = 401
    code = "provider_auth_expired"


class ProviderReauthRequired(ProviderError):
    """The refresh token itself is invalid; the user must reconnect."""

    status_code = 401
    code = "provider_reauth_required"


class ProviderQuotaExceeded(ProviderError):
    status_code = 429
    code = "provider_quota_exceeded"


class ProviderApiError(ProviderError):
    """Any other non-2xx provider response, or a timeout."""

    code = "provider_api_error"

    def __init__(
        self,
        message: str,
        provider_type: Optional[str] = None,
        provider_status: Optional[int] = None,
    ):
        super().__init__(message, provider_type=provider_type)
        self.provider_status = provider_status

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["provider_status"] = self.provider_status
        return data


class ProviderNotSupported(ProviderError):
    status_code = 400
    code = "provider_not_supported"

    def __init__(self, provider_type: str):
        super().__init__(
            f"Provider {provider_type} not supported",
            provider_type=provider_type,
        )


# ============== Job Errors ==============


class JobAlreadyInProgress(CalendarSyncError):
    status_code = 409
    code = "job_already_in_progress"

    def __init__(self, job_id: str, job_type: str):
        super().__init__(f"A {job_type} job is already in progress")
        self.job_id = job_id
        self.job_type = job_type

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["jobId"] = self.job_id
        return data


class JobNotFound(CalendarSyncError):
    status_code = 404
    code = "job_not_found"

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


# ============== Resource Errors ==============


class IntegrationNotFound(CalendarSyncError):
    status_code = 404
    code = "integration_not_found"

    def __init__(self, provider_type: str):
        super().__init__(f"Provider {provider_type} not connected or not active")
        self.provider_type = provider_type


class InvalidEvent(CalendarSyncError):
    status_code = 422
    code = "invalid_event"


class EventNotFound(CalendarSyncError):
    status_code = 404
    code = "event_not_found"

    def __init__(self, event_id: str):
        super().__init__("Event not found")
        self.event_id = event_id
