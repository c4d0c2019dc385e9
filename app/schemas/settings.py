"""
User settings schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from app.schemas.base import CamelModel


class WorkingHours(CamelModel):
    start: str = Field(pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    end: str = Field(pattern=r"^([01]\d|2[0-3]):[0-5]\d$")


class UnavailabilityBlock(CamelModel):
    start: datetime
    end: datetime
    reason: Optional[str] = None


class SettingsResponse(CamelModel):
    timezone: str
    timezone_label: str
    use_24_hour_format: bool
    default_working_hours: dict[str, WorkingHours] = Field(default_factory=dict)
    unavailability_blocks: list[UnavailabilityBlock] = Field(default_factory=list)


class SettingsUpdate(CamelModel):
    """Partial settings update; the timezone is checked by the normalizer."""

    timezone: Optional[str] = None
    use_24_hour_format: Optional[bool] = None
    default_working_hours: Optional[dict[str, WorkingHours]] = None
    unavailability_blocks: Optional[list[UnavailabilityBlock]] = None

    @field_validator("default_working_hours")
    @classmethod
    def _known_days(cls, value):
        if value is None:
            return value
        days = {
            "monday", "tuesday", "wednesday", "thursday",
            "friday", "saturday", "sunday",
        }
        unknown = set(value) - days
        if unknown:
            raise ValueError(f"Unknown weekday(s): {', '.join(sorted(unknown))}")
        return value
