"""
User and settings service.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models import User, UserSettings
from app.schemas.settings import SettingsResponse, SettingsUpdate
from app.services import timezone_service

logger = logging.getLogger(__name__)


async def ensure_user(
    db: AsyncSession,
    user_id: str,
    email: Optional[str] = None,
) -> User:
    """Get a user by identity-provider id, creating the row on first sight."""
    user = await db.get(User, user_id)
    if user is None:
        user = User(id=user_id, email=email)
        db.add(user)
        await db.flush()
        logger.info(f"Created user {user_id}")
    elif email and not user.email:
        user.email = email
    return user


class SettingsService:
    """Reads and updates a user's timezone and availability preferences."""

    def __init__(self, default_timezone: Optional[str] = None):
        self.default_timezone = default_timezone or get_settings().default_timezone

    async def get(self, db: AsyncSession, user_id: str) -> UserSettings:
        """Get the user's settings, creating defaults if none exist."""
        result = await db.execute(
            select(UserSettings).where(UserSettings.user_id == user_id)
        )
        user_settings = result.scalar_one_or_none()
        if user_settings is None:
            await ensure_user(db, user_id)
            user_settings = UserSettings(
                user_id=user_id,
                timezone=self.default_timezone,
                default_working_hours={},
                unavailability_blocks=[],
            )
            db.add(user_settings)
            await db.flush()
        return user_settings

    async def get_timezone(self, db: AsyncSession, user_id: str) -> str:
        user_settings = await self.get(db, user_id)
        return timezone_service.resolve_timezone(
            user_timezone=user_settings.timezone,
            default=self.default_timezone,
        )

    async def update(
        self,
        db: AsyncSession,
        user_id: str,
        update: SettingsUpdate,
    ) -> UserSettings:
        user_settings = await self.get(db, user_id)

        if update.timezone is not None:
            # Raises InvalidTimezone for unknown identifiers
            user_settings.timezone = timezone_service.get_zone(update.timezone).key
        if update.use_24_hour_format is not None:
            user_settings.use_24_hour_format = update.use_24_hour_format
        if update.default_working_hours is not None:
            user_settings.default_working_hours = {
                day: hours.model_dump() for day, hours in update.default_working_hours.items()
            }
        if update.unavailability_blocks is not None:
            user_settings.unavailability_blocks = [
                block.model_dump(mode="json") for block in update.unavailability_blocks
            ]

        await db.flush()
        logger.info(f"Updated settings for user {user_id}")
        return user_settings

    @staticmethod
    def to_response(user_settings: UserSettings) -> SettingsResponse:
        tz = user_settings.timezone
        use_24_hour = user_settings.use_24_hour_format
        if use_24_hour is None:
            use_24_hour = timezone_service.is_24_hour_format(tz)
        return SettingsResponse(
            timezone=tz,
            timezone_label=timezone_service.timezone_label(tz),
            use_24_hour_format=use_24_hour,
            default_working_hours=user_settings.default_working_hours or {},
            unavailability_blocks=user_settings.unavailability_blocks or [],
        )
