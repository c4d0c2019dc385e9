"""
SQLAlchemy models for the calendar sync service.
"""

from app.models.user import User, UserSettings
from app.models.integration import UserIntegration
from app.models.event import Event

__all__ = [
    "User",
    "UserSettings",
    "UserIntegration",
    "Event",
]
