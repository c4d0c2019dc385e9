"""
Calendar provider adapters.
"""

from app.providers.base import CalendarProvider
from app.providers.google import GoogleCalendarProvider
from app.providers.microsoft import MicrosoftCalendarProvider
from app.providers.zoom import ZoomProvider
from app.providers.registry import (
    ProviderRegistry,
    build_registry,
    get_provider_registry,
)

__all__ = [
    "CalendarProvider",
    "GoogleCalendarProvider",
    "MicrosoftCalendarProvider",
    "ZoomProvider",
    "ProviderRegistry",
    "build_registry",
    "get_provider_registry",
]
