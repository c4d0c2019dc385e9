"""
Registry of available calendar provider adapters.
"""

from functools import lru_cache
from typing import Iterable, Optional

import httpx

from app.config import Settings
from app.core.errors import ProviderNotSupported
from app.providers.base import CalendarProvider
from app.providers.google import GoogleCalendarProvider
from app.providers.microsoft import MicrosoftCalendarProvider
from app.providers.zoom import ZoomProvider

PROVIDER_CLASSES: tuple[type[CalendarProvider], ...] = (
    GoogleCalendarProvider,
    MicrosoftCalendarProvider,
    ZoomProvider,
)


class ProviderRegistry:
    """Maps provider type names to adapter instances."""

    def __init__(self, providers: Optional[Iterable[CalendarProvider]] = None):
        self._providers: dict[str, CalendarProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: CalendarProvider) -> None:
        self._providers[provider.provider_type] = provider

    def get(self, provider_type: str) -> CalendarProvider:
        provider = self._providers.get(provider_type)
        if provider is None:
            raise ProviderNotSupported(provider_type)
        return provider

    def has(self, provider_type: str) -> bool:
        return provider_type in self._providers

    def types(self) -> list[str]:
        return list(self._providers)

    def all(self) -> list[CalendarProvider]:
        return list(self._providers.values())

    def get_config(self, provider_type: str) -> dict:
        return self.get(provider_type).get_config()

    def get_all_configs(self) -> list[dict]:
        return [provider.get_config() for provider in self.all()]


def build_registry(
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ProviderRegistry:
    """Registry holding one adapter per supported provider."""
    return ProviderRegistry(cls(settings=settings, client=client) for cls in PROVIDER_CLASSES)


@lru_cache
def get_provider_registry() -> ProviderRegistry:
    """Get the process-wide registry."""
    return build_registry()
