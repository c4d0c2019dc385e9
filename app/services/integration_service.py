"""
Integration service: connecting, disconnecting and inspecting providers.
"""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import IntegrationNotFound
from app.models import UserIntegration
from app.providers.base import CalendarProvider
from app.providers.registry import ProviderRegistry, get_provider_registry
from app.schemas.integration import ProviderStatus
from app.services.settings_service import ensure_user

logger = logging.getLogger(__name__)


class IntegrationService:
    """Manages a user's provider connections."""

    def __init__(self, registry: Optional[ProviderRegistry] = None):
        self.registry = registry or get_provider_registry()

    def get_adapter(self, provider_type: str) -> CalendarProvider:
        """Get the adapter, raising ``ProviderNotSupported`` if unknown."""
        return self.registry.get(provider_type)

    async def list_integrations(
        self,
        db: AsyncSession,
        user_id: str,
    ) -> list[UserIntegration]:
        result = await db.execute(
            select(UserIntegration)
            .where(UserIntegration.user_id == user_id)
            .order_by(UserIntegration.provider_type)
        )
        return list(result.scalars().all())

    async def find(
        self,
        db: AsyncSession,
        user_id: str,
        provider_type: str,
    ) -> Optional[UserIntegration]:
        result = await db.execute(
            select(UserIntegration).where(
                UserIntegration.user_id == user_id,
                UserIntegration.provider_type == provider_type,
            )
        )
        return result.scalar_one_or_none()

    async def get_active(
        self,
        db: AsyncSession,
        user_id: str,
        provider_type: str,
    ) -> UserIntegration:
        integration = await self.find(db, user_id, provider_type)
        if integration is None or not integration.is_active:
            raise IntegrationNotFound(provider_type)
        return integration

    async def provider_status(
        self,
        db: AsyncSession,
        user_id: str,
        provider_type: str,
    ) -> ProviderStatus:
        self.get_adapter(provider_type)
        integration = await self.find(db, user_id, provider_type)
        if integration is None:
            return ProviderStatus(connected=False, provider_type=provider_type)
        return ProviderStatus(
            connected=integration.is_active,
            provider_type=provider_type,
            is_active=integration.is_active,
            last_sync_at=integration.last_sync_at,
        )

    async def connect(
        self,
        db: AsyncSession,
        user_id: str,
        provider_type: str,
        code: str,
        redirect_uri: Optional[str] = None,
    ) -> UserIntegration:
        """
        Exchange ``code`` with the provider and store the connection.

        An existing row for the provider is reused and reactivated, so a
        user has one row per provider.
        """
        adapter = self.get_adapter(provider_type)
        authorized = await adapter.authorize(code, redirect_uri=redirect_uri)

        await ensure_user(db, user_id)
        integration = await self.find(db, user_id, provider_type)
        if integration is None:
            authorized.user_id = user_id
            db.add(authorized)
            integration = authorized
        else:
            for field in (
                "provider_id",
                "account_email",
                "access_token",
                "expires_at",
                "scope",
                "primary_timezone",
            ):
                setattr(integration, field, getattr(authorized, field))
            if authorized.refresh_token:
                integration.refresh_token = authorized.refresh_token
            integration.is_active = True
            integration.last_error = None

        await db.commit()
        logger.info(f"Connected {provider_type} for user {user_id}")
        return integration

    async def disconnect(
        self,
        db: AsyncSession,
        user_id: str,
        provider_type: str,
    ) -> bool:
        """
        Stop syncing a provider. Idempotent.

        Only flips ``is_active``; synced events stay. Returns whether an
        active connection was found.
        """
        self.get_adapter(provider_type)
        integration = await self.find(db, user_id, provider_type)
        if integration is None or not integration.is_active:
            return False
        integration.is_active = False
        await db.commit()
        logger.info(f"Disconnected {provider_type} for user {user_id}")
        return True

    async def deactivate(
        self,
        db: AsyncSession,
        integration: UserIntegration,
        reason: str,
    ) -> None:
        """
        Mark an integration as needing reconnect and commit it.

        Uncommitted changes in ``db`` are rolled back first; they belong to
        the operation the provider just refused.
        """
        integration_id = integration.id
        user_id, provider_type = integration.user_id, integration.provider_type
        await db.rollback()
        await db.execute(
            update(UserIntegration)
            .where(UserIntegration.id == integration_id)
            .values(is_active=False, last_error=reason)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.warning(f"Deactivated {provider_type} for user {user_id}: {reason}")
