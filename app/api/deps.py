"""
Shared API dependencies.
"""

import asyncio
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.notifications import NotificationPublisher, Notifier
from app.core.redis_client import RedisClient, get_redis
from app.database import get_db
from app.providers.registry import ProviderRegistry, get_provider_registry
from app.services.event_service import EventService
from app.services.integration_service import IntegrationService
from app.services.job_runner import JobRunner
from app.services.job_tracker import Dispatcher, JobTracker
from app.services.settings_service import SettingsService, ensure_user
from app.services.sync_service import SyncService

logger = logging.getLogger(__name__)

# Inline jobs are referenced here until they finish
_inline_jobs: set[asyncio.Task] = set()


async def get_current_user(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    db: AsyncSession = Depends(get_db),
) -> str:
    """
    Return the caller's user id.

    Identity is established upstream (the auth gateway verifies the token
    and forwards the uid); the user row is created on first request.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    user_id = x_user_id.strip()
    await ensure_user(db, user_id)
    # Jobs use their own sessions and must see the user row
    await db.commit()
    return user_id


def get_registry() -> ProviderRegistry:
    return get_provider_registry()


def get_integration_service(
    registry: ProviderRegistry = Depends(get_registry),
) -> IntegrationService:
    return IntegrationService(registry)


def get_sync_service(
    registry: ProviderRegistry = Depends(get_registry),
) -> SyncService:
    return SyncService(registry)


async def get_notifier(redis: RedisClient = Depends(get_redis)) -> Notifier:
    return NotificationPublisher(redis, get_settings().notification_channel)


def get_event_service(
    integration_service: IntegrationService = Depends(get_integration_service),
    notifier: Notifier = Depends(get_notifier),
) -> EventService:
    return EventService(integration_service, notifier=notifier)


def get_settings_service() -> SettingsService:
    return SettingsService()


def _celery_dispatcher() -> Dispatcher:
    from app.workers.sync_tasks import run_job_task

    def dispatch(job_id: str) -> None:
        run_job_task.delay(job_id)

    return dispatch


def _inline_dispatcher(tracker: JobTracker, sync_service: SyncService) -> Dispatcher:
    def dispatch(job_id: str) -> None:
        runner = JobRunner(tracker, sync_service=sync_service)
        task = asyncio.create_task(runner.run(job_id))
        _inline_jobs.add(task)
        task.add_done_callback(_inline_jobs.discard)

    return dispatch


async def get_job_tracker(
    redis: RedisClient = Depends(get_redis),
    notifier: Notifier = Depends(get_notifier),
    sync_service: SyncService = Depends(get_sync_service),
) -> JobTracker:
    settings = get_settings()
    tracker = JobTracker(redis, notifier=notifier, settings=settings)
    if settings.job_execution_mode == "inline":
        tracker.dispatcher = _inline_dispatcher(tracker, sync_service)
    else:
        tracker.dispatcher = _celery_dispatcher()
    return tracker
