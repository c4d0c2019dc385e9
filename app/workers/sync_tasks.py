"""
Celery tasks for calendar synchronization.
"""

import asyncio
import logging
from typing import Optional

from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run async function in Celery task."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _connected_redis():
    # Each task runs on a fresh event loop, so clients are per task
    from app.config import get_settings
    from app.core.redis_client import RedisClient

    redis = RedisClient(get_settings().redis_url)
    await redis.connect()
    return redis


def _tracker(redis, dispatcher=None):
    from app.config import get_settings
    from app.core.notifications import NotificationPublisher
    from app.services.job_tracker import JobTracker

    settings = get_settings()
    return JobTracker(
        redis,
        dispatcher=dispatcher,
        notifier=NotificationPublisher(redis, settings.notification_channel),
        settings=settings,
    )


@celery_app.task
def run_job_task(job_id: str):
    """
    Execute a tracked sync or connect job.

    Failures are recorded on the job itself, so the task is not retried.
    """
    return run_async(_run_job_async(job_id))


async def _run_job_async(job_id: str) -> Optional[dict]:
    from app.database import close_db
    from app.services.job_runner import JobRunner

    redis = await _connected_redis()
    try:
        job = await JobRunner(_tracker(redis)).run(job_id)
        return {"job_id": job_id, "status": job.status.value} if job else None
    finally:
        await redis.disconnect()
        await close_db()


@celery_app.task
def periodic_sync():
    """Enqueue a sync for every user with an active integration."""
    return run_async(_periodic_sync_async())


async def _periodic_sync_async() -> dict:
    from app.core.errors import JobAlreadyInProgress
    from app.database import close_db, get_db_context
    from app.schemas.sync import JobType
    from app.services.sync_service import SyncService

    redis = await _connected_redis()
    tracker = _tracker(redis, dispatcher=lambda job_id: run_job_task.delay(job_id))
    enqueued, skipped = 0, 0

    try:
        async with get_db_context() as db:
            user_ids = await SyncService().active_user_ids(db)

        for user_id in user_ids:
            try:
                await tracker.enqueue(JobType.SYNC_EVENTS, user_id)
                enqueued += 1
            except JobAlreadyInProgress:
                skipped += 1
    finally:
        await redis.disconnect()
        await close_db()

    logger.info(f"Periodic sync: {enqueued} enqueued, {skipped} already running")
    return {"enqueued": enqueued, "skipped": skipped}
