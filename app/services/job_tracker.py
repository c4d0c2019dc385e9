"""
Job tracking for long-running sync and connect operations.

Jobs live in Redis as JSON under ``sync_job:{id}`` and expire after
``job_ttl_seconds``. A second key, ``sync_job_active:{user}:{type}``,
holds the id of the user's active job of that type; it is taken with
``SET NX`` so two concurrent enqueues cannot both win.
"""

import inspect
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from app.config import Settings, get_settings
from app.core.errors import JobAlreadyInProgress, JobNotFound
from app.core.notifications import Notifier
from app.core.redis_client import RedisClient
from app.schemas.sync import JobStatus, JobType, SyncJob, SyncUpdate, SyncUpdateType

logger = logging.getLogger(__name__)

JOB_KEY = "sync_job:{job_id}"
ACTIVE_KEY = "sync_job_active:{user_id}:{job_type}"

# Pushed message types per job type: started, completed, failed
LIFECYCLE_UPDATES = {
    JobType.SYNC_EVENTS: (
        SyncUpdateType.SYNC_STARTED,
        SyncUpdateType.SYNC_COMPLETED,
        SyncUpdateType.SYNC_FAILED,
    ),
    JobType.CONNECT_CALENDAR: (
        SyncUpdateType.CALENDAR_CONNECTION_STARTED,
        SyncUpdateType.CALENDAR_CONNECTED,
        SyncUpdateType.CALENDAR_CONNECTION_FAILED,
    ),
}

Dispatcher = Callable[[str], Union[Any, Awaitable[Any]]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobTracker:
    """
    Creates jobs, hands them to a dispatcher and records their lifecycle.

    ``dispatcher`` is called with the new job id and must schedule the
    job without waiting for it (Celery ``delay`` or an asyncio task).
    """

    def __init__(
        self,
        redis: RedisClient,
        dispatcher: Optional[Dispatcher] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
    ):
        self.redis = redis
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.settings = settings or get_settings()

    @property
    def ttl(self) -> int:
        return self.settings.job_ttl_seconds

    # ============== Storage ==============

    @staticmethod
    def _serialize(job: SyncJob) -> str:
        data = job.model_dump(mode="json")
        data["params"] = job.params
        return json.dumps(data, default=str)

    async def _save(self, job: SyncJob) -> None:
        await self.redis.set(JOB_KEY.format(job_id=job.id), self._serialize(job), ttl=self.ttl)

    async def _load(self, job_id: str) -> Optional[SyncJob]:
        data = await self.redis.get_json(JOB_KEY.format(job_id=job_id))
        if data is None:
            return None
        return SyncJob.model_validate(data)

    def _active_key(self, user_id: str, job_type: JobType) -> str:
        return ACTIVE_KEY.format(user_id=user_id, job_type=JobType(job_type).value)

    # ============== Public API ==============

    async def enqueue(
        self,
        job_type: JobType,
        user_id: str,
        params: Optional[dict] = None,
    ) -> SyncJob:
        """
        Create a pending job and schedule it.

        Raises ``JobAlreadyInProgress`` (carrying the existing id) if the
        user already has a pending or processing job of this type.
        """
        job_type = JobType(job_type)
        job = SyncJob(
            id=str(uuid.uuid4()),
            type=job_type,
            user_id=user_id,
            params=params or {},
            created_at=_now(),
        )
        # Saved before the lock so whoever reads the lock finds the job
        await self._save(job)
        active_key = self._active_key(user_id, job_type)

        existing_id: Optional[str] = None
        for _ in range(2):
            if await self.redis.set(active_key, job.id, ttl=self.ttl, nx=True):
                break
            existing_id = await self.redis.get(active_key)
            existing = await self._load(existing_id) if existing_id else None
            if existing is not None and existing.status.is_active:
                await self.redis.delete(JOB_KEY.format(job_id=job.id))
                raise JobAlreadyInProgress(existing.id, job_type.value)
            # Lock left behind by a finished or expired job
            if existing_id:
                await self.redis.delete_if_equals(active_key, existing_id)
        else:
            await self.redis.delete(JOB_KEY.format(job_id=job.id))
            raise JobAlreadyInProgress(existing_id or "", job_type.value)

        logger.info(f"Enqueued {job_type.value} job {job.id} for user {user_id}")

        if self.dispatcher is not None:
            try:
                dispatched = self.dispatcher(job.id)
                if inspect.isawaitable(dispatched):
                    await dispatched
            except Exception as e:
                logger.exception(f"Failed to dispatch job {job.id}")
                return await self.fail(job.id, f"Could not schedule job: {e}")

        return job

    async def get_status(self, job_id: str) -> SyncJob:
        job = await self._load(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    async def active_job(self, user_id: str, job_type: JobType) -> Optional[SyncJob]:
        job_id = await self.redis.get(self._active_key(user_id, job_type))
        if not job_id:
            return None
        job = await self._load(job_id)
        if job is None or job.status.is_terminal:
            return None
        return job

    # ============== Lifecycle ==============

    async def start(self, job_id: str) -> Optional[SyncJob]:
        """
        Move a pending job to processing.

        Returns None if the job is not pending (already picked up, or
        finished), so redelivered tasks do not run twice. The transition
        is a compare-and-set on the stored job.
        """
        key = JOB_KEY.format(job_id=job_id)
        stored = await self.redis.get(key)
        if stored is None:
            raise JobNotFound(job_id)
        job = SyncJob.model_validate(json.loads(stored))
        if job.status != JobStatus.PENDING:
            logger.warning(f"Job {job_id} is {job.status.value}, not starting it")
            return None
        job.status = JobStatus.PROCESSING
        job.started_at = _now()
        if not await self.redis.replace_if_equals(key, stored, self._serialize(job), ttl=self.ttl):
            logger.warning(f"Job {job_id} was picked up by another worker")
            return None
        logger.info(f"Job {job_id} processing")

        started, _, _ = LIFECYCLE_UPDATES[job.type]
        await self._notify(job, started, self._started_message(job))
        return job

    async def progress(self, job_id: str, message: str, data: Optional[dict] = None) -> None:
        """Push a progress update; the stored job is not changed."""
        job = await self.get_status(job_id)
        await self._notify(job, SyncUpdateType.SYNC_PROGRESS, message, data)

    async def complete(
        self,
        job_id: str,
        result: Optional[dict] = None,
        message: Optional[str] = None,
    ) -> SyncJob:
        return await self._finish(job_id, JobStatus.COMPLETED, result=result, message=message)

    async def fail(
        self,
        job_id: str,
        error: str,
        result: Optional[dict] = None,
    ) -> SyncJob:
        return await self._finish(job_id, JobStatus.FAILED, result=result, error=error)

    async def _finish(
        self,
        job_id: str,
        status: JobStatus,
        result: Optional[dict] = None,
        error: Optional[str] = None,
        message: Optional[str] = None,
    ) -> SyncJob:
        job = await self.get_status(job_id)
        if job.status.is_terminal:
            logger.warning(f"Job {job_id} already {job.status.value}")
            return job

        job.status = status
        job.completed_at = _now()
        job.result = result
        job.error = error
        # Authorization codes are single-use; do not keep them around
        job.params.pop("code", None)
        await self._save(job)
        await self.redis.delete_if_equals(self._active_key(job.user_id, job.type), job.id)

        if status == JobStatus.COMPLETED:
            logger.info(f"Job {job_id} completed")
        else:
            logger.warning(f"Job {job_id} failed: {error}")

        _, completed, failed = LIFECYCLE_UPDATES[job.type]
        await self._notify(
            job,
            completed if status == JobStatus.COMPLETED else failed,
            message or error,
            result,
        )
        return job

    # ============== Notifications ==============

    @staticmethod
    def _started_message(job: SyncJob) -> str:
        if job.type == JobType.CONNECT_CALENDAR:
            provider = job.params.get("provider_type", "calendar")
            return f"Connecting {provider} calendar"
        return "Sync started"

    async def _notify(
        self,
        job: SyncJob,
        update_type: SyncUpdateType,
        message: Optional[str] = None,
        data: Optional[dict] = None,
    ) -> None:
        if self.notifier is None:
            return
        update = SyncUpdate(
            type=update_type,
            user_id=job.user_id,
            job_id=job.id,
            message=message,
            data=data,
        )
        payload = {"event": "sync_update", "data": update.to_wire()}
        try:
            await self.notifier.notify_user(job.user_id, payload)
        except Exception:
            # Push is best-effort; the job state is already saved
            logger.exception(f"Failed to push {update_type.value} for job {job.id}")
