"""
Executes tracked jobs.

Called from the Celery worker (or an asyncio task in inline mode) with a
job id; the job's parameters are read back from the tracker.
"""

import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import CalendarSyncError
from app.database import get_db_context
from app.schemas.sync import JobType, ProviderSyncResult, SyncJob, SyncSummary
from app.services.integration_service import IntegrationService
from app.services.job_tracker import JobTracker
from app.services.sync_service import SyncService

logger = logging.getLogger(__name__)

SessionContext = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class JobRunner:
    """Runs one job from pending to a terminal state."""

    def __init__(
        self,
        tracker: JobTracker,
        sync_service: Optional[SyncService] = None,
        integration_service: Optional[IntegrationService] = None,
        session_context: SessionContext = get_db_context,
    ):
        self.tracker = tracker
        self.sync_service = sync_service or SyncService()
        self.integration_service = integration_service or IntegrationService(
            self.sync_service.registry
        )
        self.session_context = session_context

    async def run(self, job_id: str) -> Optional[SyncJob]:
        """
        Execute ``job_id``.

        Returns the final job, or None if the job was not pending.
        """
        job = await self.tracker.start(job_id)
        if job is None:
            return None

        try:
            async with self.session_context() as db:
                if job.type == JobType.CONNECT_CALENDAR:
                    return await self._connect(db, job)
                return await self._sync(db, job)
        except CalendarSyncError as e:
            return await self.tracker.fail(job_id, e.message)
        except Exception:
            logger.exception(f"Job {job_id} crashed")
            return await self.tracker.fail(job_id, "Sync failed due to an internal error")

    def _progress_callback(self, job: SyncJob):
        async def on_progress(result: ProviderSyncResult, done: int, total: int) -> None:
            await self.tracker.progress(
                job.id,
                f"{result.provider_type} sync {result.status}",
                {
                    "progress": round(done * 100 / total),
                    "providerType": result.provider_type,
                    "status": result.status,
                    "synced": result.synced,
                    "error": result.error,
                },
            )

        return on_progress

    async def _sync(self, db: AsyncSession, job: SyncJob) -> SyncJob:
        summary = await self.sync_service.sync_user(
            db,
            job.user_id,
            start=_parse(job.params.get("start")),
            end=_parse(job.params.get("end")),
            provider_types=job.params.get("providers"),
            on_progress=self._progress_callback(job),
        )
        result = summary.to_wire()
        # Completed when at least one provider made it
        if summary.providers and not summary.succeeded:
            errors = "; ".join(f"{p}: {e}" for p, e in sorted(summary.errors.items()))
            return await self.tracker.fail(job.id, f"All providers failed. {errors}", result=result)
        return await self.tracker.complete(job.id, result=result, message=summary.message())

    async def _connect(self, db: AsyncSession, job: SyncJob) -> SyncJob:
        provider_type = job.params["provider_type"]
        adapter = self.integration_service.get_adapter(provider_type)
        integration = await self.integration_service.connect(
            db,
            job.user_id,
            provider_type,
            job.params["code"],
            redirect_uri=job.params.get("redirect_uri"),
        )

        # Initial import; a failure here leaves the connection in place
        summary: SyncSummary = await self.sync_service.sync_user(
            db,
            job.user_id,
            provider_types=[provider_type],
            on_progress=self._progress_callback(job),
        )
        result = summary.to_wire()
        result.update(
            {
                "providerType": provider_type,
                "accountEmail": integration.account_email,
            }
        )
        message = f"{adapter.display_name} connected: {summary.synced} events synced"
        if summary.errors:
            message += f" (initial sync failed: {next(iter(summary.errors.values()))})"
        return await self.tracker.complete(job.id, result=result, message=message)
