"""
Celery workers for background tasks.
"""

from app.workers.celery_app import celery_app
from app.workers.sync_tasks import (
    periodic_sync,
    run_job_task,
)

__all__ = [
    "celery_app",
    "periodic_sync",
    "run_job_task",
]
