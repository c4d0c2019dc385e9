"""
Celery application configuration.
"""

from celery import Celery

from app.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "calendar_sync",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.workers.sync_tasks"],
)

# Configure Celery
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_track_started=True,
    task_time_limit=1800,  # 30 min max per job
    task_soft_time_limit=1500,

    # Result backend; job state itself is tracked separately
    result_expires=settings.job_ttl_seconds,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Task routes
    task_routes={
        "app.workers.sync_tasks.run_job_task": {"queue": "sync"},
        "app.workers.sync_tasks.periodic_sync": {"queue": "sync"},
    },

    # Beat schedule for periodic tasks
    beat_schedule={
        "sync-active-users-every-hour": {
            "task": "app.workers.sync_tasks.periodic_sync",
            "schedule": 3600.0,  # Every hour
        },
    },
)
