"""
Celery application configuration.

Configures Celery for background watermarking and scheduled maintenance with
Redis as the broker.
"""
from celery import Celery
from celery.schedules import crontab

from ddsportal.config import get_settings

settings = get_settings()

# Create Celery application
celery_app = Celery(
    "ddsportal",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["ddsportal.tasks.file_tasks"],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Jakarta",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,  # Acknowledge after task completes (not before)
    task_reject_on_worker_lost=True,  # Requeue if worker dies
    task_time_limit=settings.watermark_timeout_seconds,
    task_soft_time_limit=settings.watermark_timeout_seconds - 10,

    # Result settings
    result_expires=86400,  # Results expire after 24 hours

    # Worker settings
    worker_prefetch_multiplier=1,

    # Retry settings
    task_default_retry_delay=settings.watermark_retry_delay_seconds,

    # Beat scheduler (for periodic tasks)
    beat_schedule={
        "cleanup-orphaned-attachments": {
            "task": "ddsportal.tasks.file_tasks.cleanup_orphaned_attachments",
            "schedule": crontab(hour=2, minute=0),  # Daily at 02:00
        },
        "fail-stuck-jobs": {
            "task": "ddsportal.tasks.file_tasks.fail_stuck_jobs",
            "schedule": 1800.0,  # Every 30 minutes
        },
    },
)

celery_app.conf.task_routes = {
    "ddsportal.tasks.file_tasks.process_file_watermark": {"queue": "file_processing"},
}
