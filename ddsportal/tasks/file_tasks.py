"""
Attachment background tasks.

Celery tasks for watermarking attachments and for the scheduled orphan sweep.
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from ddsportal.celery_app import celery_app, settings
from ddsportal.database import SessionLocal
from ddsportal.services.attachment_cleanup import AttachmentCleanupService
from ddsportal.services.file_processing_service import FileProcessingService
from ddsportal.services.watermark_pipeline import WatermarkPipeline

logger = structlog.get_logger(__name__)


def get_db_session() -> Session:
    """Get a database session for use in Celery tasks."""
    return SessionLocal()


@celery_app.task(
    bind=True,
    max_retries=settings.watermark_max_attempts - 1,
    default_retry_delay=settings.watermark_retry_delay_seconds,
    time_limit=settings.watermark_timeout_seconds,
)
def process_file_watermark(
    self,
    attachment_id: int,
    options: Optional[Dict[str, Any]] = None,
    job_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Watermark an attachment.

    Retryable failures are retried on the same job row; once retries are
    exhausted (or the failure is not retryable) the job is failed for good.

    Args:
        attachment_id: Attachment to stamp
        options: Watermark options (text, position, opacity, font_size, color)
        job_id: Job created when the work was queued

    Returns:
        Dict with the watermark outcome
    """
    db = get_db_session()
    options = options or {}

    try:
        pipeline = WatermarkPipeline(db)
        outcome = pipeline.process_attachment(attachment_id, options, job_id=job_id)

        if outcome.succeeded or outcome.in_progress:
            return outcome.to_dict()

        if outcome.retryable and outcome.job_id is not None and self.request.retries < self.max_retries:
            logger.warning(
                "watermark_task_retrying",
                job_id=outcome.job_id,
                retry=self.request.retries + 1,
                error=outcome.error,
            )
            raise self.retry(args=(attachment_id, options, outcome.job_id), kwargs={})

        return pipeline.fail_permanently(outcome).to_dict()

    finally:
        db.close()


@celery_app.task
def cleanup_orphaned_attachments(dry_run: bool = False, days: Optional[int] = None) -> Dict[str, Any]:
    """
    Periodic orphan sweep.

    Runs daily via Celery Beat.
    """
    db = get_db_session()

    try:
        return AttachmentCleanupService(db).run(dry_run=dry_run, days=days).to_dict()
    finally:
        db.close()


@celery_app.task
def fail_stuck_jobs(minutes: int = 30) -> Dict[str, int]:
    """Fail jobs a dead worker left in processing."""
    db = get_db_session()

    try:
        failed = FileProcessingService(db).fail_stuck_jobs(minutes)
        logger.info("stuck_jobs_checked", failed=failed)
        return {"failed_jobs": failed}
    except Exception as e:
        logger.error("stuck_jobs_check_failed", error=str(e))
        db.rollback()
        raise
    finally:
        db.close()
