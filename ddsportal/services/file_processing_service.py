"""
File Processing Service.

Owns the file_processing_jobs audit trail: idempotent job creation, the
compare-and-set claim that moves a job into processing, queue dispatch and
status reporting.
"""
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ddsportal.database import insert_or_ignore
from ddsportal.exceptions import (
    AttachmentNotFoundError,
    ConcurrencyConflictError,
    DatabaseError,
    JobNotFoundError,
    ValidationError,
)
from ddsportal.models.attachment import InvoiceAttachment, format_file_size
from ddsportal.models.file_processing import (
    ACTIVE_STATUSES,
    FileProcessingJob,
    FileWatermark,
    JobStatus,
    JobType,
    utcnow,
)

logger = structlog.get_logger(__name__)

CLAIMABLE_STATUSES = (JobStatus.PENDING, JobStatus.FAILED)
CREATE_ATTEMPTS = 2


class FileProcessingService:
    """Service for creating, claiming and reporting on processing jobs."""

    def __init__(self, db: Session):
        self.db = db

    # ==================== Jobs ====================

    def find_or_create_job(
        self,
        file_id: int,
        job_type: JobType,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> Tuple[FileProcessingJob, bool]:
        """
        Return the active job for (file_id, job_type), creating it if needed.

        The insert is guarded by the partial unique index on active jobs, so
        concurrent callers for the same file all end up with the same row.

        Returns:
            (job, created) where created is False when an active job existed

        Raises:
            ConcurrencyConflictError: The active job kept finishing between
                the insert and the read
        """
        for _ in range(CREATE_ATTEMPTS):
            try:
                created = insert_or_ignore(
                    self.db,
                    FileProcessingJob,
                    file_id=file_id,
                    job_type=job_type,
                    status=JobStatus.PENDING,
                    attempts=0,
                    job_parameters=parameters or {},
                )
                job = self._active_job(file_id, job_type)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("job_create_failed", file_id=file_id, job_type=job_type.value, error=str(e))
                raise DatabaseError("Failed to create processing job", details={"file_id": file_id}) from e

            if job is not None:
                break
            # The winning job finished between our insert and our read; the slot is free again
            logger.warning("active_job_vanished", file_id=file_id, job_type=job_type.value)
        else:
            raise ConcurrencyConflictError(
                "Active job disappeared during creation",
                details={"file_id": file_id, "job_type": job_type.value},
            )

        if created:
            logger.info("job_created", job_id=job.id, file_id=file_id, job_type=job_type.value)
        return job, bool(created)

    def get_job(self, job_id: int) -> FileProcessingJob:
        job = self.db.get(FileProcessingJob, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        file_id: Optional[int] = None,
        page: int = 1,
        per_page: int = 15,
    ) -> Tuple[List[FileProcessingJob], int]:
        """Newest jobs first, optionally filtered. Returns (page of jobs, total matching)."""
        query = self.db.query(FileProcessingJob)
        if status is not None:
            query = query.filter(FileProcessingJob.status == status)
        if job_type is not None:
            query = query.filter(FileProcessingJob.job_type == job_type)
        if file_id is not None:
            query = query.filter(FileProcessingJob.file_id == file_id)

        total = query.count()
        jobs = (
            query.order_by(FileProcessingJob.created_at.desc(), FileProcessingJob.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return jobs, total

    def claim_job(self, job_id: int) -> bool:
        """
        Move a pending or failed job to processing.

        Compare-and-set on status: exactly one caller wins, losers get False
        and must not touch the job.
        """
        try:
            claimed = (
                self.db.query(FileProcessingJob)
                .filter(
                    FileProcessingJob.id == job_id,
                    FileProcessingJob.status.in_(CLAIMABLE_STATUSES),
                )
                .update(
                    {
                        FileProcessingJob.status: JobStatus.PROCESSING,
                        FileProcessingJob.started_at: utcnow(),
                        FileProcessingJob.completed_at: None,
                        FileProcessingJob.attempts: FileProcessingJob.attempts + 1,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
        except IntegrityError:
            # A newer active job exists for the same file
            self.db.rollback()
            return False

        if claimed:
            logger.info("job_claimed", job_id=job_id)
        return claimed == 1

    def fail_stuck_jobs(self, minutes: int = 30) -> int:
        """Fail jobs that have been processing for longer than `minutes`."""
        jobs = FileProcessingJob.stuck(self.db.query(FileProcessingJob), minutes).all()
        for job in jobs:
            job.mark_failed(f"Processing timed out after {minutes} minutes")
            logger.warning("job_timed_out", job_id=job.id, file_id=job.file_id, started_at=str(job.started_at))
        self.db.commit()
        return len(jobs)

    def _active_job(self, file_id: int, job_type: JobType) -> Optional[FileProcessingJob]:
        return (
            self.db.query(FileProcessingJob)
            .filter(
                FileProcessingJob.file_id == file_id,
                FileProcessingJob.job_type == job_type,
                FileProcessingJob.status.in_(ACTIVE_STATUSES),
            )
            .order_by(FileProcessingJob.id.desc())
            .first()
        )

    # ==================== Watermark queue ====================

    def queue_watermarking(self, attachment_id: int, options: Optional[Dict[str, Any]] = None) -> FileProcessingJob:
        """
        Create (or reuse) a watermark job and hand it to the worker.

        Raises:
            AttachmentNotFoundError: No attachment with that id
        """
        if self.db.get(InvoiceAttachment, attachment_id) is None:
            raise AttachmentNotFoundError(attachment_id)

        job, created = self.find_or_create_job(attachment_id, JobType.WATERMARK, options)
        if not created:
            logger.info("watermark_job_exists", job_id=job.id, attachment_id=attachment_id)
            return job

        self._dispatch_watermark(job)
        logger.info("watermark_job_queued", job_id=job.id, attachment_id=attachment_id)
        return job

    def retry_job(self, job_id: int, max_attempts: int = 3) -> FileProcessingJob:
        """
        Put a failed watermark job back on the queue.

        The row is reset to pending and handed to the worker under its own id,
        so the retry is one more attempt on the same job.

        Raises:
            JobNotFoundError: No job with that id
            ValidationError: The job type has no worker
            ConcurrencyConflictError: The job is not failed, has no attempts
                left, or a newer active job exists for the file
        """
        job = self.get_job(job_id)
        if job.job_type != JobType.WATERMARK:
            raise ValidationError.invalid_choice("job_type", job.job_type.value, [JobType.WATERMARK.value])
        if not job.can_retry(max_attempts):
            raise ConcurrencyConflictError(
                "Job cannot be retried (too many attempts or not failed)",
                details={"job_id": job_id, "status": job.status.value, "attempts": job.attempts},
            )

        file_id = job.file_id
        try:
            job.status = JobStatus.PENDING
            job.error_message = None
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConcurrencyConflictError(
                "A newer active job exists for this file",
                details={"job_id": job_id, "file_id": file_id},
            ) from e

        self._dispatch_watermark(job)
        logger.info("job_retry_queued", job_id=job_id, file_id=file_id, attempts=job.attempts)
        return job

    def _dispatch_watermark(self, job: FileProcessingJob) -> None:
        try:
            from ddsportal.tasks.file_tasks import process_file_watermark

            process_file_watermark.delay(job.file_id, job.job_parameters or {}, job.id)
        except Exception as e:
            # Job stays pending and is picked up by process_watermarking_queue
            logger.error("failed_to_queue_job", job_id=job.id, error=str(e))
            job.error_message = f"Failed to queue: {e}"
            self.db.commit()

    def process_watermarking_queue(self, limit: int = 10) -> Dict[str, int]:
        """
        Run pending watermark jobs in this process.

        A failing job is recorded on its row and never stops the batch.

        Returns:
            Counts of processed, completed, failed and skipped jobs
        """
        from ddsportal.services.watermark_pipeline import WatermarkPipeline

        jobs = (
            FileProcessingJob.pending(self.db.query(FileProcessingJob))
            .filter(FileProcessingJob.job_type == JobType.WATERMARK)
            .order_by(FileProcessingJob.created_at, FileProcessingJob.id)
            .limit(limit)
            .all()
        )

        pipeline = WatermarkPipeline(self.db)
        counts = {"processed": 0, "completed": 0, "failed": 0, "skipped": 0}
        for job in jobs:
            outcome = pipeline.process_attachment(job.file_id, job.job_parameters or {}, job_id=job.id)
            counts["processed"] += 1
            if outcome.succeeded:
                counts["completed"] += 1
            elif outcome.in_progress:
                counts["skipped"] += 1
            else:
                counts["failed"] += 1
                logger.error(
                    "watermark_job_failed",
                    job_id=job.id,
                    file_id=job.file_id,
                    error=outcome.error,
                )

        logger.info("watermark_queue_processed", **counts)
        return counts

    # ==================== Status ====================

    def get_processing_status(self, attachment_id: int) -> Dict[str, Any]:
        """
        Summarize every job recorded for an attachment.

        The overall status is failed if any job failed, otherwise processing
        if any job is running, otherwise completed once every job completed,
        otherwise pending.
        """
        jobs: List[FileProcessingJob] = (
            self.db.query(FileProcessingJob)
            .filter(FileProcessingJob.file_id == attachment_id)
            .order_by(FileProcessingJob.id)
            .all()
        )
        statuses = {job.status for job in jobs}

        if JobStatus.FAILED in statuses:
            overall = JobStatus.FAILED
        elif JobStatus.PROCESSING in statuses:
            overall = JobStatus.PROCESSING
        elif statuses == {JobStatus.COMPLETED}:
            overall = JobStatus.COMPLETED
        else:
            overall = JobStatus.PENDING

        return {
            "attachment_id": attachment_id,
            "overall_status": overall.value,
            "jobs": [
                {
                    "id": job.id,
                    "type": job.job_type.value,
                    "status": job.status.value,
                    "attempts": job.attempts,
                    "error": job.error_message,
                    "duration": job.human_duration,
                    "created_at": job.created_at,
                    "completed_at": job.completed_at,
                }
                for job in jobs
            ],
        }

    def get_statistics(self, max_attempts: int = 3) -> Dict[str, Any]:
        """Attachment totals, job counts per status and attachment counts per MIME type."""
        total_size = self.db.query(func.coalesce(func.sum(InvoiceAttachment.file_size), 0)).scalar()
        by_status = dict(
            self.db.query(FileProcessingJob.status, func.count(FileProcessingJob.id))
            .group_by(FileProcessingJob.status)
            .all()
        )
        jobs = {job_status.value: by_status.get(job_status, 0) for job_status in JobStatus}
        jobs["retryable"] = FileProcessingJob.retryable(self.db.query(FileProcessingJob), max_attempts).count()

        count = func.count(InvoiceAttachment.id)
        file_types = (
            self.db.query(InvoiceAttachment.mime_type, count)
            .group_by(InvoiceAttachment.mime_type)
            .order_by(count.desc(), InvoiceAttachment.mime_type)
            .all()
        )

        return {
            "total_files": self.db.query(InvoiceAttachment).count(),
            "total_size": int(total_size),
            "total_size_formatted": format_file_size(total_size),
            "watermarked_files": self.db.query(FileWatermark).count(),
            "processing_jobs": jobs,
            "file_types": [{"mime_type": mime_type, "count": n} for mime_type, n in file_types],
        }
