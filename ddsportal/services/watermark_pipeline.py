"""
Watermark pipeline.

Runs one watermark job end to end: claim the job, stamp the attachment,
record the derivative and settle the job row. Failures come back as a
WatermarkOutcome instead of an exception so that callers (the Celery task,
the queue runner, the synchronous retry harness) decide what to do next.
"""
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from ddsportal.config import get_settings
from ddsportal.exceptions import AttachmentNotFoundError, DDSError, StorageError
from ddsportal.models.attachment import InvoiceAttachment
from ddsportal.models.file_processing import FileProcessingJob, JobStatus, JobType
from ddsportal.services.file_processing_service import FileProcessingService
from ddsportal.services.storage import Storage, get_storage
from ddsportal.services.watermark_service import WatermarkService

logger = structlog.get_logger(__name__)

IN_PROGRESS = "in_progress"


@dataclass(frozen=True)
class WatermarkOutcome:
    """Result of one watermark attempt."""
    attachment_id: int
    status: str
    job_id: Optional[int] = None
    attempts: int = 0
    watermark_id: Optional[int] = None
    watermarked_path: Optional[str] = None
    watermark_text: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED.value

    @property
    def in_progress(self) -> bool:
        return self.status == IN_PROGRESS

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class WatermarkPipeline:
    """Processes watermark jobs for invoice attachments."""

    def __init__(self, db: Session, storage: Optional[Storage] = None):
        self.db = db
        self.storage = storage or get_storage()
        self.jobs = FileProcessingService(db)
        self.watermarks = WatermarkService(db, self.storage)

    def process_attachment(
        self,
        attachment_id: int,
        options: Optional[Dict[str, Any]] = None,
        job_id: Optional[int] = None,
    ) -> WatermarkOutcome:
        """
        Watermark one attachment.

        Args:
            attachment_id: Attachment to stamp
            options: text, position, opacity, font_size, color
            job_id: Existing job to reuse (retries); otherwise the active job
                for the attachment is found or created

        Returns:
            WatermarkOutcome; status is completed, failed or in_progress
            (another worker holds the job)
        """
        options = dict(options or {})
        attachment = self.db.get(InvoiceAttachment, attachment_id)

        try:
            if job_id is not None:
                job = self.jobs.get_job(job_id)
            else:
                job, _ = self.jobs.find_or_create_job(attachment_id, JobType.WATERMARK, options)
        except DDSError as e:
            error = AttachmentNotFoundError(attachment_id) if attachment is None else e
            logger.error("watermark_job_unavailable", attachment_id=attachment_id, error=e.message)
            return WatermarkOutcome(
                attachment_id=attachment_id,
                status=JobStatus.FAILED.value,
                job_id=job_id,
                error=error.message,
                retryable=error.retryable,
            )

        if not self.jobs.claim_job(job.id):
            self.db.refresh(job)
            logger.info("watermark_job_in_progress", job_id=job.id, status=job.status.value)
            return WatermarkOutcome(
                attachment_id=attachment_id,
                status=IN_PROGRESS,
                job_id=job.id,
                attempts=job.attempts,
            )
        self.db.refresh(job)

        if attachment is None:
            return self._record_failure(job, AttachmentNotFoundError(attachment_id))

        logger.info("watermark_job_started", job_id=job.id, attachment_id=attachment_id, attempt=job.attempts)

        watermarked_path = None
        try:
            watermark_text = options.get("text") or self.watermarks.generate_custom_watermark(
                attachment.uploaded_by,
                f"Invoice #{attachment.invoice_id}",
            )
            watermarked_path = self.watermarks.add_watermark(
                attachment.file_path,
                watermark_text,
                options,
                mime_type=attachment.mime_type,
                namespace=str(attachment.id),
            )
            watermark = self.watermarks.create_watermark_record(
                attachment.id,
                watermarked_path,
                watermark_text,
                options,
            )
            job.mark_completed({
                "watermark_id": watermark.id,
                "watermarked_path": watermarked_path,
                "watermark_text": watermark_text,
                "file_size": watermark.file_size,
            })
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            if watermarked_path is not None:
                self._discard_derivative(watermarked_path)
            return self._record_failure(job, e)

        logger.info(
            "watermark_job_completed",
            job_id=job.id,
            attachment_id=attachment_id,
            watermarked_path=watermarked_path,
        )
        return WatermarkOutcome(
            attachment_id=attachment_id,
            status=JobStatus.COMPLETED.value,
            job_id=job.id,
            attempts=job.attempts,
            watermark_id=watermark.id,
            watermarked_path=watermarked_path,
            watermark_text=watermark_text,
        )

    def _discard_derivative(self, path: str) -> None:
        try:
            self.storage.delete(path)
        except StorageError as e:
            # The job is still failed; the stray file is only logged
            logger.error("watermark_derivative_cleanup_failed", path=path, error=e.message)

    def _record_failure(self, job: FileProcessingJob, error: Exception) -> WatermarkOutcome:
        message = error.message if isinstance(error, DDSError) else str(error)
        retryable = getattr(error, "retryable", True)

        job.mark_failed(message)
        self.db.commit()

        logger.error(
            "watermark_job_failed",
            job_id=job.id,
            attachment_id=job.file_id,
            attempt=job.attempts,
            error=message,
            error_type=type(error).__name__,
            retryable=retryable,
        )
        return WatermarkOutcome(
            attachment_id=job.file_id,
            status=JobStatus.FAILED.value,
            job_id=job.id,
            attempts=job.attempts,
            error=message,
            retryable=retryable,
        )

    def run(
        self,
        attachment_id: int,
        options: Optional[Dict[str, Any]] = None,
        max_attempts: Optional[int] = None,
        on_failure: Optional[Callable[[str, int], None]] = None,
    ) -> WatermarkOutcome:
        """
        Process an attachment, retrying retryable failures on the same job.

        Stops after max_attempts recorded attempts and then reports a
        permanent failure through fail_permanently.
        """
        if max_attempts is None:
            max_attempts = get_settings().watermark_max_attempts

        job_id = None
        while True:
            outcome = self.process_attachment(attachment_id, options, job_id=job_id)
            if outcome.succeeded or outcome.in_progress:
                return outcome
            if not outcome.retryable or outcome.job_id is None or outcome.attempts >= max_attempts:
                return self.fail_permanently(outcome, on_failure)

            logger.warning(
                "watermark_job_retrying",
                job_id=outcome.job_id,
                attempt=outcome.attempts,
                max_attempts=max_attempts,
            )
            job_id = outcome.job_id

    def fail_permanently(
        self,
        outcome: WatermarkOutcome,
        on_failure: Optional[Callable[[str, int], None]] = None,
    ) -> WatermarkOutcome:
        """Record that no further attempts will be made and notify on_failure once."""
        message = f"Job failed after {outcome.attempts} attempts: {outcome.error}"

        if outcome.job_id is not None:
            job = self.db.get(FileProcessingJob, outcome.job_id)
            if job is not None and job.status == JobStatus.FAILED:
                job.error_message = message
                self.db.commit()

        logger.error(
            "watermark_job_permanently_failed",
            job_id=outcome.job_id,
            attachment_id=outcome.attachment_id,
            attempts=outcome.attempts,
            error=outcome.error,
        )
        if on_failure is not None:
            on_failure(message, outcome.attempts)
        return replace(outcome, error=message, retryable=False)
