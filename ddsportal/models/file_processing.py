"""
File processing job and watermark models.

Jobs are the audit trail for asynchronous work on attachments; watermarks
record each stamped derivative produced by a successful watermark job.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Query, relationship
from sqlalchemy.sql import func

from ddsportal.database import Base
from ddsportal.models.attachment import format_file_size
from ddsportal.models.types import JSONType


class JobStatus(str, Enum):
    """Job status enumeration."""
    PENDING = "pending"        # Job created, waiting for worker
    PROCESSING = "processing"  # Worker picked up the job
    COMPLETED = "completed"    # Job finished successfully
    FAILED = "failed"          # Job failed with error


class JobType(str, Enum):
    """Job type enumeration."""
    WATERMARK = "watermark"
    THUMBNAIL = "thumbnail"
    COMPRESS = "compress"
    VIRUS_SCAN = "virus_scan"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)

# Shared by the partial unique index and ON CONFLICT clauses
ACTIVE_JOB_CONDITION = "status IN ('pending', 'processing')"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def utcnow() -> datetime:
    return datetime.utcnow()


class FileProcessingJob(Base):
    """Background processing job for an invoice attachment."""

    __tablename__ = "file_processing_jobs"
    __table_args__ = (
        Index("ix_file_processing_jobs_status_type", "status", "job_type"),
        Index("ix_file_processing_jobs_file_type", "file_id", "job_type"),
        # At most one pending/processing job per file and job type
        Index(
            "uq_file_processing_jobs_active",
            "file_id",
            "job_type",
            unique=True,
            sqlite_where=text(ACTIVE_JOB_CONDITION),
            postgresql_where=text(ACTIVE_JOB_CONDITION),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(
        Integer,
        ForeignKey("invoice_attachments.id", ondelete="CASCADE"),
        nullable=False,
    )
    job_type = Column(
        SQLEnum(JobType, values_callable=_enum_values, native_enum=False, length=50),
        nullable=False,
    )
    status = Column(
        SQLEnum(JobStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=JobStatus.PENDING,
        nullable=False,
    )
    attempts = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)

    job_parameters = Column(JSONType, nullable=True)
    result_data = Column(JSONType, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=True, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    file = relationship("InvoiceAttachment", back_populates="processing_jobs")

    def __repr__(self) -> str:
        return f"<FileProcessingJob {self.id} type={self.job_type} status={self.status}>"

    def mark_completed(self, result_data: dict = None) -> None:
        """Mark job as completed."""
        self.status = JobStatus.COMPLETED
        self.completed_at = utcnow()
        self.result_data = result_data or {}
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """Mark job as failed."""
        self.status = JobStatus.FAILED
        self.error_message = error_message
        self.completed_at = utcnow()

    def can_retry(self, max_attempts: int = 3) -> bool:
        """Check if a failed job still has attempts left."""
        return self.status == JobStatus.FAILED and (self.attempts or 0) < max_attempts

    @property
    def duration(self) -> Optional[int]:
        """Processing duration in whole seconds."""
        if not self.started_at or not self.completed_at:
            return None
        return int((self.completed_at - self.started_at).total_seconds())

    @property
    def human_duration(self) -> str:
        duration = self.duration
        if duration is None:
            return "N/A"
        if duration < 60:
            return f"{duration}s"
        hours, remainder = divmod(duration, 3600)
        minutes, seconds = divmod(remainder, 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    # Query helpers

    @classmethod
    def pending(cls, query: Query) -> Query:
        return query.filter(cls.status == JobStatus.PENDING)

    @classmethod
    def retryable(cls, query: Query, max_attempts: int = 3) -> Query:
        return query.filter(cls.status == JobStatus.FAILED, cls.attempts < max_attempts)

    @classmethod
    def stuck(cls, query: Query, minutes: int = 30) -> Query:
        cutoff = utcnow() - timedelta(minutes=minutes)
        return query.filter(cls.status == JobStatus.PROCESSING, cls.started_at < cutoff)


class FileWatermark(Base):
    """Watermarked derivative of an invoice attachment."""

    __tablename__ = "file_watermarks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    original_file_id = Column(
        Integer,
        ForeignKey("invoice_attachments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    watermarked_path = Column(String(500), nullable=False)
    watermark_text = Column(String(255), nullable=False)
    watermark_type = Column(String(20), default="text", nullable=False)
    watermark_settings = Column(JSONType, nullable=True)
    file_size = Column(BigInteger, nullable=True)
    checksum = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    original_file = relationship("InvoiceAttachment", back_populates="watermarks")

    def __repr__(self) -> str:
        return f"<FileWatermark {self.id} original={self.original_file_id}>"

    @property
    def human_size(self) -> str:
        if not self.file_size:
            return "Unknown"
        return format_file_size(self.file_size)
