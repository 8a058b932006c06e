"""
Attachment processing API routes.

Queue watermark jobs, report on jobs and derivatives per attachment, and
remove derivatives.
"""
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ddsportal.database import get_db
from ddsportal.exceptions import AttachmentNotFoundError, WatermarkNotFoundError
from ddsportal.models.attachment import InvoiceAttachment
from ddsportal.models.file_processing import FileProcessingJob, FileWatermark
from ddsportal.schemas.attachments import (
    JobResponse,
    ProcessingStatusResponse,
    WatermarkListResponse,
    WatermarkRemovalResponse,
    WatermarkRequest,
    WatermarkResponse,
)
from ddsportal.services.file_processing_service import FileProcessingService
from ddsportal.services.watermark_service import WatermarkService

logger = structlog.get_logger(__name__)

router = APIRouter()


def job_response(job: FileProcessingJob) -> JobResponse:
    return JobResponse(
        id=job.id,
        file_id=job.file_id,
        job_type=job.job_type.value,
        status=job.status.value,
        attempts=job.attempts,
        error_message=job.error_message,
        job_parameters=job.job_parameters,
        result_data=job.result_data,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )


def _get_attachment(db: Session, attachment_id: int) -> InvoiceAttachment:
    attachment = db.get(InvoiceAttachment, attachment_id)
    if attachment is None:
        raise AttachmentNotFoundError(attachment_id)
    return attachment


@router.post(
    "/{attachment_id}/watermark",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue watermarking",
    description="Create (or reuse) the active watermark job for an attachment and queue it.",
)
async def queue_watermark(
    attachment_id: int,
    request: Optional[WatermarkRequest] = None,
    db: Session = Depends(get_db),
) -> JobResponse:
    options = request.to_options() if request else {}
    job = FileProcessingService(db).queue_watermarking(attachment_id, options)
    db.refresh(job)
    return job_response(job)


@router.get(
    "/{attachment_id}/processing-status",
    response_model=ProcessingStatusResponse,
    summary="Get processing status",
)
async def get_processing_status(
    attachment_id: int,
    db: Session = Depends(get_db),
) -> ProcessingStatusResponse:
    _get_attachment(db, attachment_id)
    return ProcessingStatusResponse(**FileProcessingService(db).get_processing_status(attachment_id))


@router.get(
    "/{attachment_id}/watermarks",
    response_model=WatermarkListResponse,
    summary="List watermarked derivatives",
)
async def list_watermarks(
    attachment_id: int,
    db: Session = Depends(get_db),
) -> WatermarkListResponse:
    _get_attachment(db, attachment_id)
    watermarks = (
        db.query(FileWatermark)
        .filter(FileWatermark.original_file_id == attachment_id)
        .order_by(FileWatermark.created_at.desc(), FileWatermark.id.desc())
        .all()
    )
    return WatermarkListResponse(
        attachment_id=attachment_id,
        watermarks=[WatermarkResponse.model_validate(w) for w in watermarks],
        total=len(watermarks),
    )


@router.get(
    "/{attachment_id}/watermark",
    response_model=WatermarkResponse,
    summary="Get watermark details",
    description="The most recent watermarked derivative of an attachment.",
)
async def get_watermark(
    attachment_id: int,
    db: Session = Depends(get_db),
) -> WatermarkResponse:
    _get_attachment(db, attachment_id)
    watermark = (
        db.query(FileWatermark)
        .filter(FileWatermark.original_file_id == attachment_id)
        .order_by(FileWatermark.id.desc())
        .first()
    )
    if watermark is None:
        raise WatermarkNotFoundError(attachment_id)
    return WatermarkResponse.model_validate(watermark)


@router.delete(
    "/{attachment_id}/watermark",
    response_model=WatermarkRemovalResponse,
    summary="Remove watermarks",
    description="Delete every watermarked derivative of an attachment, files and records.",
)
async def remove_watermark(
    attachment_id: int,
    db: Session = Depends(get_db),
) -> WatermarkRemovalResponse:
    _get_attachment(db, attachment_id)
    service = WatermarkService(db)
    if not service.has_watermark(attachment_id):
        raise WatermarkNotFoundError(attachment_id)

    removed = service.remove_watermarks(attachment_id)
    logger.info("watermark_removed_via_api", attachment_id=attachment_id, removed=removed)
    return WatermarkRemovalResponse(attachment_id=attachment_id, removed=removed)
