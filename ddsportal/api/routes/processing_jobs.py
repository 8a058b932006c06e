"""
Processing job administration routes.

List jobs across attachments, retry failed watermark jobs and report
attachment and job totals.
"""
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ddsportal.api.routes.attachments import job_response
from ddsportal.config import get_settings
from ddsportal.database import get_db
from ddsportal.models.file_processing import JobStatus, JobType
from ddsportal.schemas.attachments import JobListResponse, JobResponse, StatisticsResponse
from ddsportal.services.file_processing_service import FileProcessingService

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "",
    response_model=JobListResponse,
    summary="List processing jobs",
    description="Newest first. Filter by status, job type or attachment.",
)
async def list_processing_jobs(
    status_filter: Optional[JobStatus] = Query(None, alias="status"),
    job_type: Optional[JobType] = None,
    file_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(15, ge=1, le=100),
    db: Session = Depends(get_db),
) -> JobListResponse:
    jobs, total = FileProcessingService(db).list_jobs(
        status=status_filter,
        job_type=job_type,
        file_id=file_id,
        page=page,
        per_page=per_page,
    )
    return JobListResponse(
        jobs=[job_response(job) for job in jobs],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get(
    "/statistics",
    response_model=StatisticsResponse,
    summary="Get file statistics",
)
async def get_statistics(db: Session = Depends(get_db)) -> StatisticsResponse:
    max_attempts = get_settings().watermark_max_attempts
    return StatisticsResponse(**FileProcessingService(db).get_statistics(max_attempts))


@router.post(
    "/{job_id}/retry",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Retry a failed job",
    description="Requeue a failed watermark job that still has attempts left; 409 otherwise.",
)
async def retry_processing_job(
    job_id: int,
    db: Session = Depends(get_db),
) -> JobResponse:
    job = FileProcessingService(db).retry_job(job_id, get_settings().watermark_max_attempts)
    db.refresh(job)
    return job_response(job)
