"""
Pydantic schemas for attachment processing endpoints.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Position = Literal["center", "top-left", "top-right", "bottom-left", "bottom-right"]


class WatermarkRequest(BaseModel):
    """Options for a watermark job. Everything is optional."""

    model_config = ConfigDict(extra="forbid")

    text: Optional[str] = Field(None, min_length=1, max_length=255, description="Overrides the generated text")
    position: Optional[Position] = None
    opacity: Optional[float] = Field(None, ge=0, le=1)
    font_size: Optional[int] = Field(None, ge=6, le=200)
    color: Optional[str] = Field(None, description="Hex code or color name")

    def to_options(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class JobResponse(BaseModel):
    """Processing job as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    file_id: int
    job_type: str
    status: str
    attempts: int
    error_message: Optional[str] = None
    job_parameters: Optional[Dict[str, Any]] = None
    result_data: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobStatusEntry(BaseModel):
    id: int
    type: str
    status: str
    attempts: int
    error: Optional[str] = None
    duration: str
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ProcessingStatusResponse(BaseModel):
    """All jobs recorded for an attachment plus the overall status."""

    attachment_id: int
    overall_status: str
    jobs: List[JobStatusEntry]


class WatermarkResponse(BaseModel):
    """A stored watermarked derivative."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    original_file_id: int
    watermarked_path: str
    watermark_text: str
    watermark_type: str
    watermark_settings: Optional[Dict[str, Any]] = None
    file_size: Optional[int] = None
    human_size: str
    checksum: Optional[str] = None
    created_at: Optional[datetime] = None


class WatermarkListResponse(BaseModel):
    attachment_id: int
    watermarks: List[WatermarkResponse]
    total: int


class WatermarkRemovalResponse(BaseModel):
    attachment_id: int
    removed: int
    message: str = "Watermark removed successfully"


class JobListResponse(BaseModel):
    """One page of processing jobs, newest first."""

    jobs: List[JobResponse]
    total: int
    page: int
    per_page: int


class JobCounts(BaseModel):
    pending: int
    processing: int
    completed: int
    failed: int
    retryable: int = Field(..., description="Failed jobs with attempts left")


class FileTypeCount(BaseModel):
    mime_type: Optional[str] = None
    count: int


class StatisticsResponse(BaseModel):
    """Attachment and processing job totals."""

    total_files: int
    total_size: int
    total_size_formatted: str
    watermarked_files: int
    processing_jobs: JobCounts
    file_types: List[FileTypeCount]
