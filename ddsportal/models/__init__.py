"""Models package."""
from ddsportal.models.user import Department, User
from ddsportal.models.preferences import UserPreferences
from ddsportal.models.attachment import InvoiceAttachment
from ddsportal.models.file_processing import (
    FileProcessingJob,
    FileWatermark,
    JobStatus,
    JobType,
)

__all__ = [
    "Department", "User",
    "UserPreferences",
    "InvoiceAttachment",
    "FileProcessingJob", "FileWatermark", "JobStatus", "JobType",
]
