"""
Custom exceptions for DDS Portal.

Provides a hierarchy of exceptions with error codes for consistent error handling.
"""
from typing import Optional, Dict, Any, Iterable


class DDSError(Exception):
    """
    Base exception for all DDS Portal errors.

    Attributes:
        error_code: Unique error code (e.g., DDS-001)
        message: Human-readable error message
        details: Additional error context
    """
    error_code: str = "DDS-000"
    http_status: int = 500
    retryable: bool = True

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Validation Errors (DDS-1XX)
class ValidationError(DDSError):
    """Input validation failed."""
    error_code = "DDS-100"
    http_status = 400
    retryable = False

    def __init__(self, message: str = "Validation failed", errors: list = None, **kwargs):
        details = kwargs.pop("details", {})
        details["errors"] = errors or []
        super().__init__(message, details=details, **kwargs)

    @classmethod
    def invalid_choice(cls, field: str, value: Any, allowed: Iterable[str]) -> "ValidationError":
        """Build the error raised when a value falls outside a fixed set."""
        allowed = list(allowed)
        message = f"Invalid {field}. Must be one of: {', '.join(allowed)}"
        return cls(
            message,
            errors=[{"field": field, "message": message, "value": value}],
            details={"allowed": allowed},
        )


# Not Found Errors (DDS-2XX)
class NotFoundError(DDSError):
    """Referenced record or file does not exist."""
    error_code = "DDS-200"
    http_status = 404
    retryable = False

    def __init__(self, message: str = "Resource not found", **kwargs):
        super().__init__(message, **kwargs)


class AttachmentNotFoundError(NotFoundError):
    """Invoice attachment not found in database."""
    error_code = "DDS-201"

    def __init__(self, attachment_id: int, **kwargs):
        message = f"Attachment {attachment_id} not found"
        super().__init__(message, details={"attachment_id": attachment_id}, **kwargs)


class JobNotFoundError(NotFoundError):
    """File processing job not found."""
    error_code = "DDS-202"

    def __init__(self, job_id: int, **kwargs):
        message = f"Processing job {job_id} not found"
        super().__init__(message, details={"job_id": job_id}, **kwargs)


class WatermarkNotFoundError(NotFoundError):
    """Attachment has no watermarked derivative."""
    error_code = "DDS-203"

    def __init__(self, attachment_id: int, **kwargs):
        message = f"No watermark found for attachment {attachment_id}"
        super().__init__(message, details={"attachment_id": attachment_id}, **kwargs)


# Transform Errors (DDS-3XX)
class TransformError(DDSError):
    """Watermarking transform failed (corrupt source, unsupported format)."""
    error_code = "DDS-300"
    http_status = 422

    def __init__(self, message: str = "Failed to watermark file", **kwargs):
        super().__init__(message, **kwargs)


# Storage Errors (DDS-4XX)
class StorageError(DDSError):
    """File storage operation failed."""
    error_code = "DDS-400"
    http_status = 500

    def __init__(self, message: str = "Storage operation failed", path: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if path is not None:
            details["path"] = path
        super().__init__(message, details=details, **kwargs)


# Concurrency Errors (DDS-5XX)
class ConcurrencyConflictError(DDSError):
    """A concurrent writer won a race that could not be resolved by reuse."""
    error_code = "DDS-500"
    http_status = 409

    def __init__(self, message: str = "Concurrent modification detected", **kwargs):
        super().__init__(message, **kwargs)


# Cache Errors (DDS-6XX)
class CacheError(DDSError):
    """Cache invalidation failed; the cached value may be stale."""
    error_code = "DDS-600"
    http_status = 503

    def __init__(self, message: str = "Cache operation failed", **kwargs):
        super().__init__(message, **kwargs)


# Database Errors (DDS-8XX)
class DatabaseError(DDSError):
    """Database operation failed."""
    error_code = "DDS-800"
    http_status = 500

    def __init__(self, message: str = "Database operation failed", **kwargs):
        super().__init__(message, **kwargs)
