"""
Invoice attachment model.

Each attachment row maps 1:1 to a stored file under
invoices/{invoice_id}/attachments/.
"""
import os

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ddsportal.database import Base

IMAGE_MIME_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif")
PDF_MIME_TYPE = "application/pdf"


def format_file_size(size: int) -> str:
    """Format a byte count as a human readable string (e.g. '1.5 MB')."""
    units = ["B", "KB", "MB", "GB"]
    value = float(size or 0)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


def attachment_directory(invoice_id: int) -> str:
    """Storage directory holding an invoice's attachments."""
    return f"invoices/{invoice_id}/attachments"


class InvoiceAttachment(Base):
    """File attached to an invoice."""

    __tablename__ = "invoice_attachments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(Integer, nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    file_path = Column(String(500), unique=True, nullable=False, index=True)
    file_size = Column(BigInteger, nullable=True)
    mime_type = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    uploaded_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    uploader = relationship("User")
    watermarks = relationship(
        "FileWatermark",
        back_populates="original_file",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    processing_jobs = relationship(
        "FileProcessingJob",
        back_populates="file",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<InvoiceAttachment {self.id} invoice={self.invoice_id} path={self.file_path}>"

    @property
    def formatted_file_size(self) -> str:
        return format_file_size(self.file_size or 0)

    @property
    def is_image(self) -> bool:
        return self.mime_type in IMAGE_MIME_TYPES

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == PDF_MIME_TYPE

    @property
    def extension(self) -> str:
        return os.path.splitext(self.file_name or "")[1].lstrip(".").lower()
