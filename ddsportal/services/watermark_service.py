"""
Watermark Service.

Produces stamped derivatives of attachment files. Images are stamped with
Pillow, PDFs with PyMuPDF, and any other file type is copied unchanged. The
source file is never modified; every call writes a new derivative under
watermarked/.
"""
import io
import mimetypes
import uuid
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, Dict, Optional, Tuple

import pymupdf
import structlog
from PIL import Image, ImageColor, ImageDraw, ImageFont, UnidentifiedImageError
from sqlalchemy.orm import Session

from ddsportal.config import get_settings
from ddsportal.exceptions import NotFoundError, TransformError, ValidationError
from ddsportal.models.attachment import IMAGE_MIME_TYPES, PDF_MIME_TYPE, InvoiceAttachment
from ddsportal.models.file_processing import FileWatermark
from ddsportal.models.user import User
from ddsportal.services.storage import Storage, get_storage

logger = structlog.get_logger(__name__)

WATERMARK_ROOT = "watermarked"
APP_LABEL = "DDS Portal"
POSITIONS = ("center", "top-left", "top-right", "bottom-left", "bottom-right")
MAX_TEXT_LENGTH = 255
MARGIN = 20


class WatermarkService:
    """Service for creating and managing watermarked file derivatives."""

    def __init__(self, db: Session, storage: Optional[Storage] = None):
        self.db = db
        self.storage = storage or get_storage()
        self.settings = get_settings()

    # ==================== Text ====================

    def generate_default_watermark(self, user_id: Optional[int] = None) -> str:
        """Generic watermark used when no text is supplied."""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        if user_id:
            return f"{APP_LABEL} - User {user_id} - {timestamp}"
        return f"{APP_LABEL} - {timestamp}"

    def generate_custom_watermark(
        self,
        user_id: Optional[int],
        context: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Watermark text identifying the uploader.

        Args:
            user_id: Uploading user
            context: Extra context appended to the text (e.g. "Invoice #42")
            now: Timestamp to print (defaults to the current time)

        Returns:
            Text such as "DDS Portal - Jane Doe (Finance) - 05/03/2026 14:30 - Invoice #42"
        """
        user = self.db.get(User, user_id) if user_id else None
        user_name = user.name if user else f"User {user_id}"
        department = user.department.name if user and user.department else "Unknown Dept"
        timestamp = (now or datetime.now()).strftime("%d/%m/%Y %H:%M")

        text = f"{APP_LABEL} - {user_name} ({department}) - {timestamp}"
        if context:
            text += f" - {context}"
        return text[:MAX_TEXT_LENGTH]

    # ==================== Transform ====================

    def add_watermark(
        self,
        file_path: str,
        watermark_text: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
        mime_type: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> str:
        """
        Write a watermarked copy of a stored file.

        Args:
            file_path: Storage path of the source file
            watermark_text: Text to stamp (default text if omitted)
            options: position, opacity, font_size, color
            mime_type: Source MIME type (guessed from the name if omitted)
            namespace: Sub-directory under watermarked/ (usually the attachment id)

        Returns:
            Storage path of the derivative

        Raises:
            NotFoundError: Source file does not exist
            ValidationError: Invalid options
            TransformError: Source could not be decoded or re-encoded
        """
        if not self.storage.exists(file_path):
            raise NotFoundError(f"File not found: {file_path}", details={"file_path": file_path})

        style = self._resolve_style(options or {})
        watermark_text = watermark_text or self.generate_default_watermark()
        mime_type = mime_type or mimetypes.guess_type(file_path)[0] or "application/octet-stream"
        target = self._derivative_path(file_path, namespace)

        if mime_type in IMAGE_MIME_TYPES:
            content = self._stamp_image(self.storage.read(file_path), watermark_text, style)
            self.storage.write(target, content)
        elif mime_type == PDF_MIME_TYPE:
            content = self._stamp_pdf(self.storage.read(file_path), watermark_text, style)
            self.storage.write(target, content)
        else:
            self.storage.copy(file_path, target)

        logger.info("watermark_applied", source=file_path, target=target, mime_type=mime_type)
        return target

    def _resolve_style(self, options: Dict[str, Any]) -> Dict[str, Any]:
        options = {key: value for key, value in options.items() if value is not None}
        position = options.get("position", "center")
        if position not in POSITIONS:
            raise ValidationError.invalid_choice("position", position, POSITIONS)

        try:
            opacity = float(options.get("opacity", self.settings.watermark_opacity))
            font_size = int(options.get("font_size", self.settings.watermark_font_size))
        except (TypeError, ValueError) as e:
            raise ValidationError(
                "Invalid watermark options",
                errors=[{"field": "options", "message": str(e)}],
            ) from e
        if not 0.0 <= opacity <= 1.0:
            raise ValidationError(
                "Invalid opacity. Must be between 0 and 1",
                errors=[{"field": "opacity", "message": "Must be between 0 and 1"}],
            )
        if font_size < 1:
            raise ValidationError(
                "Invalid font_size. Must be positive",
                errors=[{"field": "font_size", "message": "Must be positive"}],
            )

        try:
            color = ImageColor.getrgb(options.get("color", "#808080"))[:3]
        except ValueError as e:
            raise ValidationError(
                "Invalid watermark color",
                errors=[{"field": "color", "message": str(e)}],
            ) from e

        return {"position": position, "opacity": opacity, "font_size": font_size, "color": color}

    @staticmethod
    def _anchor(position: str, canvas: Tuple[float, float], box: Tuple[float, float]) -> Tuple[float, float]:
        width, height = canvas
        box_w, box_h = box
        if position == "top-left":
            return MARGIN, MARGIN
        if position == "top-right":
            return max(width - box_w - MARGIN, 0), MARGIN
        if position == "bottom-left":
            return MARGIN, max(height - box_h - MARGIN, 0)
        if position == "bottom-right":
            return max(width - box_w - MARGIN, 0), max(height - box_h - MARGIN, 0)
        return max((width - box_w) / 2, 0), max((height - box_h) / 2, 0)

    def _stamp_image(self, content: bytes, text: str, style: Dict[str, Any]) -> bytes:
        try:
            with Image.open(io.BytesIO(content)) as source:
                image_format = source.format or "PNG"
                base = source.convert("RGBA")
        except (UnidentifiedImageError, OSError) as e:
            raise TransformError(f"Cannot read image: {e}") from e

        overlay = Image.new("RGBA", base.size, (255, 255, 255, 0))
        draw = ImageDraw.Draw(overlay)
        font = ImageFont.load_default(size=style["font_size"])
        left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
        x, y = self._anchor(style["position"], base.size, (right - left, bottom - top))
        alpha = int(255 * style["opacity"])
        draw.text((x, y), text, font=font, fill=(*style["color"], alpha))

        stamped = Image.alpha_composite(base, overlay)
        if image_format in ("JPEG", "GIF"):
            stamped = stamped.convert("RGB")

        output = io.BytesIO()
        try:
            stamped.save(output, format=image_format)
        except (OSError, ValueError) as e:
            raise TransformError(f"Cannot encode image: {e}") from e
        return output.getvalue()

    def _stamp_pdf(self, content: bytes, text: str, style: Dict[str, Any]) -> bytes:
        color = tuple(channel / 255 for channel in style["color"])
        font_size = style["font_size"]
        try:
            with pymupdf.open(stream=content, filetype="pdf") as doc:
                for page in doc:
                    text_width = pymupdf.get_text_length(text, fontname="helv", fontsize=font_size)
                    x, y = self._anchor(
                        style["position"],
                        (page.rect.width, page.rect.height),
                        (text_width, font_size),
                    )
                    # insert_text positions the baseline, not the top edge
                    page.insert_text(
                        pymupdf.Point(x, y + font_size),
                        text,
                        fontsize=font_size,
                        fontname="helv",
                        color=color,
                        fill=color,
                        fill_opacity=style["opacity"],
                        stroke_opacity=style["opacity"],
                        overlay=True,
                    )
                return doc.tobytes()
        except (RuntimeError, ValueError) as e:
            raise TransformError(f"Cannot watermark PDF: {e}") from e

    @staticmethod
    def _derivative_path(file_path: str, namespace: Optional[str]) -> str:
        source = PurePosixPath(file_path)
        token = uuid.uuid4().hex[:12]
        folder = f"{WATERMARK_ROOT}/{namespace}" if namespace else WATERMARK_ROOT
        return f"{folder}/{source.stem}_watermarked_{token}{source.suffix}"

    # ==================== Records ====================

    def create_watermark_record(
        self,
        original_file_id: int,
        watermarked_path: str,
        watermark_text: str,
        settings: Optional[Dict[str, Any]] = None,
    ) -> FileWatermark:
        """Persist a FileWatermark row for a derivative (flushed, not committed)."""
        watermark = FileWatermark(
            original_file_id=original_file_id,
            watermarked_path=watermarked_path,
            watermark_text=watermark_text[:MAX_TEXT_LENGTH],
            watermark_type="text",
            watermark_settings=settings or {},
            file_size=self.storage.size(watermarked_path),
            checksum=self.storage.checksum(watermarked_path),
        )
        self.db.add(watermark)
        self.db.flush()
        return watermark

    def has_watermark(self, file_id: int) -> bool:
        return (
            self.db.query(FileWatermark.id)
            .filter(FileWatermark.original_file_id == file_id)
            .first()
            is not None
        )

    def get_watermarked_path(self, original_path: str) -> Optional[str]:
        """Most recent derivative path for an attachment's stored path."""
        watermark = (
            self.db.query(FileWatermark)
            .join(InvoiceAttachment, FileWatermark.original_file_id == InvoiceAttachment.id)
            .filter(InvoiceAttachment.file_path == original_path)
            .order_by(FileWatermark.id.desc())
            .first()
        )
        return watermark.watermarked_path if watermark else None

    def remove_watermarks(self, file_id: int) -> int:
        """Delete every derivative of an attachment, files first. Returns rows removed."""
        watermarks = (
            self.db.query(FileWatermark)
            .filter(FileWatermark.original_file_id == file_id)
            .all()
        )
        for watermark in watermarks:
            self.storage.delete(watermark.watermarked_path)
            self.db.delete(watermark)
        self.db.commit()

        logger.info("watermarks_removed", file_id=file_id, count=len(watermarks))
        return len(watermarks)
