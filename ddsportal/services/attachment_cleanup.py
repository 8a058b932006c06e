"""
Orphaned attachment cleanup.

Reconciles files stored under invoices/{invoice_id}/attachments/ against
invoice_attachments rows and reclaims space held by files no row points at.
Matching is by exact stored path.
"""
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import structlog
from sqlalchemy.orm import Session

from ddsportal.config import get_settings
from ddsportal.exceptions import StorageError
from ddsportal.middleware.logging import log_performance
from ddsportal.models.attachment import InvoiceAttachment, format_file_size
from ddsportal.services.storage import Storage, get_storage

logger = structlog.get_logger(__name__)

SECONDS_PER_DAY = 60 * 60 * 24
INVOICES_ROOT = "invoices"
ATTACHMENTS_DIR = "attachments"
# ASCII digits only
INVOICE_ID = re.compile(r"[0-9]+")


@dataclass
class CleanupSummary:
    """Result of one sweep."""
    dry_run: bool
    threshold_days: int
    scanned: int = 0
    orphaned: int = 0
    deleted: int = 0
    bytes_reclaimed: int = 0
    orphan_files: List[str] = field(default_factory=list)
    removed_directories: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def would_delete(self) -> int:
        return self.orphaned if self.dry_run else 0

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "mode": "dry_run" if self.dry_run else "delete",
            "threshold_days": self.threshold_days,
            "scanned": self.scanned,
            "orphaned": self.orphaned,
            "orphan_files": list(self.orphan_files),
            "removed_directories": list(self.removed_directories),
            "errors": list(self.errors),
        }
        if self.dry_run:
            data["would_delete"] = self.would_delete
            data["reclaimable_bytes"] = self.bytes_reclaimed
        else:
            data["deleted"] = self.deleted
            data["freed_bytes"] = self.bytes_reclaimed
        return data

    def lines(self) -> List[str]:
        """Human readable summary."""
        output = [
            "=== Cleanup Summary ===",
            f"Total files scanned: {self.scanned}",
            f"Orphaned files found: {self.orphaned}",
        ]
        if self.dry_run:
            output.append(f"Files that would be deleted: {self.would_delete}")
            output.append(f"Space that would be freed: {format_file_size(self.bytes_reclaimed)}")
        else:
            output.append(f"Files deleted: {self.deleted}")
            output.append(f"Space freed: {format_file_size(self.bytes_reclaimed)}")
        if self.errors:
            output.append(f"Errors: {len(self.errors)}")
        return output


class AttachmentCleanupService:
    """Finds and removes attachment files that have no database record."""

    def __init__(self, db: Session, storage: Optional[Storage] = None):
        self.db = db
        self.storage = storage or get_storage()

    @log_performance("attachments_cleanup")
    def run(self, dry_run: bool = False, days: Optional[int] = None) -> CleanupSummary:
        """
        Sweep the attachment tree.

        Args:
            dry_run: Report orphans without deleting anything
            days: Only consider files at least this many days old

        Returns:
            CleanupSummary with counts, reclaimed bytes and per-file errors
        """
        if days is None:
            days = get_settings().orphaned_file_cleanup_days

        summary = CleanupSummary(dry_run=dry_run, threshold_days=days)
        now = time.time()

        logger.info("attachments_cleanup_started", dry_run=dry_run, days=days)

        for invoice_dir in self.storage.list_directories(INVOICES_ROOT):
            if not INVOICE_ID.fullmatch(invoice_dir.rsplit("/", 1)[-1]):
                continue

            attachment_dir = f"{invoice_dir}/{ATTACHMENTS_DIR}"
            if not self.storage.exists(attachment_dir):
                continue

            self._sweep_directory(attachment_dir, summary, days, now)

            if not dry_run:
                self._prune_empty(attachment_dir, invoice_dir, summary)

        logger.info("attachments_cleanup_completed", **summary.to_dict())
        return summary

    def _sweep_directory(self, attachment_dir: str, summary: CleanupSummary, days: int, now: float) -> None:
        try:
            files = self.storage.list_files(attachment_dir)
        except StorageError as e:
            self._record_error(summary, attachment_dir, e)
            return

        candidates = []
        for file_path in files:
            summary.scanned += 1
            try:
                age_days = (now - self.storage.last_modified(file_path)) / SECONDS_PER_DAY
            except StorageError as e:
                self._record_error(summary, file_path, e)
                continue
            if age_days >= days:
                candidates.append(file_path)

        if not candidates:
            return

        known = self._recorded_paths(candidates)
        for file_path in candidates:
            if file_path in known:
                continue
            self._handle_orphan(file_path, summary)

    def _recorded_paths(self, paths: List[str]) -> Set[str]:
        rows = (
            self.db.query(InvoiceAttachment.file_path)
            .filter(InvoiceAttachment.file_path.in_(paths))
            .all()
        )
        return {row.file_path for row in rows}

    def _handle_orphan(self, file_path: str, summary: CleanupSummary) -> None:
        summary.orphaned += 1
        summary.orphan_files.append(file_path)

        try:
            size = self.storage.size(file_path)
        except StorageError as e:
            self._record_error(summary, file_path, e)
            return

        logger.warning("orphaned_file_found", path=file_path, size=format_file_size(size))

        if summary.dry_run:
            summary.bytes_reclaimed += size
            return

        try:
            self.storage.delete(file_path)
        except StorageError as e:
            self._record_error(summary, file_path, e)
            return

        summary.deleted += 1
        summary.bytes_reclaimed += size
        logger.info("orphaned_file_deleted", path=file_path)

    def _prune_empty(self, attachment_dir: str, invoice_dir: str, summary: CleanupSummary) -> None:
        try:
            if not self.storage.exists(attachment_dir) or self.storage.all_files(attachment_dir):
                return
            if not self.storage.delete_directory(attachment_dir):
                return
            summary.removed_directories.append(attachment_dir)
            logger.info("empty_directory_removed", path=attachment_dir)

            if not self.storage.all_files(invoice_dir) and self.storage.delete_directory(invoice_dir):
                summary.removed_directories.append(invoice_dir)
                logger.info("empty_directory_removed", path=invoice_dir)
        except StorageError as e:
            self._record_error(summary, attachment_dir, e)

    @staticmethod
    def _record_error(summary: CleanupSummary, path: str, error: StorageError) -> None:
        summary.errors.append({"path": path, "error": error.message})
        logger.error("attachments_cleanup_error", path=path, error=error.message)
