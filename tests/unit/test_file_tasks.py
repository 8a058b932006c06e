"""
Unit tests for the Celery attachment tasks.

Tasks are invoked through .run() so no broker is needed.
"""
import os
import time
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from celery.exceptions import Retry

from ddsportal.exceptions import TransformError
from ddsportal.models.file_processing import FileProcessingJob, JobStatus, JobType
from ddsportal.services.watermark_service import WatermarkService
from ddsportal.tasks import file_tasks


@pytest.fixture
def task_db(db_session, storage):
    with patch.object(file_tasks, "get_db_session", return_value=db_session):
        yield db_session


class TestProcessFileWatermark:
    def test_success(self, task_db, make_attachment):
        attachment = make_attachment(file_name="notes.txt", content=b"hello", mime_type="text/plain")

        result = file_tasks.process_file_watermark.run(attachment.id, {"text": "COPY"})

        assert result["status"] == "completed"
        assert result["watermark_text"] == "COPY"
        assert result["attempts"] == 1

    def test_retryable_failure_schedules_retry(self, task_db, make_attachment):
        attachment = make_attachment(file_name="notes.txt", content=b"hello", mime_type="text/plain")

        with patch.object(WatermarkService, "add_watermark", side_effect=TransformError("disk full")):
            with pytest.raises(Retry):
                file_tasks.process_file_watermark.run(attachment.id, {})

        job = task_db.query(FileProcessingJob).one()
        assert job.status == JobStatus.FAILED
        assert job.attempts == 1
        assert job.error_message == "disk full"

    def test_exhausted_retries_fail_permanently(self, task_db, make_attachment):
        attachment = make_attachment(file_name="notes.txt", content=b"hello", mime_type="text/plain")
        task = file_tasks.process_file_watermark

        task.push_request(retries=task.max_retries)
        try:
            with patch.object(WatermarkService, "add_watermark", side_effect=TransformError("disk full")):
                result = task.run(attachment.id, {})
        finally:
            task.pop_request()

        assert result["status"] == "failed"
        assert result["retryable"] is False
        assert result["error"] == "Job failed after 1 attempts: disk full"

    def test_missing_attachment_is_not_retried(self, task_db):
        result = file_tasks.process_file_watermark.run(999, {})

        assert result["status"] == "failed"
        assert result["error"] == "Job failed after 1 attempts: Attachment 999 not found"


class TestMaintenanceTasks:
    def test_cleanup_orphaned_attachments(self, task_db, storage):
        storage.write("invoices/3/attachments/orphan.pdf", b"x")
        old = time.time() - 3600
        os.utime(storage.path("invoices/3/attachments/orphan.pdf"), (old, old))

        result = file_tasks.cleanup_orphaned_attachments.run(dry_run=True, days=0)

        assert result["mode"] == "dry_run"
        assert result["orphan_files"] == ["invoices/3/attachments/orphan.pdf"]
        assert storage.exists("invoices/3/attachments/orphan.pdf")

    def test_fail_stuck_jobs(self, task_db):
        task_db.add(FileProcessingJob(
            file_id=1,
            job_type=JobType.WATERMARK,
            status=JobStatus.PROCESSING,
            attempts=1,
            started_at=datetime.utcnow() - timedelta(hours=2),
        ))
        task_db.commit()

        assert file_tasks.fail_stuck_jobs.run(minutes=30) == {"failed_jobs": 1}
