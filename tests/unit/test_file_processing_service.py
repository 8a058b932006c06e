"""
Unit tests for FileProcessingService.
"""
import threading
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ddsportal.database import Base
from ddsportal.exceptions import AttachmentNotFoundError, ConcurrencyConflictError, JobNotFoundError, ValidationError
from ddsportal.models.file_processing import FileProcessingJob, FileWatermark, JobStatus, JobType
from ddsportal.services.file_processing_service import FileProcessingService


@pytest.fixture
def service(db_session) -> FileProcessingService:
    return FileProcessingService(db_session)


class TestJobCreation:
    """Tests for idempotent job creation and claiming."""

    def test_find_or_create_is_idempotent(self, service, db_session):
        first, created = service.find_or_create_job(1, JobType.WATERMARK, {"position": "center"})
        second, created_again = service.find_or_create_job(1, JobType.WATERMARK)

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert first.job_parameters == {"position": "center"}
        assert first.status == JobStatus.PENDING
        assert first.attempts == 0
        assert db_session.query(FileProcessingJob).count() == 1

    def test_job_types_are_independent(self, service, db_session):
        service.find_or_create_job(1, JobType.WATERMARK)
        service.find_or_create_job(1, JobType.THUMBNAIL)

        assert db_session.query(FileProcessingJob).count() == 2

    def test_finished_job_allows_new_one(self, service, db_session):
        job, _ = service.find_or_create_job(1, JobType.WATERMARK)
        job.status = JobStatus.COMPLETED
        db_session.commit()

        new_job, created = service.find_or_create_job(1, JobType.WATERMARK)

        assert created is True
        assert new_job.id != job.id

    def test_claim_is_compare_and_set(self, service, db_session):
        job, _ = service.find_or_create_job(1, JobType.WATERMARK)

        assert service.claim_job(job.id) is True
        assert service.claim_job(job.id) is False

        db_session.refresh(job)
        assert job.status == JobStatus.PROCESSING
        assert job.attempts == 1
        assert job.started_at is not None

    def test_failed_job_can_be_reclaimed(self, service, db_session):
        job, _ = service.find_or_create_job(1, JobType.WATERMARK)
        service.claim_job(job.id)
        db_session.refresh(job)
        job.mark_failed("boom")
        db_session.commit()

        assert service.claim_job(job.id) is True
        db_session.refresh(job)
        assert job.attempts == 2

    def test_failed_job_blocked_by_newer_active_job(self, service, db_session):
        old, _ = service.find_or_create_job(1, JobType.WATERMARK)
        old.status = JobStatus.FAILED
        db_session.commit()
        service.find_or_create_job(1, JobType.WATERMARK)

        assert service.claim_job(old.id) is False

    def test_get_job_missing(self, service):
        with pytest.raises(JobNotFoundError):
            service.get_job(404)

    def test_vanished_active_job_is_recreated(self, service, db_session):
        real_active_job = FileProcessingService._active_job
        reads = []

        def vanish_once(self, file_id, job_type):
            reads.append(file_id)
            return None if len(reads) == 1 else real_active_job(self, file_id, job_type)

        with patch.object(FileProcessingService, "_active_job", vanish_once):
            job, _ = service.find_or_create_job(1, JobType.WATERMARK)

        assert len(reads) == 2
        assert job.status == JobStatus.PENDING
        assert db_session.query(FileProcessingJob).count() == 1

    def test_active_job_that_keeps_vanishing_conflicts(self, service):
        with patch.object(FileProcessingService, "_active_job", return_value=None):
            with pytest.raises(ConcurrencyConflictError):
                service.find_or_create_job(1, JobType.WATERMARK)


class TestStuckJobs:
    def test_fail_stuck_jobs(self, service, db_session):
        stale = FileProcessingJob(
            file_id=1,
            job_type=JobType.WATERMARK,
            status=JobStatus.PROCESSING,
            attempts=1,
            started_at=datetime.utcnow() - timedelta(hours=1),
        )
        fresh = FileProcessingJob(
            file_id=2,
            job_type=JobType.WATERMARK,
            status=JobStatus.PROCESSING,
            attempts=1,
            started_at=datetime.utcnow(),
        )
        db_session.add_all([stale, fresh])
        db_session.commit()

        assert service.fail_stuck_jobs(minutes=30) == 1

        db_session.refresh(stale)
        db_session.refresh(fresh)
        assert stale.status == JobStatus.FAILED
        assert stale.error_message == "Processing timed out after 30 minutes"
        assert fresh.status == JobStatus.PROCESSING


class TestQueueWatermarking:
    """Tests for handing watermark jobs to the worker."""

    def test_queues_new_job(self, service, make_attachment):
        attachment = make_attachment()

        with patch("ddsportal.tasks.file_tasks.process_file_watermark.delay") as delay:
            job = service.queue_watermarking(attachment.id, {"opacity": 0.5})

        delay.assert_called_once_with(attachment.id, {"opacity": 0.5}, job.id)
        assert job.status == JobStatus.PENDING
        assert job.job_type == JobType.WATERMARK

    def test_existing_job_is_not_dispatched_again(self, service, make_attachment, db_session):
        attachment = make_attachment()

        with patch("ddsportal.tasks.file_tasks.process_file_watermark.delay") as delay:
            first = service.queue_watermarking(attachment.id)
            second = service.queue_watermarking(attachment.id)

        assert first.id == second.id
        assert delay.call_count == 1
        assert db_session.query(FileProcessingJob).count() == 1

    def test_dispatch_failure_leaves_job_pending(self, service, make_attachment):
        attachment = make_attachment()

        with patch(
            "ddsportal.tasks.file_tasks.process_file_watermark.delay",
            side_effect=ConnectionError("broker down"),
        ):
            job = service.queue_watermarking(attachment.id)

        assert job.status == JobStatus.PENDING
        assert job.error_message == "Failed to queue: broker down"

    def test_missing_attachment(self, service, db_session):
        with pytest.raises(AttachmentNotFoundError):
            service.queue_watermarking(999)

        assert db_session.query(FileProcessingJob).count() == 0


class TestWatermarkQueue:
    """Tests for running pending jobs in-process."""

    def test_processes_pending_jobs(self, service, make_attachment, storage, db_session):
        good = make_attachment(file_name="a.txt", content=b"a", mime_type="text/plain")
        bad = make_attachment(file_name="b.png", content=b"not an image", mime_type="image/png")
        service.find_or_create_job(good.id, JobType.WATERMARK, {"text": "copy"})
        service.find_or_create_job(bad.id, JobType.WATERMARK)
        service.find_or_create_job(good.id, JobType.THUMBNAIL)

        counts = service.process_watermarking_queue(limit=10)

        assert counts == {"processed": 2, "completed": 1, "failed": 1, "skipped": 0}
        assert db_session.query(FileWatermark).count() == 1
        thumbnail = db_session.query(FileProcessingJob).filter_by(job_type=JobType.THUMBNAIL).one()
        assert thumbnail.status == JobStatus.PENDING

    def test_respects_limit(self, service, make_attachment, storage):
        for index in range(3):
            attachment = make_attachment(file_name=f"{index}.txt", content=b"x", mime_type="text/plain")
            service.find_or_create_job(attachment.id, JobType.WATERMARK)

        assert service.process_watermarking_queue(limit=2)["processed"] == 2
        assert service.process_watermarking_queue(limit=2)["processed"] == 1

    def test_empty_queue(self, service, storage):
        assert service.process_watermarking_queue() == {"processed": 0, "completed": 0, "failed": 0, "skipped": 0}


class TestProcessingStatus:
    """Tests for the overall status roll-up."""

    def _add(self, db_session, job_type, status):
        db_session.add(FileProcessingJob(file_id=1, job_type=job_type, status=status, attempts=1))
        db_session.commit()

    def test_no_jobs_is_pending(self, service):
        status = service.get_processing_status(1)

        assert status["overall_status"] == "pending"
        assert status["jobs"] == []

    def test_failed_wins(self, service, db_session):
        self._add(db_session, JobType.WATERMARK, JobStatus.COMPLETED)
        self._add(db_session, JobType.THUMBNAIL, JobStatus.PROCESSING)
        self._add(db_session, JobType.COMPRESS, JobStatus.FAILED)

        assert service.get_processing_status(1)["overall_status"] == "failed"

    def test_processing_beats_pending(self, service, db_session):
        self._add(db_session, JobType.WATERMARK, JobStatus.PENDING)
        self._add(db_session, JobType.THUMBNAIL, JobStatus.PROCESSING)

        assert service.get_processing_status(1)["overall_status"] == "processing"

    def test_completed_needs_every_job(self, service, db_session):
        self._add(db_session, JobType.WATERMARK, JobStatus.COMPLETED)
        assert service.get_processing_status(1)["overall_status"] == "completed"

        self._add(db_session, JobType.THUMBNAIL, JobStatus.PENDING)
        assert service.get_processing_status(1)["overall_status"] == "pending"

    def test_job_entries(self, service, db_session):
        self._add(db_session, JobType.WATERMARK, JobStatus.PENDING)

        entry = service.get_processing_status(1)["jobs"][0]

        assert entry["type"] == "watermark"
        assert entry["status"] == "pending"
        assert entry["attempts"] == 1
        assert entry["duration"] == "N/A"
        assert entry["error"] is None


class TestRetryJob:
    """Tests for requeueing failed watermark jobs."""

    def _failed(self, db_session, job_type=JobType.WATERMARK, attempts=1, file_id=1):
        job = FileProcessingJob(
            file_id=file_id,
            job_type=job_type,
            status=JobStatus.FAILED,
            attempts=attempts,
            error_message="disk full",
            job_parameters={"position": "center"},
        )
        db_session.add(job)
        db_session.commit()
        return job

    def test_failed_job_is_requeued(self, service, db_session):
        job = self._failed(db_session)

        with patch("ddsportal.tasks.file_tasks.process_file_watermark.delay") as delay:
            retried = service.retry_job(job.id, max_attempts=3)

        assert retried.id == job.id
        assert retried.status == JobStatus.PENDING
        assert retried.error_message is None
        assert retried.attempts == 1
        delay.assert_called_once_with(1, {"position": "center"}, job.id)

    def test_exhausted_job_conflicts(self, service, db_session):
        job = self._failed(db_session, attempts=3)

        with patch("ddsportal.tasks.file_tasks.process_file_watermark.delay") as delay:
            with pytest.raises(ConcurrencyConflictError):
                service.retry_job(job.id, max_attempts=3)

        delay.assert_not_called()
        db_session.refresh(job)
        assert job.status == JobStatus.FAILED

    def test_completed_job_conflicts(self, service, db_session):
        job = FileProcessingJob(file_id=1, job_type=JobType.WATERMARK, status=JobStatus.COMPLETED, attempts=1)
        db_session.add(job)
        db_session.commit()

        with pytest.raises(ConcurrencyConflictError):
            service.retry_job(job.id)

    def test_newer_active_job_conflicts(self, service, db_session):
        old = self._failed(db_session)
        service.find_or_create_job(1, JobType.WATERMARK)

        with patch("ddsportal.tasks.file_tasks.process_file_watermark.delay") as delay:
            with pytest.raises(ConcurrencyConflictError):
                service.retry_job(old.id)

        delay.assert_not_called()
        db_session.refresh(old)
        assert old.status == JobStatus.FAILED

    def test_only_watermark_jobs_have_a_worker(self, service, db_session):
        job = self._failed(db_session, job_type=JobType.THUMBNAIL)

        with pytest.raises(ValidationError):
            service.retry_job(job.id)

    def test_missing_job(self, service):
        with pytest.raises(JobNotFoundError):
            service.retry_job(404)


class TestListJobs:
    def _add(self, db_session, file_id, job_type, status):
        job = FileProcessingJob(file_id=file_id, job_type=job_type, status=status, attempts=1)
        db_session.add(job)
        db_session.commit()
        return job

    def test_filters(self, service, db_session):
        failed = self._add(db_session, 1, JobType.WATERMARK, JobStatus.FAILED)
        self._add(db_session, 1, JobType.THUMBNAIL, JobStatus.COMPLETED)
        other = self._add(db_session, 2, JobType.WATERMARK, JobStatus.PENDING)

        assert service.list_jobs(status=JobStatus.FAILED) == ([failed], 1)
        assert service.list_jobs(file_id=2) == ([other], 1)
        jobs, total = service.list_jobs(job_type=JobType.WATERMARK)
        assert total == 2
        assert [job.id for job in jobs] == [other.id, failed.id]

    def test_pagination(self, service, db_session):
        for file_id in range(1, 6):
            self._add(db_session, file_id, JobType.WATERMARK, JobStatus.COMPLETED)

        first, total = service.list_jobs(page=1, per_page=2)
        last, _ = service.list_jobs(page=3, per_page=2)

        assert total == 5
        assert [job.file_id for job in first] == [5, 4]
        assert [job.file_id for job in last] == [1]


class TestStatistics:
    def test_totals(self, service, make_attachment, db_session):
        first = make_attachment(file_name="a.pdf", content=b"0123456789")
        make_attachment(file_name="b.pdf", content=b"0123456789")
        make_attachment(file_name="c.png", content=b"png", mime_type="image/png")
        db_session.add_all([
            FileProcessingJob(file_id=first.id, job_type=JobType.WATERMARK, status=JobStatus.PENDING, attempts=0),
            FileProcessingJob(file_id=first.id, job_type=JobType.WATERMARK, status=JobStatus.FAILED, attempts=1),
            FileProcessingJob(file_id=first.id, job_type=JobType.WATERMARK, status=JobStatus.FAILED, attempts=3),
            FileProcessingJob(file_id=first.id, job_type=JobType.THUMBNAIL, status=JobStatus.COMPLETED, attempts=1),
            FileWatermark(original_file_id=first.id, watermarked_path="watermarked/1/a.pdf", watermark_text="COPY"),
        ])
        db_session.commit()

        stats = service.get_statistics(max_attempts=3)

        assert stats["total_files"] == 3
        assert stats["total_size"] == 23
        assert stats["total_size_formatted"] == "23 B"
        assert stats["watermarked_files"] == 1
        assert stats["processing_jobs"] == {
            "pending": 1,
            "processing": 0,
            "completed": 1,
            "failed": 2,
            "retryable": 1,
        }
        assert stats["file_types"] == [
            {"mime_type": "application/pdf", "count": 2},
            {"mime_type": "image/png", "count": 1},
        ]

    def test_empty(self, service):
        stats = service.get_statistics()

        assert stats["total_files"] == 0
        assert stats["total_size"] == 0
        assert stats["total_size_formatted"] == "0 B"
        assert stats["file_types"] == []


class TestConcurrentJobCreation:
    """Threads on separate sessions against a file-backed database."""

    WORKERS = 8

    @pytest.fixture
    def session_factory(self, tmp_path):
        file_engine = create_engine(
            f"sqlite:///{tmp_path / 'jobs.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(bind=file_engine)
        try:
            yield sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
        finally:
            file_engine.dispose()

    def test_racing_callers_share_one_job(self, session_factory):
        barrier = threading.Barrier(self.WORKERS)
        job_ids = []
        errors = []

        def create():
            session = session_factory()
            try:
                barrier.wait(timeout=10)
                job, _ = FileProcessingService(session).find_or_create_job(1, JobType.WATERMARK)
                job_ids.append(job.id)
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=create) for _ in range(self.WORKERS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        assert len(job_ids) == self.WORKERS
        assert len(set(job_ids)) == 1

        session = session_factory()
        try:
            assert session.query(FileProcessingJob).count() == 1
        finally:
            session.close()
