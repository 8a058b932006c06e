"""
Integration tests for the processing job administration API.
"""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from ddsportal.models.file_processing import FileProcessingJob, JobStatus, JobType

BASE = "/api/v1/processing-jobs"


@pytest.fixture
def delay():
    with patch("ddsportal.tasks.file_tasks.process_file_watermark.delay") as mock_delay:
        yield mock_delay


@pytest.fixture
def add_job(db_session):
    def _add(file_id=1, job_type=JobType.WATERMARK, status=JobStatus.FAILED, attempts=1):
        job = FileProcessingJob(
            file_id=file_id,
            job_type=job_type,
            status=status,
            attempts=attempts,
            error_message="disk full" if status == JobStatus.FAILED else None,
            job_parameters={},
        )
        db_session.add(job)
        db_session.commit()
        return job

    return _add


class TestListProcessingJobs:
    def test_lists_newest_first(self, client: TestClient, add_job):
        first = add_job(file_id=1)
        second = add_job(file_id=2, status=JobStatus.COMPLETED)

        response = client.get(BASE)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["page"] == 1
        assert body["per_page"] == 15
        assert [job["id"] for job in body["jobs"]] == [second.id, first.id]

    def test_filters(self, client: TestClient, add_job):
        failed = add_job(file_id=1)
        add_job(file_id=2, status=JobStatus.COMPLETED)
        add_job(file_id=1, job_type=JobType.THUMBNAIL, status=JobStatus.PENDING)

        by_status = client.get(BASE, params={"status": "failed"}).json()
        by_type = client.get(BASE, params={"job_type": "thumbnail"}).json()
        by_file = client.get(BASE, params={"file_id": 1, "job_type": "watermark"}).json()

        assert [job["id"] for job in by_status["jobs"]] == [failed.id]
        assert by_type["total"] == 1
        assert by_type["jobs"][0]["job_type"] == "thumbnail"
        assert [job["id"] for job in by_file["jobs"]] == [failed.id]

    def test_invalid_status_rejected(self, client: TestClient):
        response = client.get(BASE, params={"status": "stuck"})

        assert response.status_code == 422


class TestRetryProcessingJob:
    def test_requeues_failed_job(self, client: TestClient, add_job, delay):
        job = add_job(file_id=3)

        response = client.post(f"{BASE}/{job.id}/retry")

        assert response.status_code == 202
        body = response.json()
        assert body["id"] == job.id
        assert body["status"] == "pending"
        assert body["error_message"] is None
        delay.assert_called_once_with(3, {}, job.id)

    def test_exhausted_job_conflicts(self, client: TestClient, add_job, delay):
        job = add_job(attempts=3)

        response = client.post(f"{BASE}/{job.id}/retry")

        assert response.status_code == 409
        body = response.json()
        assert body["error_code"] == "DDS-500"
        assert body["message"] == "Job cannot be retried (too many attempts or not failed)"
        delay.assert_not_called()

    def test_running_job_conflicts(self, client: TestClient, add_job, delay):
        job = add_job(status=JobStatus.PROCESSING)

        assert client.post(f"{BASE}/{job.id}/retry").status_code == 409

    def test_missing_job(self, client: TestClient, delay):
        response = client.post(f"{BASE}/999/retry")

        assert response.status_code == 404
        assert response.json()["error_code"] == "DDS-202"


class TestStatistics:
    def test_statistics(self, client: TestClient, make_attachment, add_job):
        attachment = make_attachment(content=b"x" * 2048)
        add_job(file_id=attachment.id)
        add_job(file_id=attachment.id, attempts=3)

        response = client.get(f"{BASE}/statistics")

        assert response.status_code == 200
        body = response.json()
        assert body["total_files"] == 1
        assert body["total_size"] == 2048
        assert body["total_size_formatted"] == "2 KB"
        assert body["watermarked_files"] == 0
        assert body["processing_jobs"]["failed"] == 2
        assert body["processing_jobs"]["retryable"] == 1
        assert body["file_types"] == [{"mime_type": "application/pdf", "count": 1}]
