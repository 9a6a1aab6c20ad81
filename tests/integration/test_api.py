# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Integration tests for the SiteCast API."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from sitecast.core.models import RecordingRequest, RecordingResult
from sitecast.core.scheduler import Job, JobScheduler
from sitecast.exceptions import InvalidRequestError, JobStateError


@pytest.fixture
def mock_scheduler():
    """Create a mock scheduler."""
    scheduler = MagicMock()
    scheduler.submit.return_value = 1
    scheduler.get_job.return_value = None
    scheduler.list_jobs.return_value = []
    scheduler.get_stats.return_value = {
        "queued": 0,
        "running": 0,
        "completed": 0,
        "failed": 0,
        "total": 0,
        "max_concurrent": 3,
    }
    return scheduler


@pytest.fixture
def test_client(mock_scheduler):
    """Create test client with a mocked scheduler."""
    from sitecast.service.app import app

    with patch("sitecast.service.app.scheduler", mock_scheduler):
        with patch("sitecast.service.app.start_time", 1000.0):
            yield TestClient(app)


def completed_job(job_id=1):
    job = Job(id=job_id, request=RecordingRequest(url="https://example.com", duration=5000))
    job.start()
    job.complete(RecordingResult(output_path=Path("/recordings/example_com.mp4"), size_bytes=4096))
    return job


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_check(self, test_client, mock_scheduler):
        response = test_client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert "uptime_seconds" in data
        assert data["scheduler"]["max_concurrent"] == 3


class TestRecordEndpoint:
    """Tests for POST /api/record."""

    def test_queue_recording(self, test_client, mock_scheduler):
        mock_scheduler.submit.return_value = 7

        response = test_client.post("/api/record", json={"url": "https://example.com", "duration": 5000})

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"success": True, "jobId": 7, "status": "queued"}
        mock_scheduler.submit.assert_called_once_with({"url": "https://example.com", "duration": 5000})

    def test_camel_case_fields_forwarded(self, test_client, mock_scheduler):
        test_client.post(
            "/api/record",
            json={"url": "https://example.com", "cropX": 10, "cropY": 20, "viewportWidth": 1280},
        )

        submitted = mock_scheduler.submit.call_args.args[0]
        assert submitted["cropX"] == 10
        assert submitted["cropY"] == 20
        assert submitted["viewportWidth"] == 1280

    def test_missing_url(self, test_client, mock_scheduler):
        mock_scheduler.submit.side_effect = InvalidRequestError("URL is required")

        response = test_client.post("/api/record", json={"duration": 5000})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"success": False, "error": "URL is required"}

    def test_malformed_field(self, test_client, mock_scheduler):
        response = test_client.post("/api/record", json={"url": "https://example.com", "duration": "long"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["success"] is False
        mock_scheduler.submit.assert_not_called()

    def test_shutting_down(self, test_client, mock_scheduler):
        mock_scheduler.submit.side_effect = JobStateError("Scheduler is shutting down")

        response = test_client.post("/api/record", json={"url": "https://example.com"})

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    def test_real_scheduler_validation(self):
        """Test validation errors come from the scheduler itself."""
        from sitecast.service.app import app

        scheduler = JobScheduler(runner=MagicMock())
        with patch("sitecast.service.app.scheduler", scheduler):
            response = TestClient(app).post("/api/record", json={"url": "not-a-url"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "Invalid URL format"
        assert scheduler.list_jobs() == []

    def test_zero_values_fall_back_to_defaults(self):
        """Test zero duration and sizes are accepted and replaced by defaults."""
        from sitecast.service.app import app

        scheduler = JobScheduler(runner=MagicMock())
        with patch("sitecast.service.app.scheduler", scheduler), patch.object(scheduler, "_admit"):
            response = TestClient(app).post(
                "/api/record",
                json={"url": "https://example.com", "duration": 0, "width": 0, "viewportWidth": 0},
            )

        assert response.status_code == status.HTTP_200_OK
        job = scheduler.get_job(response.json()["jobId"])
        assert job.request.duration == 30000
        assert job.request.width == 1920
        assert job.request.viewport_width == 1920


class TestJobEndpoint:
    """Tests for GET /api/job/{id}."""

    def test_get_job(self, test_client, mock_scheduler):
        mock_scheduler.get_job.return_value = completed_job(3)

        response = test_client.get("/api/job/3")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["id"] == 3
        assert data["status"] == "completed"
        assert data["fileName"] == "example_com.mp4"
        mock_scheduler.get_job.assert_called_once_with(3)

    def test_job_not_found(self, test_client):
        response = test_client.get("/api/job/99")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {"error": "Job not found"}

    def test_non_numeric_id(self, test_client, mock_scheduler):
        response = test_client.get("/api/job/abc")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        mock_scheduler.get_job.assert_not_called()


class TestQueueEndpoint:
    """Tests for GET /api/queue."""

    def test_list_queue(self, test_client, mock_scheduler):
        mock_scheduler.list_jobs.return_value = [completed_job(2), completed_job(1)]

        response = test_client.get("/api/queue")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert [job["id"] for job in data["jobs"]] == [2, 1]
        assert data["status"]["max_concurrent"] == 3


class TestRecordingsEndpoint:
    """Tests for GET /api/recordings."""

    def test_list_recordings(self, test_client, temp_dir):
        (temp_dir / "example_com.mp4").write_bytes(b"video")
        (temp_dir / "pending.mp4").touch()

        with patch("sitecast.service.app.output_dir", temp_dir):
            response = test_client.get("/api/recordings")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert [entry["name"] for entry in data] == ["example_com.mp4"]
        assert data[0]["size"] == 5

    def test_missing_output_dir(self, test_client, temp_dir):
        with patch("sitecast.service.app.output_dir", temp_dir / "absent"):
            response = test_client.get("/api/recordings")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == []
