"""Tests for API endpoints.

Routers are mounted on a bare FastAPI app with real job, queue and storage
services. The orchestrator is mocked; its submit creates and enqueues a job
the way the real one does.
"""

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.exceptions import HTTPException as StarletteHTTPException

from mediajobs.api import artifacts, health, jobs, metrics
from mediajobs.core.config import (
    Config,
    ExtractionConfig,
    PostProcessingConfig,
    StorageConfig,
)
from mediajobs.core.errors import APIError, ErrorCode, global_exception_handler
from mediajobs.models.job import Job, JobStatus
from mediajobs.services.exceptions import PipelineError, SubmissionError
from mediajobs.services.job_queue import JobQueue
from mediajobs.services.job_service import JobService
from mediajobs.services.probe import ArtifactProbe
from mediajobs.services.storage import StorageManager

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def storage(output_dir: Path) -> StorageManager:
    manager = StorageManager(StorageConfig(output_dir=str(output_dir)))
    manager.initialize()
    return manager


@pytest.fixture
def job_service(storage: StorageManager) -> JobService:
    return JobService(on_job_evicted=storage.remove_job_artifact)


@pytest.fixture
def job_queue() -> JobQueue:
    return JobQueue(max_concurrent=2, max_queue_size=10)


@pytest.fixture
def orchestrator(job_service: JobService, job_queue: JobQueue) -> MagicMock:
    """Mock orchestrator whose submit mirrors the real validation entry point."""
    mock = MagicMock()
    mock.is_running = True

    async def submit(source_reference: Any, **kwargs: Any) -> Job:
        if source_reference == "bad":
            raise SubmissionError(ErrorCode.INVALID_SOURCE, "Domain 'bad' is not a supported source")
        job = job_service.create_job(source_reference)
        position = await job_queue.enqueue(job.job_id)
        job_service.set_queue_position(job.job_id, position)
        return job

    mock.submit = AsyncMock(side_effect=submit)
    mock.wait_for = AsyncMock(side_effect=lambda job_id, timeout: job_service.get_job_or_raise(job_id))
    return mock


@pytest.fixture
def config(tmp_path: Path, fake_ytdlp: Path, fake_ffmpeg: Path, output_dir: Path) -> Config:
    return Config(
        storage=StorageConfig(output_dir=str(output_dir)),
        extraction=ExtractionConfig(binary=str(fake_ytdlp)),
        postprocessing=PostProcessingConfig(binary=str(fake_ffmpeg)),
    )


@pytest.fixture
def app(
    config: Config,
    storage: StorageManager,
    job_service: JobService,
    job_queue: JobQueue,
    orchestrator: MagicMock,
    fake_ffprobe: Path,
) -> FastAPI:
    """Create a test FastAPI application with all dependencies wired."""
    app = FastAPI()
    app.include_router(health.router)
    app.include_router(jobs.router)
    app.include_router(artifacts.router)
    app.include_router(metrics.router)

    app.add_exception_handler(APIError, global_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(PipelineError, global_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, global_exception_handler)  # type: ignore[arg-type]

    probe = ArtifactProbe(binary=str(fake_ffprobe))

    app.dependency_overrides[jobs.get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[jobs.get_job_service] = lambda: job_service
    app.dependency_overrides[jobs.get_job_queue] = lambda: job_queue
    app.dependency_overrides[artifacts.get_job_service] = lambda: job_service
    app.dependency_overrides[artifacts.get_storage_manager] = lambda: storage
    app.dependency_overrides[artifacts.get_artifact_probe] = lambda: probe
    app.dependency_overrides[health.get_config] = lambda: config
    app.dependency_overrides[health.get_storage_manager] = lambda: storage
    app.dependency_overrides[health.get_job_queue] = lambda: job_queue
    app.dependency_overrides[health.get_orchestrator] = lambda: orchestrator

    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def finish_job(
    job_service: JobService,
    output_dir: Path,
    name: str = "Channel Name - Song Title.mp3",
    content: bytes = b"ID3" + b"\x00" * 1024,
) -> Job:
    """Create a job and drive it to COMPLETED with a real file on disk."""
    path = output_dir / name
    path.write_bytes(content)
    job = job_service.create_job("dQw4w9WgXcQ", title="Song Title", channel="Channel Name")
    job_service.start_running(job.job_id)
    return job_service.complete_job(job.job_id, str(path), name, len(content))


# ============================================================================
# Jobs
# ============================================================================


class TestSubmitJob:
    def test_submit_returns_202(self, client: TestClient) -> None:
        response = client.post("/api/v1/jobs", json={"sourceReference": "dQw4w9WgXcQ"})

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "queued"
        assert data["queuePosition"] == 1
        assert "jobId" in data
        assert "createdAt" in data

    def test_submit_passes_fields_to_orchestrator(
        self, client: TestClient, orchestrator: MagicMock
    ) -> None:
        client.post(
            "/api/v1/jobs",
            json={
                "sourceReference": "abc",
                "title": "Song",
                "channel": "Channel",
                "metadata": {"year": 2024},
                "embedThumbnail": True,
            },
        )

        orchestrator.submit.assert_awaited_once_with(
            "abc",
            requested_format="mp3",
            title="Song",
            channel="Channel",
            metadata={"year": 2024},
            embed_thumbnail=True,
        )

    def test_invalid_source_returns_400(self, client: TestClient, job_service: JobService) -> None:
        response = client.post("/api/v1/jobs", json={"sourceReference": "bad"})

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_SOURCE"
        assert job_service.get_job_count() == 0

    def test_wait_returns_terminal_status(
        self,
        client: TestClient,
        orchestrator: MagicMock,
        job_service: JobService,
        output_dir: Path,
    ) -> None:
        done = finish_job(job_service, output_dir)
        orchestrator.wait_for = AsyncMock(return_value=done)

        response = client.post("/api/v1/jobs?wait=30", json={"sourceReference": "abc"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["fileName"] == "Channel Name - Song Title.mp3"
        assert data["downloadUrl"] == f"/api/v1/artifacts/{done.job_id}"

    def test_wait_times_out_to_202(self, client: TestClient) -> None:
        response = client.post("/api/v1/jobs?wait=0.1", json={"sourceReference": "abc"})

        assert response.status_code == 202
        assert response.json()["status"] == "queued"

    def test_wait_out_of_range(self, client: TestClient) -> None:
        response = client.post("/api/v1/jobs?wait=601", json={"sourceReference": "abc"})

        assert response.status_code == 422


class TestJobStatus:
    def test_unknown_job_returns_404(self, client: TestClient) -> None:
        response = client.get("/api/v1/jobs/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error_code"] == "JOB_NOT_FOUND"

    def test_queued_job(self, client: TestClient) -> None:
        job_id = client.post("/api/v1/jobs", json={"sourceReference": "abc"}).json()["jobId"]

        data = client.get(f"/api/v1/jobs/{job_id}").json()

        assert data["status"] == "queued"
        assert data["progress"] == 0
        assert data["queuePosition"] == 1
        assert "downloadUrl" not in data
        assert "fileName" not in data

    def test_completed_job(self, client: TestClient, job_service: JobService, output_dir: Path) -> None:
        job = finish_job(job_service, output_dir)

        data = client.get(f"/api/v1/jobs/{job.job_id}").json()

        assert data["status"] == "completed"
        assert data["progress"] == 100
        assert data["fileName"] == "Channel Name - Song Title.mp3"
        assert data["fileSize"] == 1027
        assert data["downloadUrl"] == f"/api/v1/artifacts/{job.job_id}"
        assert "queuePosition" not in data
        assert "error" not in data

    def test_failed_job(self, client: TestClient, job_service: JobService) -> None:
        job = job_service.create_job("abc")
        job_service.start_running(job.job_id)
        job_service.update_progress(job.job_id, 40)
        job_service.fail_job(job.job_id, "ERROR: Video unavailable")

        data = client.get(f"/api/v1/jobs/{job.job_id}").json()

        assert data["status"] == "failed"
        assert data["progress"] == 40
        assert data["error"] == "ERROR: Video unavailable"
        assert "downloadUrl" not in data


class TestListJobs:
    def test_list_and_filter(self, client: TestClient, job_service: JobService, output_dir: Path) -> None:
        finish_job(job_service, output_dir)
        client.post("/api/v1/jobs", json={"sourceReference": "abc"})

        all_jobs = client.get("/api/v1/jobs").json()
        completed = client.get("/api/v1/jobs?status=completed").json()

        assert all_jobs["total"] == 2
        assert completed["total"] == 1
        assert completed["jobs"][0]["status"] == "completed"

    def test_invalid_status_filter(self, client: TestClient) -> None:
        assert client.get("/api/v1/jobs?status=bogus").status_code == 422


class TestDeleteJob:
    def test_delete_finished_job_removes_artifact(
        self, client: TestClient, job_service: JobService, output_dir: Path
    ) -> None:
        job = finish_job(job_service, output_dir)

        response = client.delete(f"/api/v1/jobs/{job.job_id}")

        assert response.status_code == 204
        assert job_service.get_job(job.job_id) is None
        assert not Path(job.result_path).exists()
        assert client.get(f"/api/v1/jobs/{job.job_id}").status_code == 404

    def test_delete_active_job_conflicts(self, client: TestClient) -> None:
        job_id = client.post("/api/v1/jobs", json={"sourceReference": "abc"}).json()["jobId"]

        response = client.delete(f"/api/v1/jobs/{job_id}")

        assert response.status_code == 409
        assert response.json()["error_code"] == "JOB_ACTIVE"

    def test_delete_unknown_job(self, client: TestClient) -> None:
        assert client.delete("/api/v1/jobs/nope").status_code == 404


# ============================================================================
# Artifacts
# ============================================================================


class TestDownloadArtifact:
    def test_download_by_job_id(self, client: TestClient, job_service: JobService, output_dir: Path) -> None:
        job = finish_job(job_service, output_dir)

        response = client.get(f"/api/v1/artifacts/{job.job_id}")

        assert response.status_code == 200
        assert response.content == b"ID3" + b"\x00" * 1024
        assert response.headers["content-type"] == "audio/mpeg"
        assert response.headers["content-length"] == "1027"
        assert response.headers["cache-control"] == "no-cache"
        disposition = response.headers["content-disposition"]
        assert disposition.startswith("attachment;")
        assert "filename*=UTF-8''Channel%20Name%20-%20Song%20Title.mp3" in disposition

    def test_download_by_file_name(self, client: TestClient, output_dir: Path) -> None:
        (output_dir / "Song.mp3").write_bytes(b"audio")

        response = client.get("/api/v1/artifacts/Song.mp3")

        assert response.status_code == 200
        assert response.content == b"audio"

    def test_non_ascii_name_is_encoded(self, client: TestClient, job_service: JobService, output_dir: Path) -> None:
        job = finish_job(job_service, output_dir, name="Café · Déjà vu.mp3")

        disposition = client.get(f"/api/v1/artifacts/{job.job_id}").headers["content-disposition"]

        assert "Caf%C3%A9%20%C2%B7%20D%C3%A9j%C3%A0%20vu.mp3" in disposition

    def test_unfinished_job_has_no_artifact(self, client: TestClient) -> None:
        job_id = client.post("/api/v1/jobs", json={"sourceReference": "abc"}).json()["jobId"]

        response = client.get(f"/api/v1/artifacts/{job_id}")

        assert response.status_code == 404
        assert response.json()["error_code"] == "ARTIFACT_NOT_FOUND"

    def test_deleted_file_returns_404(self, client: TestClient, job_service: JobService, output_dir: Path) -> None:
        job = finish_job(job_service, output_dir)
        Path(job.result_path).unlink()

        assert client.get(f"/api/v1/artifacts/{job.job_id}").status_code == 404

    def test_unknown_name_returns_404(self, client: TestClient) -> None:
        assert client.get("/api/v1/artifacts/missing.mp3").status_code == 404

    def test_traversal_returns_403(self, client: TestClient) -> None:
        response = client.get("/api/v1/artifacts/..%5Csecret.txt")

        assert response.status_code == 403
        assert response.json()["error_code"] == "ACCESS_DENIED"


class TestArtifactMetadata:
    def test_metadata(self, client: TestClient, job_service: JobService, output_dir: Path) -> None:
        job = finish_job(
            job_service,
            output_dir,
            content=b'ID3\nFAKETAGS:{"tags": {"title": "Song Title", "artist": "Channel Name"}, "cover": true}',
        )

        response = client.get(f"/api/v1/artifacts/{job.job_id}/metadata")

        assert response.status_code == 200
        data = response.json()
        assert data["fileName"] == "Channel Name - Song Title.mp3"
        assert data["container"] == "mp3"
        assert data["audioCodec"] == "mp3"
        assert data["sampleRate"] == 48000
        assert data["hasCover"] is True
        assert data["tags"]["title"] == "Song Title"
        assert data["tags"]["artist"] == "Channel Name"


# ============================================================================
# Health and metrics
# ============================================================================


class TestHealthEndpoints:
    def test_health_all_healthy(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert set(data["components"]) == {"ytdlp", "ffmpeg", "storage", "workers"}
        assert data["components"]["ytdlp"]["version"] == "2026.01.01"
        assert data["components"]["workers"]["details"]["max_concurrent"] == 2

    def test_health_unhealthy_when_workers_stopped(
        self, client: TestClient, orchestrator: MagicMock
    ) -> None:
        orchestrator.is_running = False

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["components"]["workers"]["status"] == "unhealthy"

    def test_liveness(self, client: TestClient) -> None:
        response = client.get("/liveness")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_readiness(self, client: TestClient) -> None:
        response = client.get("/readiness")

        assert response.status_code == 200
        assert response.json()["ready"] is True

    def test_not_ready_without_extraction_tool(
        self, client: TestClient, config: Config, tmp_path: Path
    ) -> None:
        config.extraction.binary = str(tmp_path / "missing")

        response = client.get("/readiness")

        assert response.status_code == 503
        assert "yt-dlp not available" in response.json()["message"]


class TestMetricsEndpoint:
    def test_metrics(self, client: TestClient) -> None:
        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "jobs_total" in response.text
        assert "job_queue_size" in response.text
