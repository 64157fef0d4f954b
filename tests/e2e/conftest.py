"""E2E test configuration and fixtures.

The real application is started through its lifespan, with the external
tools pointed at the stand-in executables from the root conftest.
"""

import time
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List

import pytest
from fastapi.testclient import TestClient

TERMINAL = ("completed", "failed")


@pytest.fixture
def e2e_env(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    output_dir: Path,
    fake_ytdlp: Path,
    fake_ffmpeg: Path,
    fake_ffprobe: Path,
) -> Dict[str, str]:
    """Environment for one application instance."""
    env = {
        "APP_CONFIG_FILE": str(tmp_path / "no-config.yaml"),
        "APP_LOGGING_LEVEL": "WARNING",
        "APP_STORAGE_OUTPUT_DIR": str(output_dir),
        "APP_STORAGE_ARTIFACT_TTL": "1",
        "APP_EXTRACTION_BINARY": str(fake_ytdlp),
        "APP_POSTPROCESSING_BINARY": str(fake_ffmpeg),
        "APP_POSTPROCESSING_PROBE_BINARY": str(fake_ffprobe),
        "APP_POSTPROCESSING_EMBED_THUMBNAIL": "false",
        "APP_DOWNLOADS_POLL_INTERVAL": "0.05",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture
def e2e_client(e2e_env: Dict[str, str]) -> Generator[TestClient, None, None]:
    """Client for an app whose lifespan has run; shut down after the test."""
    from mediajobs.main import create_app

    with TestClient(create_app()) as client:
        yield client


@pytest.fixture
def poll_job(e2e_client: TestClient) -> Callable[..., List[Dict[str, Any]]]:
    """Poll a job until it is terminal; returns every status body observed."""

    def _poll(job_id: str, timeout: float = 15.0) -> List[Dict[str, Any]]:
        seen: List[Dict[str, Any]] = []
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            response = e2e_client.get(f"/api/v1/jobs/{job_id}")
            assert response.status_code == 200
            seen.append(response.json())
            if seen[-1]["status"] in TERMINAL:
                return seen
            time.sleep(0.05)
        raise AssertionError(f"job {job_id} not finished, last status {seen[-1]['status']}")

    return _poll
