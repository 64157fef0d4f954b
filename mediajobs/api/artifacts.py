"""Artifact delivery endpoints.

- GET /api/v1/artifacts/{reference}: stream the file as an attachment
- GET /api/v1/artifacts/{reference}/metadata: container and tag details

``reference`` is a job id or a bare file name inside the output directory.
"""

import mimetypes
import os
from pathlib import Path
from typing import Any, Tuple
from urllib.parse import quote

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from mediajobs.api.schemas import ArtifactMetadataResponse, ErrorDetail
from mediajobs.models.job import JobStatus
from mediajobs.services.exceptions import ArtifactNotFoundError
from mediajobs.services.job_service import JobService
from mediajobs.services.probe import ArtifactProbe
from mediajobs.services.storage import StorageManager

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["artifacts"])

CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".mp4": "video/mp4",
    ".wav": "audio/wav",
}


# Dependency placeholders (to be configured in main app)
async def get_job_service() -> JobService:
    """Get job service instance."""
    raise NotImplementedError("Job service dependency not configured")


async def get_storage_manager() -> StorageManager:
    """Get storage manager instance."""
    raise NotImplementedError("Storage manager dependency not configured")


async def get_artifact_probe() -> ArtifactProbe:
    """Get artifact probe instance."""
    raise NotImplementedError("Artifact probe dependency not configured")


def content_type_for(path: Path) -> str:
    content_type = CONTENT_TYPES.get(path.suffix.lower())
    if content_type:
        return content_type
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


def content_disposition(file_name: str) -> str:
    """``attachment`` header value with the file name percent-encoded."""
    encoded = quote(file_name, safe="!~*'()")
    return f"attachment; filename=\"{encoded}\"; filename*=UTF-8''{encoded}"


def resolve_artifact(
    reference: str,
    job_service: JobService,
    storage: StorageManager,
) -> Tuple[Path, str]:
    """Find the file for a job id or file name.

    Returns:
        The artifact path and the name to offer the client.

    Raises:
        ArtifactNotFoundError: If the job has no finished artifact or the file is gone.
        AccessDeniedError: If a file name escapes the output directory.
    """
    job = job_service.get_job(reference)
    if job is not None:
        if job.status != JobStatus.COMPLETED or not job.result_path:
            raise ArtifactNotFoundError(
                f"Job {reference} has no artifact (status: {job.status.value})"
            )
        path = Path(job.result_path)
        if not path.is_file():
            raise ArtifactNotFoundError(f"Artifact for job {reference} no longer exists")
        return path, job.result_file_name or path.name

    path = storage.resolve_artifact_path(reference)
    return path, path.name


@router.get(
    "/artifacts/{reference}",
    response_class=FileResponse,
    responses={
        200: {"description": "Artifact bytes", "content": {"audio/mpeg": {}}},
        403: {"model": ErrorDetail, "description": "Name escapes the output directory"},
        404: {"model": ErrorDetail, "description": "Artifact not found"},
    },
)
async def download_artifact(
    reference: str,
    job_service: JobService = Depends(get_job_service),  # noqa: B008
    storage: StorageManager = Depends(get_storage_manager),  # noqa: B008
) -> FileResponse:
    """
    Stream an artifact as an attachment.

    The file is sent in chunks with Content-Length taken from its size. An
    I/O error after the headers went out aborts the connection.
    """
    path, file_name = resolve_artifact(reference, job_service, storage)

    try:
        stat_result = os.stat(path)
    except FileNotFoundError:
        raise ArtifactNotFoundError(f"Artifact not found: {reference}")

    logger.info(
        "artifact_download_started",
        reference=reference,
        file_name=file_name,
        size=stat_result.st_size,
    )

    return FileResponse(
        path,
        media_type=content_type_for(path),
        stat_result=stat_result,
        headers={
            "Content-Disposition": content_disposition(file_name),
            "Cache-Control": "no-cache",
        },
    )


@router.get(
    "/artifacts/{reference}/metadata",
    response_model=ArtifactMetadataResponse,
    responses={
        403: {"model": ErrorDetail, "description": "Name escapes the output directory"},
        404: {"model": ErrorDetail, "description": "Artifact not found"},
        500: {"model": ErrorDetail, "description": "Probe failed"},
    },
)
async def artifact_metadata(
    reference: str,
    job_service: JobService = Depends(get_job_service),  # noqa: B008
    storage: StorageManager = Depends(get_storage_manager),  # noqa: B008
    probe: ArtifactProbe = Depends(get_artifact_probe),  # noqa: B008
) -> Any:
    """Inspect an artifact with ffprobe. Tag names are matched case-insensitively."""
    path, file_name = resolve_artifact(reference, job_service, storage)
    info = await probe.probe(path)

    return ArtifactMetadataResponse(
        file_name=file_name,
        duration=info.duration,
        bitrate=info.bitrate,
        size=info.size,
        container=info.container,
        audio_codec=info.audio_codec,
        sample_rate=info.sample_rate,
        channels=info.channels,
        has_cover=info.has_cover,
        tags=info.tags,
    )
