"""Health check endpoints.

- /health: detailed component check (tools, storage, worker pool)
- /liveness: process is up
- /readiness: extraction tool and storage usable, worker loop running
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import List, Literal

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from mediajobs import __version__
from mediajobs.api.schemas import ComponentHealth, HealthResponse, LivenessResponse, ReadinessResponse
from mediajobs.core.checks import CheckResult, check_ffmpeg, check_ytdlp
from mediajobs.core.config import Config
from mediajobs.services.job_queue import JobQueue
from mediajobs.services.orchestrator import JobOrchestrator
from mediajobs.services.storage import StorageManager

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])

# Track application start time for uptime calculation
_start_time: float = time.time()


def reset_start_time() -> None:
    """Reset the start time (for testing)."""
    global _start_time
    _start_time = time.time()


# Dependency placeholders (to be configured in main app)
async def get_config() -> Config:
    """Get application configuration."""
    raise NotImplementedError("Config dependency not configured")


async def get_storage_manager() -> StorageManager:
    """Get storage manager instance."""
    raise NotImplementedError("Storage manager dependency not configured")


async def get_job_queue() -> JobQueue:
    """Get job queue instance."""
    raise NotImplementedError("Job queue dependency not configured")


async def get_orchestrator() -> JobOrchestrator:
    """Get job orchestrator instance."""
    raise NotImplementedError("Job orchestrator dependency not configured")


def _tool_health(result: CheckResult, name: str) -> ComponentHealth:
    if result.available:
        return ComponentHealth(status="healthy", version=result.version)
    return ComponentHealth(
        status="unhealthy",
        details={"error": result.error or f"{name} not available"},
    )


async def _check_ytdlp(config: Config) -> ComponentHealth:
    """Check yt-dlp availability and version."""
    result = await check_ytdlp(config.extraction.binary, timeout=config.timeouts.check)
    return _tool_health(result, "yt-dlp")


async def _check_ffmpeg(config: Config) -> ComponentHealth:
    """Check ffmpeg availability and version."""
    result = await check_ffmpeg(config.postprocessing.binary, timeout=config.timeouts.check)
    return _tool_health(result, "ffmpeg")


def _check_storage(storage: StorageManager) -> ComponentHealth:
    """Check storage availability."""
    try:
        usage = storage.get_disk_usage()
    except Exception as e:
        return ComponentHealth(status="unhealthy", details={"error": str(e)})

    return ComponentHealth(
        status="healthy",
        details={
            "available_gb": round(usage.available / (1024**3), 2),
            "used_percent": round(usage.percent_used, 1),
        },
    )


def _check_workers(orchestrator: JobOrchestrator, job_queue: JobQueue) -> ComponentHealth:
    """Report worker pool state. Unhealthy when the worker loop is not running."""
    details = dict(job_queue.get_stats())
    if orchestrator.is_running:
        return ComponentHealth(status="healthy", details=details)
    details["error"] = "Worker loop not running"
    return ComponentHealth(status="unhealthy", details=details)


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        200: {"description": "All components healthy"},
        503: {"description": "One or more components unhealthy"},
    },
)
async def health_check(
    config: Config = Depends(get_config),  # noqa: B008
    storage: StorageManager = Depends(get_storage_manager),  # noqa: B008
    job_queue: JobQueue = Depends(get_job_queue),  # noqa: B008
    orchestrator: JobOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> JSONResponse:
    """
    Detailed health check endpoint.

    Verifies yt-dlp, ffmpeg, the output directory and the worker pool.
    Returns HTTP 200 if all components are healthy, HTTP 503 otherwise.
    """
    ytdlp_health, ffmpeg_health = await asyncio.gather(
        _check_ytdlp(config), _check_ffmpeg(config)
    )

    components = {
        "ytdlp": ytdlp_health,
        "ffmpeg": ffmpeg_health,
        "storage": _check_storage(storage),
        "workers": _check_workers(orchestrator, job_queue),
    }

    all_healthy = all(c.status == "healthy" for c in components.values())
    overall_status: Literal["healthy", "unhealthy"] = "healthy" if all_healthy else "unhealthy"

    response = HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
        components=components,
    )

    status_code = status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE

    logger.info(
        "health_check_completed",
        status=overall_status,
        components={k: v.status for k, v in components.items()},
    )

    return JSONResponse(content=response.model_dump(), status_code=status_code)


@router.get("/liveness", response_model=LivenessResponse)
async def liveness_check() -> LivenessResponse:
    """Liveness probe. Returns HTTP 200 while the process is alive."""
    return LivenessResponse(status="alive")


@router.get(
    "/readiness",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "Service is ready to accept jobs"},
        503: {"description": "Service is not ready"},
    },
)
async def readiness_check(
    config: Config = Depends(get_config),  # noqa: B008
    storage: StorageManager = Depends(get_storage_manager),  # noqa: B008
    orchestrator: JobOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> JSONResponse:
    """
    Readiness probe endpoint.

    Checks:
    - yt-dlp is available
    - Output directory is usable
    - Worker loop is running
    """
    issues: List[str] = []

    if (await _check_ytdlp(config)).status != "healthy":
        issues.append("yt-dlp not available")

    if _check_storage(storage).status != "healthy":
        issues.append("Storage not ready")

    if not orchestrator.is_running:
        issues.append("Worker loop not running")

    if issues:
        response = ReadinessResponse(status="not_ready", ready=False, message="; ".join(issues))
        return JSONResponse(
            content=response.model_dump(),
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return JSONResponse(
        content=ReadinessResponse(status="ready", ready=True).model_dump(),
        status_code=status.HTTP_200_OK,
    )
