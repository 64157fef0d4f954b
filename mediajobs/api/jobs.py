"""Job submission and status API endpoints.

- POST /api/v1/jobs
- GET /api/v1/jobs
- GET /api/v1/jobs/{job_id}
- DELETE /api/v1/jobs/{job_id}
"""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import JSONResponse

from mediajobs.api.schemas import (
    ErrorDetail,
    JobListResponse,
    JobStatusResponse,
    JobSubmitRequest,
    JobSubmitResponse,
)
from mediajobs.models.job import Job, JobStatus
from mediajobs.services.job_queue import JobQueue
from mediajobs.services.job_service import JobService
from mediajobs.services.orchestrator import JobOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["jobs"])

# Upper bound for the synchronous wait mode, in seconds
MAX_WAIT_SECONDS = 600


# Dependency placeholders (to be configured in main app)
async def get_orchestrator() -> JobOrchestrator:
    """Get job orchestrator instance."""
    raise NotImplementedError("Job orchestrator dependency not configured")


async def get_job_service() -> JobService:
    """Get job service instance."""
    raise NotImplementedError("Job service dependency not configured")


async def get_job_queue() -> JobQueue:
    """Get job queue instance."""
    raise NotImplementedError("Job queue dependency not configured")


def artifact_url(job_id: str) -> str:
    return f"{router.prefix}/artifacts/{job_id}"


def build_status_response(job: Job, job_queue: Optional[JobQueue] = None) -> JobStatusResponse:
    """Convert a job to its wire representation."""
    queue_position = None
    if job.status == JobStatus.QUEUED:
        if job_queue is not None:
            queue_position = job_queue.get_queue_position(job.job_id)
        queue_position = queue_position or job.queue_position

    completed = job.status == JobStatus.COMPLETED

    return JobStatusResponse(
        job_id=job.job_id,
        status=job.status.value,
        progress=job.progress,
        source_reference=job.source_reference,
        created_at=job.created_at.isoformat(),
        started_at=job.started_at.isoformat() if job.started_at else None,
        completed_at=job.completed_at.isoformat() if job.completed_at else None,
        queue_position=queue_position,
        download_url=artifact_url(job.job_id) if completed else None,
        file_name=job.result_file_name if completed else None,
        file_size=job.file_size if completed else None,
        error=job.error_message,
        warning=job.warning,
    )


@router.post(
    "/jobs",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobSubmitResponse,
    response_model_exclude_none=True,
    responses={
        200: {"model": JobStatusResponse, "description": "Job finished within the wait window"},
        400: {"model": ErrorDetail, "description": "Invalid submission"},
        503: {"model": ErrorDetail, "description": "Queue full"},
    },
)
async def submit_job(
    request: JobSubmitRequest,
    wait: Optional[float] = Query(  # noqa: B008
        None,
        ge=0,
        le=MAX_WAIT_SECONDS,
        description="Seconds to wait for a terminal state before answering",
    ),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),  # noqa: B008
    job_queue: JobQueue = Depends(get_job_queue),  # noqa: B008
) -> Any:
    """
    Submit a media job.

    Returns 202 with the job id as soon as the job is queued. With ``wait``,
    returns 200 and the job status if the job finishes within that many
    seconds, otherwise the usual 202.
    """
    job = await orchestrator.submit(
        request.source_reference,
        requested_format=request.format,
        title=request.title,
        channel=request.channel,
        metadata=request.metadata,
        embed_thumbnail=request.embed_thumbnail,
    )

    logger.info(
        "job_submitted",
        job_id=job.job_id,
        source_reference=job.source_reference,
        wait=wait,
    )

    if wait:
        job = await orchestrator.wait_for(job.job_id, wait)
        if job.is_terminal():
            body = build_status_response(job, job_queue)
            return JSONResponse(
                status_code=status.HTTP_200_OK,
                content=body.model_dump(by_alias=True, exclude_none=True),
            )

    return JobSubmitResponse(
        job_id=job.job_id,
        status=job.status.value,
        created_at=job.created_at.isoformat(),
        queue_position=job_queue.get_queue_position(job.job_id) or job.queue_position,
    )


@router.get(
    "/jobs",
    response_model=JobListResponse,
    response_model_exclude_none=True,
)
async def list_jobs(
    status_filter: Optional[JobStatus] = Query(None, alias="status"),  # noqa: B008
    limit: int = Query(50, ge=1, le=500),  # noqa: B008
    job_service: JobService = Depends(get_job_service),  # noqa: B008
    job_queue: JobQueue = Depends(get_job_queue),  # noqa: B008
) -> Any:
    """List jobs, newest first."""
    jobs = job_service.list_jobs(status=status_filter, limit=limit)
    return JobListResponse(
        jobs=[build_status_response(job, job_queue) for job in jobs],
        total=len(jobs),
    )


@router.get(
    "/jobs/{job_id}",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
    responses={
        404: {"model": ErrorDetail, "description": "Job not found"},
    },
)
async def get_job_status(
    job_id: str,
    job_service: JobService = Depends(get_job_service),  # noqa: B008
    job_queue: JobQueue = Depends(get_job_queue),  # noqa: B008
) -> Any:
    """
    Get job status.

    - status: queued, running, post_processing, completed or failed
    - progress: 0-100
    - downloadUrl and fileName once completed
    - error once failed, warning if tagging was skipped
    """
    logger.debug("job_status_requested", job_id=job_id)

    job = job_service.get_job_or_raise(job_id)
    return build_status_response(job, job_queue)


@router.delete(
    "/jobs/{job_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={
        404: {"model": ErrorDetail, "description": "Job not found"},
        409: {"model": ErrorDetail, "description": "Job still active"},
    },
)
async def delete_job(
    job_id: str,
    job_service: JobService = Depends(get_job_service),  # noqa: B008
) -> Response:
    """Evict a finished job and delete its artifact."""
    job_service.delete_job(job_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
