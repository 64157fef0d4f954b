"""Job store for asynchronous media jobs.

- In-memory job registry with UUID generation
- Guarded status transitions and monotonic progress
- Time-based expiry of finished jobs and their artifacts
"""

import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set

import structlog

from mediajobs.models.job import Job, JobStatus, TrackMetadata
from mediajobs.services.exceptions import JobNotFoundError, JobStateError

logger = structlog.get_logger(__name__)


ALLOWED_TRANSITIONS: Dict[JobStatus, Set[JobStatus]] = {
    JobStatus.QUEUED: {JobStatus.RUNNING, JobStatus.FAILED},
    JobStatus.RUNNING: {JobStatus.POST_PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.POST_PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

# Progress checkpoints outside the extraction tool's own percentage
PROGRESS_POST_PROCESSING = 95
PROGRESS_COMPLETE = 100


class JobService:
    """Service for managing media jobs.

    All mutations go through a single lock, so status polling always sees a
    consistent snapshot. Finished jobs are evicted after ``artifact_ttl_hours``
    (0 keeps them until restart).
    """

    def __init__(
        self,
        artifact_ttl_hours: float = 0,
        on_job_evicted: Optional[Callable[[Job], None]] = None,
    ) -> None:
        """Initialize the job service.

        Args:
            artifact_ttl_hours: Lifetime of finished jobs in hours, 0 disables expiry.
            on_job_evicted: Called with each job removed by expiry or deletion.
                            Used to delete the artifact from disk.
        """
        self.artifact_ttl_hours = artifact_ttl_hours
        self._jobs: Dict[str, Job] = {}
        self._issued_ids: Set[str] = set()
        self._lock = threading.RLock()
        self._on_job_evicted = on_job_evicted

        logger.debug(
            "job_service_initialized",
            artifact_ttl_hours=artifact_ttl_hours,
        )

    def create_job(
        self,
        source_reference: str,
        requested_format: str = "mp3",
        metadata: Optional[TrackMetadata] = None,
        title: Optional[str] = None,
        channel: Optional[str] = None,
        embed_thumbnail: bool = False,
    ) -> Job:
        """Create a new job in QUEUED state.

        Returns:
            The created Job object.
        """
        with self._lock:
            job_id = str(uuid.uuid4())
            while job_id in self._issued_ids:
                job_id = str(uuid.uuid4())
            self._issued_ids.add(job_id)

            job = Job(
                job_id=job_id,
                source_reference=source_reference,
                requested_format=requested_format,
                metadata=metadata or TrackMetadata(),
                title=title,
                channel=channel,
                embed_thumbnail=embed_thumbnail,
                status=JobStatus.QUEUED,
                created_at=datetime.now(timezone.utc),
            )
            self._jobs[job_id] = job

        logger.info(
            "job_created",
            job_id=job_id,
            source_reference=source_reference,
            format=requested_format,
            embed_thumbnail=embed_thumbnail,
        )

        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def get_job_or_raise(self, job_id: str) -> Job:
        """Get a job by ID or raise an error.

        Raises:
            JobNotFoundError: If the job is not found.
        """
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    def _transition(self, job_id: str, status: JobStatus) -> Job:
        """Move a job to ``status``. Must be called with the lock held."""
        job = self.get_job_or_raise(job_id)
        old_status = job.status
        if status not in ALLOWED_TRANSITIONS[old_status]:
            raise JobStateError(
                f"Job {job_id} cannot move from {old_status.value} to {status.value}"
            )
        job.status = status
        return job

    def start_running(self, job_id: str) -> Job:
        """Mark a job as running when its extraction process is spawned."""
        with self._lock:
            job = self._transition(job_id, JobStatus.RUNNING)
            job.started_at = datetime.now(timezone.utc)
            job.queue_position = None

        logger.info("job_status_updated", job_id=job_id, new_status=job.status.value)
        return job

    def update_progress(self, job_id: str, progress: int) -> Job:
        """Raise a job's progress percentage.

        Lower values are ignored, and so are updates to jobs that are not
        running or post-processing.
        """
        with self._lock:
            job = self.get_job_or_raise(job_id)
            if job.status not in (JobStatus.RUNNING, JobStatus.POST_PROCESSING):
                return job
            progress = max(0, min(PROGRESS_COMPLETE, int(progress)))
            if progress > job.progress:
                job.progress = progress
                logger.debug("job_progress_updated", job_id=job_id, progress=progress)

        return job

    def start_post_processing(self, job_id: str) -> Job:
        with self._lock:
            job = self._transition(job_id, JobStatus.POST_PROCESSING)
            job.progress = max(job.progress, PROGRESS_POST_PROCESSING)

        logger.info("job_status_updated", job_id=job_id, new_status=job.status.value)
        return job

    def record_warning(self, job_id: str, warning: str) -> Job:
        """Attach a non-fatal problem report (e.g. tagging failed) to a job."""
        with self._lock:
            job = self.get_job_or_raise(job_id)
            job.warning = warning
        return job

    def complete_job(
        self,
        job_id: str,
        result_path: str,
        file_name: str,
        file_size: int,
    ) -> Job:
        """Mark a job as completed with result details."""
        with self._lock:
            job = self._transition(job_id, JobStatus.COMPLETED)
            job.result_path = result_path
            job.result_file_name = file_name
            job.file_size = file_size
            job.progress = PROGRESS_COMPLETE
            job.completed_at = datetime.now(timezone.utc)

        logger.info(
            "job_status_updated",
            job_id=job_id,
            new_status=job.status.value,
            file_name=file_name,
            file_size=file_size,
        )
        return job

    def fail_job(self, job_id: str, error_message: str) -> Job:
        """Mark a job as failed. Progress keeps its last observed value."""
        with self._lock:
            job = self._transition(job_id, JobStatus.FAILED)
            job.error_message = error_message or "Job failed"
            job.completed_at = datetime.now(timezone.utc)
            job.queue_position = None

        logger.info(
            "job_status_updated",
            job_id=job_id,
            new_status=job.status.value,
            error_message=job.error_message,
        )
        return job

    def set_queue_position(self, job_id: str, position: Optional[int]) -> Job:
        with self._lock:
            job = self.get_job_or_raise(job_id)
            if job.status == JobStatus.QUEUED:
                job.queue_position = position
        return job

    def delete_job(self, job_id: str) -> Job:
        """Evict a finished job and its artifact.

        Raises:
            JobNotFoundError: If the job is not found.
            JobStateError: If the job has not reached a terminal state.
        """
        with self._lock:
            job = self.get_job_or_raise(job_id)
            if not job.is_terminal():
                raise JobStateError(f"Job {job_id} is still {job.status.value}")
            del self._jobs[job_id]

        self._evict(job)
        logger.info("job_deleted", job_id=job_id)
        return job

    def discard_job(self, job_id: str) -> None:
        """Drop a job that was never scheduled (e.g. rejected by a full queue)."""
        with self._lock:
            self._jobs.pop(job_id, None)

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 100,
    ) -> List[Job]:
        """List jobs, optionally filtered by status, newest first."""
        with self._lock:
            jobs = list(self._jobs.values())

        if status is not None:
            jobs = [j for j in jobs if j.status == status]

        jobs.sort(key=lambda j: j.created_at, reverse=True)

        return jobs[:limit]

    def get_active_job_count(self) -> int:
        with self._lock:
            return sum(1 for job in self._jobs.values() if not job.is_terminal())

    def get_job_count(self) -> int:
        return len(self._jobs)

    def cleanup_expired_jobs(self, now: Optional[datetime] = None) -> int:
        """Remove finished jobs older than the TTL, deleting their artifacts.

        Active jobs are preserved. Does nothing when the TTL is 0.

        Returns:
            Number of jobs removed.
        """
        if self.artifact_ttl_hours <= 0:
            return 0

        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=self.artifact_ttl_hours)

        with self._lock:
            expired = [
                job
                for job in self._jobs.values()
                if job.is_terminal()
                and job.completed_at is not None
                and job.completed_at <= cutoff
            ]
            for job in expired:
                del self._jobs[job.job_id]

        for job in expired:
            self._evict(job)

        if expired:
            logger.info(
                "expired_jobs_cleaned",
                count=len(expired),
                ttl_hours=self.artifact_ttl_hours,
            )

        return len(expired)

    def _evict(self, job: Job) -> None:
        if self._on_job_evicted is None:
            return
        try:
            self._on_job_evicted(job)
        except Exception as e:
            logger.warning(
                "job_eviction_callback_failed",
                job_id=job.job_id,
                error=str(e),
            )
