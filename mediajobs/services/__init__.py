"""Service layer implementations."""

from mediajobs.services.exceptions import (
    AccessDeniedError,
    ArtifactNotFoundError,
    ExtractionError,
    JobNotFoundError,
    JobStateError,
    PipelineError,
    PostProcessingError,
    ProbeError,
    QueueFullError,
    SubmissionError,
)
from mediajobs.services.filenames import FilenameResolver, build_base_name, sanitize_component
from mediajobs.services.job_queue import JobQueue
from mediajobs.services.job_service import JobService

__all__ = [
    # Errors
    "AccessDeniedError",
    "ArtifactNotFoundError",
    "ExtractionError",
    "JobNotFoundError",
    "JobStateError",
    "PipelineError",
    "PostProcessingError",
    "ProbeError",
    "QueueFullError",
    "SubmissionError",
    # File names
    "FilenameResolver",
    "build_base_name",
    "sanitize_component",
    # Jobs
    "JobQueue",
    "JobService",
]
