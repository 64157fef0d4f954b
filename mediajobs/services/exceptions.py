"""Pipeline and job exceptions."""

from typing import Optional

STDERR_TAIL_LIMIT = 1000


def stderr_tail(stderr: str, limit: int = STDERR_TAIL_LIMIT) -> str:
    """Return the last ``limit`` characters of a diagnostic stream."""
    stderr = (stderr or "").strip()
    if len(stderr) <= limit:
        return stderr
    return stderr[-limit:]


class PipelineError(Exception):
    """Base exception for job pipeline errors."""

    pass


class SubmissionError(PipelineError):
    """Raised when a submission is rejected before a job is created.

    ``code`` is the machine-readable reason (INVALID_SOURCE, INVALID_FORMAT,
    INVALID_METADATA).
    """

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(message)


class ExtractionError(PipelineError):
    """Raised when the extraction tool exits non-zero or produces no artifact."""

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        self.exit_code = exit_code
        self.stderr = stderr_tail(stderr)
        super().__init__(message)


class ArtifactNotFoundError(ExtractionError):
    """Raised when extraction succeeded but no output file could be located."""

    pass


class PostProcessingError(PipelineError):
    """Raised when metadata tagging fails. Never fatal to a job."""

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        self.exit_code = exit_code
        self.stderr = stderr_tail(stderr)
        super().__init__(message)


class ProbeError(PipelineError):
    """Raised when an artifact cannot be inspected."""

    pass


class JobNotFoundError(PipelineError):
    """Raised when a job is not found."""

    pass


class JobStateError(PipelineError):
    """Raised on an illegal job status transition."""

    pass


class QueueFullError(PipelineError):
    """Raised when the job queue is at capacity."""

    pass


class AccessDeniedError(PipelineError):
    """Raised when an artifact reference escapes the output directory."""

    pass
