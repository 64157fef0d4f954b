"""Job data models for asynchronous media acquisition tracking."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class JobStatus(str, Enum):
    """Status of a media job.

    State transitions:
    - QUEUED -> RUNNING: When a worker spawns the extraction tool
    - RUNNING -> POST_PROCESSING: When extraction succeeded and tagging was requested
    - RUNNING -> COMPLETED: When extraction succeeded and no tagging is needed
    - POST_PROCESSING -> COMPLETED: After tagging, successful or not
    - any non-terminal -> FAILED: On an unrecoverable error
    """

    QUEUED = "queued"
    RUNNING = "running"
    POST_PROCESSING = "post_processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


@dataclass
class TrackMetadata:
    """Metadata overrides written as container tags during post-processing."""

    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    track: Optional[str] = None
    year: Optional[str] = None
    genre: Optional[str] = None
    comment: Optional[str] = None

    def tags(self) -> Dict[str, str]:
        """Non-empty overrides, in a stable field order."""
        return {key: value for key, value in asdict(self).items() if value}

    def is_empty(self) -> bool:
        return not self.tags()


@dataclass
class Job:
    """Represents one request to acquire and finalize a single media artifact.

    Jobs live in memory only. ``result_path`` is set only on COMPLETED and
    ``error_message`` only on FAILED.
    """

    job_id: str
    source_reference: str
    requested_format: str = "mp3"
    metadata: TrackMetadata = field(default_factory=TrackMetadata)
    title: Optional[str] = None
    channel: Optional[str] = None
    embed_thumbnail: bool = False
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0  # 0-100 percentage
    base_name: Optional[str] = None
    result_path: Optional[str] = None
    result_file_name: Optional[str] = None
    file_size: Optional[int] = None
    error_message: Optional[str] = None
    warning: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    queue_position: Optional[int] = None

    def is_terminal(self) -> bool:
        """Check if the job is in a terminal state (completed or failed)."""
        return self.status in TERMINAL_STATUSES

    def needs_post_processing(self) -> bool:
        return self.embed_thumbnail or not self.metadata.is_empty()

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to a plain dictionary."""
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "source_reference": self.source_reference,
            "format": self.requested_format,
            "progress": self.progress,
            "file_name": self.result_file_name,
            "file_size": self.file_size,
            "error_message": self.error_message,
            "warning": self.warning,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "queue_position": self.queue_position,
        }
