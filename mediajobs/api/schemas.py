"""Request and response schemas for API endpoints.

Job payloads use camelCase on the wire. Health and error payloads keep
snake_case field names.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases, accepting either form on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobSubmitRequest(CamelModel):
    """Request body for job submission.

    Source, format and metadata are checked by the orchestrator so that bad
    values are reported as 400 with a specific error code.
    """

    source_reference: Optional[str] = Field(
        None,
        description="Video id or YouTube URL",
        examples=["dQw4w9WgXcQ", "https://youtu.be/dQw4w9WgXcQ"],
    )
    format: Optional[str] = Field("mp3", description="Output format", examples=["mp3"])
    title: Optional[str] = Field(None, description="Title used for the file name", examples=["Song Title"])
    channel: Optional[str] = Field(
        None, description="Channel used for the file name", examples=["Channel Name"]
    )
    metadata: Optional[Dict[str, Any]] = Field(
        None,
        description="Tag overrides: title, artist, album, track, year, genre, comment",
        examples=[{"artist": "Channel Name", "year": "2024"}],
    )
    embed_thumbnail: Optional[bool] = Field(
        None, description="Embed the video thumbnail as cover art (server default if omitted)"
    )


class JobSubmitResponse(CamelModel):
    """Response for an accepted submission (HTTP 202)."""

    job_id: str = Field(..., examples=["550e8400-e29b-41d4-a716-446655440000"])
    status: str = Field(..., examples=["queued"])
    created_at: str = Field(..., examples=["2026-01-15T10:30:00+00:00"])
    queue_position: Optional[int] = Field(None, examples=[1])


class JobStatusResponse(CamelModel):
    """Snapshot of a job for polling clients."""

    job_id: str = Field(..., examples=["550e8400-e29b-41d4-a716-446655440000"])
    status: Literal["queued", "running", "post_processing", "completed", "failed"] = Field(
        ..., examples=["running"]
    )
    progress: int = Field(..., description="Progress percentage (0-100)", examples=[42])
    source_reference: Optional[str] = Field(None, examples=["dQw4w9WgXcQ"])
    created_at: str = Field(..., examples=["2026-01-15T10:30:00+00:00"])
    started_at: Optional[str] = Field(None, examples=["2026-01-15T10:30:01+00:00"])
    completed_at: Optional[str] = Field(None, examples=["2026-01-15T10:30:40+00:00"])
    queue_position: Optional[int] = Field(None, examples=[2])
    download_url: Optional[str] = Field(
        None, examples=["/api/v1/artifacts/550e8400-e29b-41d4-a716-446655440000"]
    )
    file_name: Optional[str] = Field(None, examples=["Channel Name - Song Title.mp3"])
    file_size: Optional[int] = Field(None, examples=[5242880])
    error: Optional[str] = Field(None, examples=["yt-dlp exited with code 1: ERROR: Video unavailable"])
    warning: Optional[str] = Field(None, examples=["Metadata tagging failed, file delivered untagged"])


class JobListResponse(CamelModel):
    jobs: List[JobStatusResponse]
    total: int = Field(..., examples=[1])


class ArtifactMetadataResponse(CamelModel):
    """Container, stream and tag details of an artifact."""

    file_name: str = Field(..., examples=["Channel Name - Song Title.mp3"])
    duration: float = Field(..., description="Duration in seconds", examples=[212.4])
    bitrate: int = Field(..., examples=[192000])
    size: int = Field(..., examples=[5242880])
    container: str = Field(..., examples=["mp3"])
    audio_codec: str = Field(..., examples=["mp3"])
    sample_rate: int = Field(..., examples=[48000])
    channels: int = Field(..., examples=[2])
    has_cover: bool = Field(..., examples=[True])
    tags: Dict[str, str] = Field(..., examples=[{"title": "Song Title", "artist": "Channel Name"}])


class ComponentHealth(BaseModel):
    """Health status of a single component."""

    status: Literal["healthy", "unhealthy"] = Field(..., examples=["healthy"])
    version: Optional[str] = Field(default=None, examples=["2026.01.01"])
    details: Optional[Dict[str, Any]] = Field(default=None, examples=[{"available_gb": 12.5}])


class HealthResponse(BaseModel):
    """Detailed health check response."""

    status: Literal["healthy", "unhealthy"] = Field(..., examples=["healthy"])
    timestamp: str = Field(..., examples=["2026-01-15T10:30:00+00:00"])
    version: str = Field(..., examples=["1.0.0"])
    uptime_seconds: float = Field(..., examples=[3600.5])
    components: Dict[str, ComponentHealth]


class LivenessResponse(BaseModel):
    """Simple liveness check response for container orchestration."""

    status: Literal["alive"] = Field(..., examples=["alive"])


class ReadinessResponse(BaseModel):
    """Readiness check response for load balancer integration."""

    status: Literal["ready", "not_ready"] = Field(..., examples=["ready"])
    ready: bool = Field(..., examples=[True])
    message: Optional[str] = Field(default=None, examples=["yt-dlp not available"])


class ErrorDetail(BaseModel):
    """Structured error response.

    All API errors follow this format with machine-readable error codes
    and optional suggestions for resolution.
    """

    error_code: str = Field(
        ...,
        description="Machine-readable error code",
        examples=["INVALID_SOURCE", "JOB_NOT_FOUND", "QUEUE_FULL"],
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
        examples=["Job not found: 550e8400-e29b-41d4-a716-446655440000"],
    )
    details: Optional[str] = Field(None, description="Additional error context")
    timestamp: str = Field(..., examples=["2026-01-15T10:30:00+00:00"])
    request_id: Optional[str] = Field(
        None,
        description="Request ID for tracing",
        examples=["req_550e8400e29b"],
    )
    suggestion: Optional[str] = Field(
        None,
        description="Suggested action to resolve the error",
        examples=["The job ID does not exist or has expired"],
    )
