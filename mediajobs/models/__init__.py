"""Data models for the application."""

from mediajobs.models.job import Job, JobStatus, TrackMetadata

__all__ = [
    "Job",
    "JobStatus",
    "TrackMetadata",
]
