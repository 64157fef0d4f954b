"""API endpoints."""

from mediajobs.api import artifacts, health, jobs, metrics

__all__ = [
    "artifacts",
    "health",
    "jobs",
    "metrics",
]
