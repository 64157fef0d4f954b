"""Output directory management, artifact lookup and housekeeping.

- Output directory creation and write check
- Safe resolution of artifact names inside the output directory
- Removal of evicted artifacts
- Sweep of leftover tagging temp files and orphaned sidecar images
"""

import asyncio
import os
import shutil
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Optional, Set

import structlog

from mediajobs.core.config import StorageConfig
from mediajobs.core.metrics import MetricsCollector
from mediajobs.models.job import Job
from mediajobs.services.exceptions import AccessDeniedError, ArtifactNotFoundError
from mediajobs.services.filenames import SIDECAR_EXTENSIONS, TEMP_MARKER, is_temp_file

if TYPE_CHECKING:
    from mediajobs.services.job_service import JobService

logger = structlog.get_logger(__name__)


@dataclass
class DiskUsage:
    """Disk usage statistics."""

    total: int
    used: int
    available: int
    percent_used: float


@dataclass
class CleanupResult:
    """Result of a stale file sweep."""

    files_deleted: int
    bytes_reclaimed: int
    files_preserved: int


class StorageError(Exception):
    """Exception raised for storage-related errors."""

    pass


class StorageManager:
    """Owns the shared output directory."""

    def __init__(self, config: StorageConfig) -> None:
        self.config = config
        self.output_dir = Path(config.output_dir)
        self.stale_file_age = config.stale_file_age

        # Base names in use by in-flight jobs (job_id -> stems)
        self._active_jobs: Dict[str, Set[str]] = {}

        logger.debug(
            "storage_manager_initialized",
            output_dir=str(self.output_dir),
            stale_file_age=self.stale_file_age,
        )

    def initialize(self) -> None:
        """Create the output directory if needed and verify it is writable.

        Raises:
            StorageError: If directory creation fails or permissions are insufficient.
        """
        try:
            if not self.output_dir.exists():
                self.output_dir.mkdir(parents=True, exist_ok=True)
                logger.info("output_directory_created", path=str(self.output_dir))

            test_file = self.output_dir / f".write_test_{os.getpid()}_{uuid.uuid4().hex}"
            try:
                test_file.touch()
                test_file.unlink(missing_ok=True)
            except PermissionError as e:
                raise StorageError(
                    f"Insufficient permissions to write to output directory: {self.output_dir}"
                ) from e

            logger.info("storage_initialized", output_dir=str(self.output_dir), writable=True)

        except OSError as e:
            raise StorageError(f"Failed to initialize output directory: {e}") from e

    def get_disk_usage(self) -> DiskUsage:
        """Get current disk usage for the output directory.

        Raises:
            StorageError: If the filesystem cannot be queried.
        """
        try:
            usage = shutil.disk_usage(self.output_dir)
            percent_used = (usage.used / usage.total) * 100 if usage.total > 0 else 0.0

            return DiskUsage(
                total=usage.total,
                used=usage.used,
                available=usage.free,
                percent_used=round(percent_used, 2),
            )
        except OSError as e:
            logger.error("disk_usage_check_failed", error=str(e))
            raise StorageError(f"Failed to get disk usage: {e}") from e

    def register_active_job(self, job_id: str, base_name: str) -> None:
        """Protect files named after ``base_name`` from the stale sweep."""
        self._active_jobs.setdefault(job_id, set()).add(base_name)
        logger.debug("base_name_registered_to_job", job_id=job_id, base_name=base_name)

    def unregister_active_job(self, job_id: str) -> None:
        if self._active_jobs.pop(job_id, None) is not None:
            logger.debug("job_unregistered", job_id=job_id)

    def is_file_active(self, filepath: Path) -> bool:
        """Check if a file belongs to an in-flight job."""
        name = filepath.name
        if is_temp_file(filepath):
            name = name[1:].split(TEMP_MARKER)[0]
        return any(
            name == base_name or name.startswith(f"{base_name}.")
            for base_names in self._active_jobs.values()
            for base_name in base_names
        )

    def get_active_job_count(self) -> int:
        return len(self._active_jobs)

    def resolve_artifact_path(self, name: str) -> Path:
        """Resolve a bare file name to an existing artifact in the output directory.

        Raises:
            AccessDeniedError: If the name points outside the output directory.
            ArtifactNotFoundError: If no such artifact exists or an in-flight job
                is still writing it.
        """
        if not name or "/" in name or "\\" in name or "\x00" in name or name in (".", ".."):
            logger.warning("artifact_access_denied", name=name)
            raise AccessDeniedError(f"Invalid artifact name: {name!r}")

        root = self.output_dir.resolve()
        path = (root / name).resolve()
        if path.parent != root:
            logger.warning("artifact_access_denied", name=name)
            raise AccessDeniedError(f"Invalid artifact name: {name!r}")

        if name.startswith(".") or not path.is_file():
            raise ArtifactNotFoundError(f"Artifact not found: {name}")
        if self.is_file_active(path):
            logger.info("artifact_in_progress", name=name)
            raise ArtifactNotFoundError(f"Artifact is still being produced: {name}")
        return path

    def delete_artifact(self, path: Path) -> bool:
        """Delete an artifact inside the output directory.

        Returns:
            True if a file was removed.
        """
        try:
            resolved = path.resolve()
        except OSError:
            return False
        if resolved.parent != self.output_dir.resolve():
            logger.warning("artifact_delete_refused", path=str(path))
            return False
        try:
            resolved.unlink()
        except FileNotFoundError:
            return False
        logger.info("artifact_deleted", path=str(resolved))
        return True

    def remove_job_artifact(self, job: Job) -> None:
        """Eviction hook for JobService: delete the job's file, if any."""
        if job.result_path:
            self.delete_artifact(Path(job.result_path))

    def cleanup_stale_files(self) -> CleanupResult:
        """Remove leftover tagging temp files and orphaned sidecar images.

        Only files older than ``stale_file_age`` seconds that do not belong to
        an in-flight job are removed. Artifacts themselves are left to expiry.
        """
        files_deleted = 0
        bytes_reclaimed = 0
        files_preserved = 0
        now = time.time()

        try:
            entries = list(self.output_dir.iterdir())
        except OSError as e:
            logger.error("cleanup_directory_access_failed", error=str(e))
            return CleanupResult(0, 0, 0)

        for filepath in entries:
            if not filepath.is_file():
                continue
            is_sidecar = filepath.suffix.lower() in SIDECAR_EXTENSIONS and not filepath.name.startswith(".")
            if not (is_temp_file(filepath) or is_sidecar):
                continue

            try:
                stat = filepath.stat()
                if now - stat.st_mtime < self.stale_file_age:
                    continue
                if self.is_file_active(filepath):
                    files_preserved += 1
                    continue

                filepath.unlink()
                files_deleted += 1
                bytes_reclaimed += stat.st_size
                logger.info("stale_file_deleted", filepath=str(filepath), size_bytes=stat.st_size)
            except OSError as e:
                logger.warning("file_cleanup_failed", filepath=str(filepath), error=str(e))

        if files_deleted:
            logger.info(
                "stale_cleanup_completed",
                files_deleted=files_deleted,
                bytes_reclaimed=bytes_reclaimed,
                files_preserved=files_preserved,
            )

        return CleanupResult(
            files_deleted=files_deleted,
            bytes_reclaimed=bytes_reclaimed,
            files_preserved=files_preserved,
        )

    def update_metrics(self) -> None:
        try:
            usage = self.get_disk_usage()
        except StorageError:
            return
        MetricsCollector.update_storage_metrics(used=usage.used, available=usage.available)


async def sweep_scheduler(
    storage: StorageManager,
    job_service: "JobService",
    interval: int = 300,
    run_once: bool = False,
) -> Optional[int]:
    """Run artifact expiry and stale file cleanup periodically.

    Args:
        storage: StorageManager owning the output directory.
        job_service: JobService whose finished jobs are expired.
        interval: Seconds between sweeps.
        run_once: If True, run only one cycle (for testing).

    Returns:
        Number of expired jobs if run_once is True, None otherwise.
    """
    logger.info(
        "sweep_scheduler_started",
        interval_seconds=interval,
        artifact_ttl_hours=job_service.artifact_ttl_hours,
    )

    while True:
        await asyncio.sleep(interval)

        expired = job_service.cleanup_expired_jobs()
        MetricsCollector.record_artifacts_expired(expired)

        result = storage.cleanup_stale_files()
        MetricsCollector.record_stale_files_removed(result.files_deleted)

        storage.update_metrics()

        if run_once:
            return expired
