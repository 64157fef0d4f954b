"""System resource checks.

Artifacts accumulate in the output directory until they expire, so low
disk space is reported at startup before jobs start failing mid-write.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import psutil
import structlog

logger = structlog.get_logger(__name__)

GB = 1024**3


@dataclass
class ResourceUsage:
    """Current system resource usage.

    Attributes:
        memory_available_gb: Available memory in GB.
        memory_percent: Memory usage percentage (0-100).
        disk_total_gb: Total disk space in GB for the checked path.
        disk_available_gb: Available disk space in GB.
        disk_percent: Disk usage percentage (0-100).
    """

    memory_available_gb: float
    memory_percent: float
    disk_total_gb: float
    disk_available_gb: float
    disk_percent: float


@dataclass
class ResourceRequirements:
    """Thresholds in GB below which a resource is reported."""

    min_memory_gb: float = 0.25
    min_disk_gb: float = 1.0
    warn_memory_gb: float = 0.5
    warn_disk_gb: float = 5.0


@dataclass
class ResourceCheckResult:
    passed: bool
    usage: ResourceUsage
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def get_current_usage(disk_path: Optional[str] = None) -> ResourceUsage:
    """Get memory usage and disk usage for ``disk_path`` (root filesystem if missing)."""
    memory = psutil.virtual_memory()

    path = Path(disk_path) if disk_path else Path("/")
    if not path.exists():
        path = Path("/")
    disk = psutil.disk_usage(str(path))

    return ResourceUsage(
        memory_available_gb=round(memory.available / GB, 2),
        memory_percent=round(memory.percent, 1),
        disk_total_gb=round(disk.total / GB, 2),
        disk_available_gb=round(disk.free / GB, 2),
        disk_percent=round(disk.percent, 1),
    )


def check_minimum_resources(
    disk_path: Optional[str] = None,
    requirements: Optional[ResourceRequirements] = None,
) -> ResourceCheckResult:
    """Compare current usage against ``requirements``.

    Args:
        disk_path: Directory whose filesystem is checked.
        requirements: Thresholds. Uses defaults if not specified.

    Returns:
        ResourceCheckResult; ``passed`` is False when a minimum is not met.
    """
    requirements = requirements or ResourceRequirements()
    usage = get_current_usage(disk_path)
    errors: List[str] = []
    warnings: List[str] = []

    if usage.memory_available_gb < requirements.min_memory_gb:
        errors.append(
            f"Insufficient memory: {usage.memory_available_gb:.1f}GB available, "
            f"minimum {requirements.min_memory_gb:.1f}GB required"
        )
    elif usage.memory_available_gb < requirements.warn_memory_gb:
        warnings.append(
            f"Low memory: {usage.memory_available_gb:.1f}GB available, "
            f"recommended {requirements.warn_memory_gb:.1f}GB"
        )

    if usage.disk_available_gb < requirements.min_disk_gb:
        errors.append(
            f"Insufficient disk space: {usage.disk_available_gb:.1f}GB available, "
            f"minimum {requirements.min_disk_gb:.1f}GB required"
        )
    elif usage.disk_available_gb < requirements.warn_disk_gb:
        warnings.append(
            f"Low disk space: {usage.disk_available_gb:.1f}GB available, "
            f"recommended {requirements.warn_disk_gb:.1f}GB"
        )

    if errors:
        logger.error("resource_check_failed", errors=errors, disk_available_gb=usage.disk_available_gb)
    elif warnings:
        logger.warning("resource_check_warnings", warnings=warnings, disk_available_gb=usage.disk_available_gb)
    else:
        logger.info(
            "resource_check_passed",
            memory_available_gb=usage.memory_available_gb,
            disk_available_gb=usage.disk_available_gb,
        )

    return ResourceCheckResult(passed=not errors, usage=usage, errors=errors, warnings=warnings)
