"""Startup validation for the application.

Checks the external tools and the output directory before the service
accepts jobs. Supports a degraded mode in which a missing tagging tool
only disables tagging instead of blocking startup.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from mediajobs.core.checks import check_ffmpeg, check_ffprobe, check_ytdlp
from mediajobs.core.config import Config
from mediajobs.core.resources import check_minimum_resources

logger = structlog.get_logger(__name__)


@dataclass
class ComponentCheckResult:
    """Result of a startup component check.

    Attributes:
        name: Component name (e.g., "ytdlp", "ffmpeg", "storage")
        passed: Whether the check passed
        critical: If True, failure blocks startup (unless degraded mode)
        version: Version string if available
        message: Human-readable message about the result
        details: Additional details about the check
    """

    name: str
    passed: bool
    critical: bool
    version: Optional[str] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StartupResult:
    """Result of full startup validation.

    Attributes:
        success: Whether startup can proceed
        degraded_mode: Whether the application is running in degraded mode
        checks: List of individual component check results
        disabled_features: Pipeline features switched off by degraded mode
        errors: List of error messages for critical failures
        warnings: List of warning messages for non-critical issues
    """

    success: bool
    degraded_mode: bool
    checks: List[ComponentCheckResult] = field(default_factory=list)
    disabled_features: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class StartupValidator:
    """Validates system components at startup.

    - yt-dlp: required, extraction cannot run without it
    - ffmpeg: required unless degraded start is allowed, then tagging is disabled
    - ffprobe: optional, only the artifact metadata endpoint needs it
    - storage: output directory creation and write permissions
    - resources: free memory and disk space, reported but never blocking
    """

    # Components that must be available even in degraded mode
    ALWAYS_CRITICAL_COMPONENTS = {"ytdlp", "storage"}

    # Feature switched off when a component fails in degraded mode
    COMPONENT_FEATURES = {"ffmpeg": "tagging", "ffprobe": "probe"}

    def __init__(self, config: Config):
        self.config = config
        self.allow_degraded = config.security.allow_degraded_start
        self.results: List[ComponentCheckResult] = []
        self.disabled_features: List[str] = []
        self.errors: List[str] = []
        self.warnings: List[str] = []

    async def validate_all(self) -> StartupResult:
        """Run all startup validations.

        Returns:
            StartupResult with overall status and component details.
        """
        logger.info(
            "startup_validation_started",
            allow_degraded_start=self.allow_degraded,
        )

        self.results = []
        self.disabled_features = []
        self.errors = []
        self.warnings = []

        await self._run_checks()

        critical_failures = [r for r in self.results if not r.passed and r.critical]
        non_critical_failures = [r for r in self.results if not r.passed and not r.critical]

        if critical_failures:
            if self.allow_degraded:
                truly_critical = [
                    r for r in critical_failures if r.name in self.ALWAYS_CRITICAL_COMPONENTS
                ]
                if truly_critical:
                    for r in truly_critical:
                        self.errors.append(f"{r.name}: {r.message}")
                    success = False
                    degraded_mode = False
                else:
                    for r in critical_failures:
                        self.warnings.append(f"{r.name}: {r.message}")
                        feature = self.COMPONENT_FEATURES.get(r.name)
                        if feature:
                            self.disabled_features.append(feature)
                    success = True
                    degraded_mode = True
            else:
                for r in critical_failures:
                    self.errors.append(f"{r.name}: {r.message}")
                success = False
                degraded_mode = False
        else:
            success = True
            degraded_mode = False

        for r in non_critical_failures:
            self.warnings.append(f"{r.name}: {r.message}")
            feature = self.COMPONENT_FEATURES.get(r.name)
            if feature and feature not in self.disabled_features:
                self.disabled_features.append(feature)

        result = StartupResult(
            success=success,
            degraded_mode=degraded_mode,
            checks=self.results,
            disabled_features=self.disabled_features,
            errors=self.errors,
            warnings=self.warnings,
        )

        log_method = logger.info if success else logger.error
        log_method(
            "startup_validation_completed",
            success=success,
            degraded_mode=degraded_mode,
            disabled_features=self.disabled_features,
            error_count=len(self.errors),
            warning_count=len(self.warnings),
        )

        return result

    async def _run_checks(self) -> None:
        self.results.append(await self.check_ytdlp())
        self.results.append(await self.check_ffmpeg())
        self.results.append(await self.check_ffprobe())
        self.results.append(await self.check_storage())
        self.results.append(self.check_resources())

    async def check_ytdlp(self) -> ComponentCheckResult:
        """Check yt-dlp availability and version.

        This is a CRITICAL check - startup fails if yt-dlp is not available.
        """
        result = await check_ytdlp(
            binary=self.config.extraction.binary,
            timeout=self.config.timeouts.check,
        )

        if result.available:
            logger.info("ytdlp_check_passed", version=result.version)
            return ComponentCheckResult(
                name="ytdlp",
                passed=True,
                critical=True,
                version=result.version,
                message="yt-dlp is available",
            )

        logger.error("ytdlp_check_failed", error=result.error)
        return ComponentCheckResult(
            name="ytdlp",
            passed=False,
            critical=True,
            message=result.error or "yt-dlp is not available",
        )

    async def check_ffmpeg(self) -> ComponentCheckResult:
        """Check ffmpeg availability and version."""
        result = await check_ffmpeg(
            binary=self.config.postprocessing.binary,
            timeout=self.config.timeouts.check,
        )

        if result.available:
            logger.info("ffmpeg_check_passed", version=result.version)
            return ComponentCheckResult(
                name="ffmpeg",
                passed=True,
                critical=True,
                version=result.version,
                message="ffmpeg is available",
            )

        logger.error("ffmpeg_check_failed", error=result.error)
        return ComponentCheckResult(
            name="ffmpeg",
            passed=False,
            critical=True,
            message=result.error or "ffmpeg is not available",
        )

    async def check_ffprobe(self) -> ComponentCheckResult:
        result = await check_ffprobe(
            binary=self.config.postprocessing.probe_binary,
            timeout=self.config.timeouts.check,
        )

        if result.available:
            logger.info("ffprobe_check_passed", version=result.version)
            return ComponentCheckResult(
                name="ffprobe",
                passed=True,
                critical=False,
                version=result.version,
                message="ffprobe is available",
            )

        logger.warning("ffprobe_check_failed", error=result.error)
        return ComponentCheckResult(
            name="ffprobe",
            passed=False,
            critical=False,
            message=result.error or "ffprobe is not available",
        )

    async def check_storage(self) -> ComponentCheckResult:
        """Check storage directory availability and permissions.

        This is a CRITICAL check - startup fails if storage is not writable.
        Creates the output directory if it doesn't exist.
        """
        output_dir = Path(self.config.storage.output_dir)

        try:
            if not output_dir.exists():
                output_dir.mkdir(parents=True, exist_ok=True)
                logger.info("output_directory_created", path=str(output_dir))

            test_file = output_dir / f".write_test_{os.getpid()}"
            try:
                test_file.touch()
                test_file.unlink(missing_ok=True)
            except PermissionError:
                logger.error("storage_permission_error", path=str(output_dir))
                return ComponentCheckResult(
                    name="storage",
                    passed=False,
                    critical=True,
                    message=f"Cannot write to output directory: {output_dir}",
                )

            logger.info("storage_check_passed", path=str(output_dir))
            return ComponentCheckResult(
                name="storage",
                passed=True,
                critical=True,
                message="Storage is available and writable",
                details={"output_dir": str(output_dir)},
            )

        except OSError as e:
            logger.error("storage_check_failed", path=str(output_dir), error=str(e))
            return ComponentCheckResult(
                name="storage",
                passed=False,
                critical=True,
                message=f"Storage check failed: {e}",
            )

    def check_resources(self) -> ComponentCheckResult:
        try:
            result = check_minimum_resources(self.config.storage.output_dir)
        except OSError as e:
            return ComponentCheckResult(
                name="resources",
                passed=False,
                critical=False,
                message=f"Resource check failed: {e}",
            )

        problems = result.errors + result.warnings
        return ComponentCheckResult(
            name="resources",
            passed=not problems,
            critical=False,
            message="; ".join(problems) if problems else "Resources are sufficient",
            details={
                "memory_available_gb": result.usage.memory_available_gb,
                "disk_available_gb": result.usage.disk_available_gb,
            },
        )
