"""FastAPI application entry point.

This module assembles all components and creates the main application.
"""

import asyncio
import contextlib
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from mediajobs import __version__
from mediajobs.api import artifacts, health, jobs, metrics
from mediajobs.core.config import Config, ConfigService, MonitoringConfig, SecurityConfig, ServerConfig
from mediajobs.core.errors import APIError, global_exception_handler
from mediajobs.core.logging import clear_request_id, configure_logging, set_request_id
from mediajobs.core.metrics import MetricsCollector, endpoint_label, initialize_metrics
from mediajobs.core.startup import StartupValidator
from mediajobs.services.exceptions import PipelineError
from mediajobs.services.extraction import ExtractionRunner
from mediajobs.services.filenames import FilenameResolver
from mediajobs.services.job_queue import JobQueue
from mediajobs.services.job_service import JobService
from mediajobs.services.orchestrator import JobOrchestrator
from mediajobs.services.postprocessing import PostProcessingRunner
from mediajobs.services.probe import ArtifactProbe
from mediajobs.services.storage import StorageManager, sweep_scheduler

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP request metrics.

    Records request count and duration for all endpoints,
    using FastAPI route templates to normalize paths.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Process request and record metrics."""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        MetricsCollector.record_request(
            method=request.method,
            endpoint=endpoint_label(request),
            status=response.status_code,
            duration=duration,
        )

        return response


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the logging context and echo it in the response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
        try:
            response = await call_next(request)
        finally:
            clear_request_id()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


# Global service instances
_config: Optional[Config] = None
_storage: Optional[StorageManager] = None
_job_service: Optional[JobService] = None
_job_queue: Optional[JobQueue] = None
_orchestrator: Optional[JobOrchestrator] = None
_probe: Optional[ArtifactProbe] = None
_sweep_task: Optional[asyncio.Task] = None


def get_config() -> Config:
    """Get the loaded application configuration."""
    if _config is None:
        raise RuntimeError("Configuration not loaded")
    return _config


def get_storage_manager() -> StorageManager:
    """Get the global storage manager instance."""
    if _storage is None:
        raise RuntimeError("Storage manager not configured")
    return _storage


def get_job_service() -> JobService:
    """Get the global job service instance."""
    if _job_service is None:
        raise RuntimeError("Job service not configured")
    return _job_service


def get_job_queue() -> JobQueue:
    """Get the global job queue instance."""
    if _job_queue is None:
        raise RuntimeError("Job queue not configured")
    return _job_queue


def get_orchestrator() -> JobOrchestrator:
    """Get the global job orchestrator instance."""
    if _orchestrator is None:
        raise RuntimeError("Job orchestrator not configured")
    return _orchestrator


def get_artifact_probe() -> ArtifactProbe:
    """Get the global artifact probe instance."""
    if _probe is None:
        raise RuntimeError("Artifact probe not configured")
    return _probe


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown."""
    global _config, _storage, _job_service, _job_queue, _orchestrator, _probe, _sweep_task

    logger.info("Application starting", version=__version__)

    initialize_metrics(__version__)
    health.reset_start_time()

    config = ConfigService().load()
    _config = config

    configure_logging(config.logging.level, config.logging.format)

    logger.info(
        "Configuration loaded",
        server_port=config.server.port,
        output_dir=config.storage.output_dir,
        max_concurrent=config.downloads.max_concurrent,
        artifact_ttl_hours=config.storage.artifact_ttl,
    )

    startup = await StartupValidator(config).validate_all()
    if not startup.success:
        raise RuntimeError(f"Startup validation failed: {'; '.join(startup.errors)}")
    if startup.degraded_mode:
        logger.warning(
            "Starting in degraded mode",
            disabled_features=startup.disabled_features,
            warnings=startup.warnings,
        )

    _storage = StorageManager(config.storage)
    _storage.initialize()

    # Evicted jobs take their artifact with them
    _job_service = JobService(
        artifact_ttl_hours=config.storage.artifact_ttl,
        on_job_evicted=_storage.remove_job_artifact,
    )

    _job_queue = JobQueue(
        max_concurrent=config.downloads.max_concurrent,
        max_queue_size=config.downloads.queue_size,
    )
    logger.info(
        "Job queue configured",
        max_concurrent=config.downloads.max_concurrent,
        max_queue_size=config.downloads.queue_size,
    )

    resolver = FilenameResolver(recency_window=config.downloads.recency_window)

    extraction_runner = ExtractionRunner(
        resolver,
        binary=config.extraction.binary,
        audio_quality=config.extraction.audio_quality,
        user_agent=config.extraction.user_agent,
        sleep_interval=config.extraction.sleep_interval,
        max_sleep_interval=config.extraction.max_sleep_interval,
        source_url_template=config.extraction.source_url_template,
        timeout=config.timeouts.extraction,
    )

    postprocessing_runner = PostProcessingRunner(
        binary=config.postprocessing.binary,
        timeout=config.timeouts.post_processing,
        enabled="tagging" not in startup.disabled_features,
    )

    _probe = ArtifactProbe(
        binary=config.postprocessing.probe_binary,
        timeout=config.timeouts.probe,
    )

    _orchestrator = JobOrchestrator(
        job_service=_job_service,
        job_queue=_job_queue,
        storage=_storage,
        resolver=resolver,
        extraction_runner=extraction_runner,
        postprocessing_runner=postprocessing_runner,
        embed_thumbnail_default=config.postprocessing.embed_thumbnail,
        poll_interval=config.downloads.poll_interval,
    )

    await _orchestrator.start()
    logger.info("Job orchestrator started")

    _sweep_task = asyncio.create_task(
        sweep_scheduler(_storage, _job_service, interval=config.storage.sweep_interval)
    )
    logger.info("Sweep scheduler started", interval=config.storage.sweep_interval)

    logger.info("Application startup complete", version=__version__)

    yield

    logger.info("Application shutting down")

    if _sweep_task:
        _sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _sweep_task
        _sweep_task = None

    await _orchestrator.stop()

    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Media Jobs API",
        description="Asynchronous YouTube-to-MP3 jobs using yt-dlp and ffmpeg",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Default ["*"] for development; override via APP_SECURITY_CORS_ORIGINS
    security_config = SecurityConfig()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=security_config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", REQUEST_ID_HEADER],
    )

    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Register global exception handlers
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(APIError, global_exception_handler)
    app.add_exception_handler(PipelineError, global_exception_handler)
    app.add_exception_handler(StarletteHTTPException, global_exception_handler)

    # Jobs router dependencies
    app.dependency_overrides[jobs.get_orchestrator] = get_orchestrator
    app.dependency_overrides[jobs.get_job_service] = get_job_service
    app.dependency_overrides[jobs.get_job_queue] = get_job_queue

    # Artifacts router dependencies
    app.dependency_overrides[artifacts.get_job_service] = get_job_service
    app.dependency_overrides[artifacts.get_storage_manager] = get_storage_manager
    app.dependency_overrides[artifacts.get_artifact_probe] = get_artifact_probe

    # Health router dependencies
    app.dependency_overrides[health.get_config] = get_config
    app.dependency_overrides[health.get_storage_manager] = get_storage_manager
    app.dependency_overrides[health.get_job_queue] = get_job_queue
    app.dependency_overrides[health.get_orchestrator] = get_orchestrator

    app.include_router(health.router)
    app.include_router(jobs.router)
    app.include_router(artifacts.router)
    if MonitoringConfig().metrics_enabled:
        app.include_router(metrics.router)

    return app


# Create the application instance
app = create_app()


def run() -> None:
    import uvicorn

    server_config = ServerConfig()
    uvicorn.run(app, host=server_config.host, port=server_config.port)


if __name__ == "__main__":
    run()
