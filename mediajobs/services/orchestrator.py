"""Job orchestrator driving each job through extraction and post-processing.

Lifecycle of one job:
- submit(): validate input, create the job (QUEUED) and enqueue it
- worker loop: dequeue when a slot frees up and spawn a processing task
- processing task: reserve a base name, RUNNING, extract, optionally
  POST_PROCESSING, then COMPLETED, or FAILED on an unrecoverable error
"""

import asyncio
import contextlib
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Set

import structlog

from mediajobs.core.errors import ErrorCode
from mediajobs.core.logging import bind_job_context, clear_job_context
from mediajobs.core.metrics import MetricsCollector
from mediajobs.core.validation import format_validator, metadata_validator, source_validator
from mediajobs.models.job import Job, JobStatus, TrackMetadata
from mediajobs.services.exceptions import (
    ExtractionError,
    JobStateError,
    PostProcessingError,
    QueueFullError,
    SubmissionError,
)
from mediajobs.services.extraction import ExtractionRunner
from mediajobs.services.filenames import FilenameResolver, build_base_name
from mediajobs.services.job_queue import JobQueue
from mediajobs.services.job_service import JobService
from mediajobs.services.postprocessing import PostProcessingRunner
from mediajobs.services.storage import StorageManager

logger = structlog.get_logger(__name__)

SHUTDOWN_MESSAGE = "Interrupted by shutdown"


class JobOrchestrator:
    """Accepts submissions and runs queued jobs on a bounded worker pool."""

    def __init__(
        self,
        job_service: JobService,
        job_queue: JobQueue,
        storage: StorageManager,
        resolver: FilenameResolver,
        extraction_runner: ExtractionRunner,
        postprocessing_runner: PostProcessingRunner,
        embed_thumbnail_default: bool = True,
        poll_interval: float = 1.0,
    ) -> None:
        self.job_service = job_service
        self.job_queue = job_queue
        self.storage = storage
        self.resolver = resolver
        self.extraction_runner = extraction_runner
        self.postprocessing_runner = postprocessing_runner
        self.embed_thumbnail_default = embed_thumbnail_default
        self.poll_interval = poll_interval

        self._running = False
        self._worker_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._events: Dict[str, asyncio.Event] = {}

        logger.debug("job_orchestrator_initialized", poll_interval=poll_interval)

    @property
    def is_running(self) -> bool:
        return self._running

    async def submit(
        self,
        source_reference: Optional[str],
        requested_format: Optional[str] = None,
        title: Optional[str] = None,
        channel: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        embed_thumbnail: Optional[bool] = None,
    ) -> Job:
        """Validate a submission, create the job and queue it.

        Returns immediately, before extraction starts.

        Raises:
            SubmissionError: If the input is invalid. No job is created.
            QueueFullError: If the queue is at capacity. No job is kept.
        """
        source = source_validator.validate(source_reference)
        if not source.is_valid:
            raise SubmissionError(ErrorCode.INVALID_SOURCE, source.error_message or "Invalid source")

        fmt = format_validator.validate(requested_format)
        if not fmt.is_valid:
            raise SubmissionError(ErrorCode.INVALID_FORMAT, fmt.error_message or "Invalid format")

        try:
            overrides = metadata_validator.validate(metadata)
        except ValueError as e:
            raise SubmissionError(ErrorCode.INVALID_METADATA, str(e))

        job = self.job_service.create_job(
            source_reference=source.sanitized_value or "",
            requested_format=fmt.sanitized_value or "mp3",
            metadata=TrackMetadata(**overrides),
            title=title,
            channel=channel,
            embed_thumbnail=(
                self.embed_thumbnail_default if embed_thumbnail is None else embed_thumbnail
            ),
        )
        self._events[job.job_id] = asyncio.Event()

        try:
            position = await self.job_queue.enqueue(job.job_id)
        except QueueFullError:
            self.job_service.discard_job(job.job_id)
            self._events.pop(job.job_id, None)
            logger.warning("job_rejected_queue_full", job_id=job.job_id)
            raise

        self.job_service.set_queue_position(job.job_id, position)
        return job

    async def wait_for(self, job_id: str, timeout: float) -> Job:
        """Wait up to ``timeout`` seconds for a job to reach a terminal state.

        Returns the job in whatever state it is in when the wait ends.

        Raises:
            JobNotFoundError: If the job is unknown.
        """
        job = self.job_service.get_job_or_raise(job_id)
        event = self._events.get(job_id)
        if job.is_terminal() or event is None or timeout <= 0:
            return job

        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug("job_wait_timed_out", job_id=job_id, timeout=timeout)
        return self.job_service.get_job_or_raise(job_id)

    async def start(self) -> None:
        """Start the worker loop in the background."""
        if self._running:
            logger.warning("job_orchestrator_already_running")
            return

        self._running = True
        self._worker_task = asyncio.create_task(self._run())
        logger.info("job_orchestrator_started")

    async def stop(self) -> None:
        """Stop the worker loop and interrupt in-flight jobs.

        Every job that has not finished is marked failed, so no job is left
        in a non-terminal state by a shutdown.
        """
        if not self._running:
            return

        self._running = False

        if self._worker_task:
            self._worker_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker_task
            self._worker_task = None

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for job in self.job_service.list_jobs(limit=self.job_service.get_job_count()):
            if not job.is_terminal():
                self._fail(job.job_id, SHUTDOWN_MESSAGE)

        for event in self._events.values():
            event.set()
        self._events.clear()

        logger.info("job_orchestrator_stopped", interrupted_tasks=len(tasks))

    async def _run(self) -> None:
        """Main worker loop."""
        logger.info("job_orchestrator_loop_started")

        while self._running:
            try:
                job_id = await self.job_queue.dequeue()

                if job_id:
                    task = asyncio.create_task(self._process_job(job_id))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
                else:
                    await asyncio.sleep(self.poll_interval)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("job_orchestrator_loop_error", error=str(e), exc_info=True)
                await asyncio.sleep(self.poll_interval)

    async def _process_job(self, job_id: str) -> None:  # noqa: C901
        """Run one dequeued job to a terminal state.

        Holds the job's queue slot until it finishes.
        """
        job = self.job_service.get_job(job_id)
        if job is None:
            logger.error("job_not_found_for_processing", job_id=job_id)
            await self.job_queue.release_slot(job_id)
            return

        bind_job_context(job_id)
        start_time = time.monotonic()
        outcome = JobStatus.FAILED.value
        artifact_size = 0
        directory = self.storage.output_dir
        extension = f".{job.requested_format}"
        base_name: Optional[str] = None

        def on_progress(progress: int) -> None:
            self.job_service.update_progress(job_id, progress)

        try:
            requested_name = build_base_name(job.channel, job.title, fallback=job.job_id)
            base_name = self.resolver.reserve(directory, requested_name, extension)
            job.base_name = base_name
            self.storage.register_active_job(job_id, base_name)

            self.job_service.start_running(job_id)
            logger.info(
                "job_processing_started",
                source_reference=job.source_reference,
                base_name=base_name,
            )

            result = await self.extraction_runner.run(
                job.source_reference,
                directory / base_name,
                audio_format=job.requested_format,
                write_thumbnail=job.embed_thumbnail,
                on_progress=on_progress,
            )

            output_path = result.output_path
            # A heuristic match may not carry the reserved name
            self.storage.register_active_job(job_id, output_path.stem)
            thumbnail = result.thumbnail_path if job.embed_thumbnail else None

            if self.postprocessing_runner.is_required(job.metadata, thumbnail):
                self.job_service.start_post_processing(job_id)
                output_path = await self._post_process(job, output_path, thumbnail)

            artifact_size = output_path.stat().st_size
            self.job_service.complete_job(
                job_id,
                result_path=str(output_path),
                file_name=output_path.name,
                file_size=artifact_size,
            )
            outcome = JobStatus.COMPLETED.value

        except ExtractionError as e:
            logger.error(
                "job_failed_extraction_error",
                error=str(e),
                exit_code=e.exit_code,
                error_type=type(e).__name__,
            )
            self._fail(job_id, str(e))

        except asyncio.CancelledError:
            self._fail(job_id, SHUTDOWN_MESSAGE)
            raise

        except Exception as e:
            logger.error("job_failed_unexpected_error", error=str(e), exc_info=True)
            self._fail(job_id, f"Unexpected error: {e}")

        finally:
            if base_name is not None:
                self.postprocessing_runner.cleanup_sidecars(
                    directory, [base_name, job.source_reference]
                )
                self.resolver.release(directory, base_name)
            self.storage.unregister_active_job(job_id)

            MetricsCollector.record_job(
                status=outcome,
                duration=time.monotonic() - start_time,
                size=artifact_size,
            )
            await self.job_queue.release_slot(job_id)

            event = self._events.pop(job_id, None)
            if event is not None:
                event.set()
            clear_job_context()

    async def _post_process(self, job: Job, output_path: Path, thumbnail: Optional[Path]) -> Path:
        """Tag the artifact. A failure keeps the untagged file and is recorded as a warning."""
        try:
            return await self.postprocessing_runner.run(
                output_path,
                job.metadata,
                thumbnail_path=thumbnail,
                source_reference=job.source_reference,
            )
        except PostProcessingError as e:
            MetricsCollector.record_postprocessing_failure()
            logger.warning(
                "postprocessing_failed_untagged_artifact_kept",
                error=str(e),
                exit_code=e.exit_code,
                path=str(output_path),
            )
            self.job_service.record_warning(
                job.job_id, f"Metadata tagging failed, file delivered untagged: {e}"
            )
            return output_path

    def _fail(self, job_id: str, message: str) -> None:
        try:
            self.job_service.fail_job(job_id, message)
        except JobStateError:
            logger.debug("job_already_terminal", job_id=job_id)
        except Exception as e:
            logger.error("job_fail_update_error", job_id=job_id, error=str(e))
