"""Bounded FIFO job queue with a fixed number of processing slots.

Jobs wait in submission order until one of ``max_concurrent`` slots frees
up. Each job holds one slot for its whole pipeline (extraction followed
by post-processing), which caps the number of tool subprocesses.
"""

import asyncio
from collections import deque
from typing import Deque, Dict, Optional, Set

import structlog

from mediajobs.core.metrics import MetricsCollector
from mediajobs.services.exceptions import QueueFullError

logger = structlog.get_logger(__name__)


class JobQueue:
    """FIFO queue for pending jobs with concurrency control."""

    def __init__(
        self,
        max_concurrent: int = 3,
        max_queue_size: int = 100,
    ) -> None:
        """Initialize the job queue.

        Args:
            max_concurrent: Maximum number of jobs processed at once.
            max_queue_size: Maximum number of waiting jobs (0 = unlimited).
        """
        self.max_concurrent = max_concurrent
        self.max_queue_size = max_queue_size

        self._queue: Deque[str] = deque()
        self._active_jobs: Set[str] = set()
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._lock = asyncio.Lock()

        logger.debug(
            "job_queue_initialized",
            max_concurrent=max_concurrent,
            max_queue_size=max_queue_size,
        )

    async def enqueue(self, job_id: str) -> int:
        """Add a job to the back of the queue.

        Returns:
            Position in the queue (1-indexed).

        Raises:
            QueueFullError: If the queue is full.
        """
        async with self._lock:
            if job_id in self._queue:
                logger.warning("job_already_queued", job_id=job_id)
                return self._queue.index(job_id) + 1

            if self.max_queue_size > 0 and len(self._queue) >= self.max_queue_size:
                raise QueueFullError(
                    f"Queue is full (max {self.max_queue_size} jobs). Please try again later."
                )

            self._queue.append(job_id)
            position = len(self._queue)

            logger.info(
                "job_enqueued",
                job_id=job_id,
                queue_position=position,
                queue_size=len(self._queue),
            )
            self._update_metrics()

            return position

    async def dequeue(self) -> Optional[str]:
        """Take the oldest waiting job and a processing slot.

        The caller must call ``release_slot()`` when the job is finished.

        Returns:
            Job ID, or None when all slots are busy or nothing is waiting.
        """
        if self._semaphore.locked():
            return None

        await self._semaphore.acquire()

        async with self._lock:
            if not self._queue:
                self._semaphore.release()
                return None

            job_id = self._queue.popleft()
            self._active_jobs.add(job_id)

            logger.info(
                "job_dequeued",
                job_id=job_id,
                active_count=len(self._active_jobs),
                remaining_queue_size=len(self._queue),
            )
            self._update_metrics()

            return job_id

    async def release_slot(self, job_id: str) -> None:
        """Release the processing slot held by ``job_id``.

        A job that does not hold a slot is ignored.
        """
        async with self._lock:
            if job_id not in self._active_jobs:
                return
            self._active_jobs.remove(job_id)
            self._semaphore.release()

            logger.debug(
                "job_slot_released",
                job_id=job_id,
                active_count=len(self._active_jobs),
            )
            self._update_metrics()

    async def remove_job(self, job_id: str) -> bool:
        """Remove a waiting job. Active jobs cannot be removed."""
        async with self._lock:
            if job_id not in self._queue:
                return False
            self._queue.remove(job_id)
            self._update_metrics()

        logger.info("job_removed_from_queue", job_id=job_id)
        return True

    def _update_metrics(self) -> None:
        """Must be called with lock held."""
        MetricsCollector.update_queue_metrics(
            queue_size=len(self._queue),
            active=len(self._active_jobs),
        )

    def get_queue_position(self, job_id: str) -> Optional[int]:
        """Queue position (1-indexed), or None if the job is not waiting."""
        try:
            return self._queue.index(job_id) + 1
        except ValueError:
            return None

    def is_active(self, job_id: str) -> bool:
        return job_id in self._active_jobs

    def get_queue_size(self) -> int:
        return len(self._queue)

    def get_active_count(self) -> int:
        return len(self._active_jobs)

    def get_available_slots(self) -> int:
        return self.max_concurrent - len(self._active_jobs)

    def get_stats(self) -> Dict[str, int]:
        return {
            "queue_size": len(self._queue),
            "active_count": len(self._active_jobs),
            "available_slots": self.get_available_slots(),
            "max_concurrent": self.max_concurrent,
        }
