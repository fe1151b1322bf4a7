"""
Common job and job queue implementation for event-based processing.

This module provides:
- Job: Base class for defining asynchronous jobs
- JobQueue: Event-based queue that processes jobs with a fixed number of workers
- JobStatus: Enum for tracking job states
"""

import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, TypeVar

from callscribe.utils import get_current_timestamp_est

logger = logging.getLogger(__name__)


class JobStatus(enum.Enum):
    """Status of a job in the queue."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class Job(ABC):
    """
    Base class for a job that can be processed by a JobQueue.

    Attributes:
        job_id: Unique identifier for the job
        created_at: Timestamp when the job was created
        started_at: Timestamp when the job started processing (None if not started)
        finished_at: Timestamp when the job finished (None if not finished)
        status: Current status of the job
        error_message: Error message if the job failed (None if no error)
        last_error: Exception raised by the most recent failed execution
        metadata: Additional metadata for the job
    """

    job_id: str
    created_at: datetime = field(default_factory=get_current_timestamp_est)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    status: JobStatus = JobStatus.PENDING
    error_message: str | None = None
    last_error: BaseException | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @abstractmethod
    async def execute(self) -> None:
        """
        Execute the job's main logic.

        Raises:
            Exception: Any exception raised during execution will be caught
                      by the JobQueue and handed to its retry policy.
        """
        pass

    def mark_started(self) -> None:
        """Mark the job as started."""
        self.started_at = get_current_timestamp_est()
        self.status = JobStatus.IN_PROGRESS

    def mark_completed(self) -> None:
        """Mark the job as completed."""
        self.finished_at = get_current_timestamp_est()
        self.status = JobStatus.COMPLETED

    def mark_failed(self, error_message: str) -> None:
        """Mark the job as failed with an error message."""
        self.finished_at = get_current_timestamp_est()
        self.status = JobStatus.FAILED
        self.error_message = error_message

    def mark_cancelled(self) -> None:
        """Mark the job as cancelled."""
        self.finished_at = get_current_timestamp_est()
        self.status = JobStatus.CANCELLED


TJob = TypeVar("TJob", bound=Job)

JobCallback = Callable[[TJob], Any]
RetryPolicy = Callable[[TJob, Exception], "bool | Awaitable[bool]"]


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> Any:
    """Call a callback, awaiting it when it returns a coroutine."""
    if callback is None:
        return None
    result = callback(*args)
    if asyncio.iscoroutine(result):
        result = await result
    return result


class JobQueue(Generic[TJob]):
    """
    Event-based job queue processed by a fixed pool of worker tasks.

    The queue is idle by default and activates when jobs are added.
    Jobs are taken in FIFO order; with ``concurrency`` workers up to that many
    jobs run at once. The queue supports:
    - Adding jobs dynamically
    - Callback notifications on job start/completion/failure/retry/cancellation
    - A pluggable retry policy
    - Cancelling a queued or running job by id
    - Graceful shutdown and status monitoring

    Attributes:
        max_retries: Retry budget used when no retry_policy is given (default: 0)
        concurrency: Number of worker tasks (default: 1)
    """

    def __init__(
        self,
        max_retries: int = 0,
        concurrency: int = 1,
        retry_policy: RetryPolicy | None = None,
        on_job_complete: JobCallback | None = None,
        on_job_failed: JobCallback | None = None,
        on_job_started: JobCallback | None = None,
        on_job_retry: JobCallback | None = None,
        on_job_cancelled: JobCallback | None = None,
    ):
        """
        Initialize the job queue.

        Args:
            max_retries: Maximum number of retry attempts for failed jobs
            concurrency: Number of jobs processed at the same time
            retry_policy: Optional callable (job, error) -> bool deciding whether to
                         re-queue a failed job; overrides max_retries when given
            on_job_complete: Optional callback when a job completes successfully
            on_job_failed: Optional callback when a job fails for good
            on_job_started: Optional callback when a job starts
            on_job_retry: Optional callback when a failed job is re-queued
            on_job_cancelled: Optional callback when a job is cancelled
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self._queue: asyncio.Queue[TJob] = asyncio.Queue()
        self._worker_tasks: list[asyncio.Task] = []
        self._is_running: bool = False
        self._shutdown_event: asyncio.Event = asyncio.Event()
        self._max_retries: int = max_retries
        self._concurrency: int = concurrency
        self._retry_policy = retry_policy
        self._retry_counts: dict[str, int] = {}

        # Callbacks
        self._on_job_complete = on_job_complete
        self._on_job_failed = on_job_failed
        self._on_job_started = on_job_started
        self._on_job_retry = on_job_retry
        self._on_job_cancelled = on_job_cancelled

        # Running / cancellation bookkeeping
        self._running_tasks: dict[str, asyncio.Task] = {}
        self._current_jobs: dict[str, TJob] = {}
        self._cancel_requested: set[str] = set()

        # Statistics
        self._total_jobs_processed: int = 0
        self._total_jobs_failed: int = 0
        self._total_jobs_retried: int = 0
        self._total_jobs_cancelled: int = 0

    async def add_job(self, job: TJob) -> None:
        """
        Add a job to the queue.

        If the workers are not running, they will be started automatically.

        Args:
            job: The job to add to the queue
        """
        await self._queue.put(job)

        if not self._is_running:
            await self.start()

    async def start(self) -> None:
        """Start the job queue workers."""
        if self._is_running:
            return

        self._is_running = True
        self._shutdown_event.clear()
        self._worker_tasks = [
            asyncio.create_task(self._worker(index)) for index in range(self._concurrency)
        ]

    async def stop(self, wait_for_completion: bool = True) -> None:
        """
        Stop the job queue workers.

        Args:
            wait_for_completion: If True, wait for running jobs to complete before stopping;
                                otherwise running jobs are cancelled
        """
        if not self._is_running:
            return

        self._is_running = False
        self._shutdown_event.set()

        if not wait_for_completion:
            for job_id in list(self._running_tasks):
                self.cancel_job(job_id)

        if self._worker_tasks:
            await asyncio.gather(*self._worker_tasks, return_exceptions=True)

        self._worker_tasks = []

    def cancel_job(self, job_id: str) -> bool:
        """
        Request cancellation of a queued or running job.

        A running job is cancelled at its next await point; a queued job is
        skipped when a worker picks it up.

        Args:
            job_id: ID of the job to cancel

        Returns:
            True if a queued or running job with that id exists
        """
        task = self._running_tasks.get(job_id)
        if task is not None and not task.done():
            self._cancel_requested.add(job_id)
            task.cancel()
            return True

        # Dequeued but not yet running: checked again before the task is created
        if job_id in self._current_jobs:
            self._cancel_requested.add(job_id)
            return True

        # Queued jobs are skipped when dequeued
        for job in list(self._queue._queue):  # noqa: SLF001
            if job.job_id == job_id:
                self._cancel_requested.add(job_id)
                return True

        return False

    async def _worker(self, index: int) -> None:
        """
        Main worker loop that processes jobs from the queue.

        This runs continuously until shutdown is requested.
        """
        while self._is_running:
            try:
                # Wait for a job with timeout to allow shutdown checks
                try:
                    job = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    if self._shutdown_event.is_set():
                        break
                    continue

                self._current_jobs[job.job_id] = job
                try:
                    await self._process_job(job)
                finally:
                    self._current_jobs.pop(job.job_id, None)
                    if job.status != JobStatus.PENDING:
                        self._cancel_requested.discard(job.job_id)
                    self._queue.task_done()

            except asyncio.CancelledError:
                break
            except Exception as e:
                # Log unexpected errors but keep worker running
                logger.error(f"Unexpected error in job queue worker {index}: {e}")

    async def _safe_invoke(self, name: str, callback: Callable[..., Any] | None, *args) -> Any:
        try:
            return await _invoke(callback, *args)
        except Exception as e:
            logger.error(f"Error in {name} callback: {e}")
            return None

    async def _process_job(self, job: TJob) -> None:
        """
        Process a single job with error handling, cancellation and retries.

        Args:
            job: The job to process
        """
        if job.job_id in self._cancel_requested:
            self._cancel_requested.discard(job.job_id)
            await self._finish_cancelled(job)
            return

        job.mark_started()
        await self._safe_invoke("on_job_started", self._on_job_started, job)

        if job.job_id in self._cancel_requested:
            self._cancel_requested.discard(job.job_id)
            await self._finish_cancelled(job)
            return

        task = asyncio.create_task(job.execute())
        self._running_tasks[job.job_id] = task
        try:
            await task
        except asyncio.CancelledError:
            if job.job_id not in self._cancel_requested:
                # the worker itself is being cancelled
                task.cancel()
                raise
            self._cancel_requested.discard(job.job_id)
            await self._finish_cancelled(job)
            return
        except Exception as e:
            await self._handle_failure(job, e)
            return
        finally:
            self._running_tasks.pop(job.job_id, None)

        job.mark_completed()
        self._total_jobs_processed += 1
        self._retry_counts.pop(job.job_id, None)
        await self._safe_invoke("on_job_complete", self._on_job_complete, job)

    async def _handle_failure(self, job: TJob, error: Exception) -> None:
        job.last_error = error
        error_message = f"{type(error).__name__}: {str(error)}"
        retry_count = self._retry_counts.get(job.job_id, 0)

        if self._retry_policy is not None:
            try:
                should_retry = bool(await _invoke(self._retry_policy, job, error))
            except Exception as e:
                logger.error(f"Error in retry policy: {e}")
                should_retry = False
        else:
            should_retry = retry_count < self._max_retries

        if should_retry:
            self._retry_counts[job.job_id] = retry_count + 1
            self._total_jobs_retried += 1
            job.status = JobStatus.PENDING
            job.error_message = error_message
            await self._safe_invoke("on_job_retry", self._on_job_retry, job)
            await self._queue.put(job)
            return

        job.mark_failed(error_message)
        self._total_jobs_failed += 1
        self._retry_counts.pop(job.job_id, None)
        await self._safe_invoke("on_job_failed", self._on_job_failed, job)

    async def _finish_cancelled(self, job: TJob) -> None:
        job.mark_cancelled()
        self._total_jobs_cancelled += 1
        self._retry_counts.pop(job.job_id, None)
        await self._safe_invoke("on_job_cancelled", self._on_job_cancelled, job)

    def get_queue_size(self) -> int:
        """Get the current number of jobs waiting in the queue."""
        return self._queue.qsize()

    def get_statistics(self) -> dict[str, Any]:
        """
        Get queue statistics.

        Returns:
            Dictionary with statistics including:
            - is_running: Whether the workers are active
            - concurrency: Number of workers
            - queue_size: Number of pending jobs
            - total_processed / total_failed / total_retried / total_cancelled
            - current_job_ids: IDs of jobs being processed
        """
        return {
            "is_running": self._is_running,
            "concurrency": self._concurrency,
            "queue_size": self.get_queue_size(),
            "total_processed": self._total_jobs_processed,
            "total_failed": self._total_jobs_failed,
            "total_retried": self._total_jobs_retried,
            "total_cancelled": self._total_jobs_cancelled,
            "current_job_ids": list(self._current_jobs.keys()),
        }

    async def wait_until_empty(self) -> None:
        """Wait until all jobs in the queue are processed."""
        await self._queue.join()

    def is_running(self) -> bool:
        """Check if the workers are running."""
        return self._is_running
