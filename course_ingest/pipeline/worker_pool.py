"""Fixed-size worker pool pulling jobs from one durable queue.

Each :class:`WorkerPool` serves a single queue with ``concurrency`` worker
tasks.  A worker loop:

    1. waits for a rate-limit token (jobs beyond the limit wait, not fail)
    2. claims the best ready job, or sleeps until one could be ready
    3. runs ``handler.process`` bounded by the queue's job timeout
    4. completes the job, or records the failed attempt so the queue can
       schedule a backoff retry or mark it terminally failed; a job with a
       pending rerun request goes back to waiting instead
    5. keeps the job tracker row in step with the outcome

There is no mid-job cancellation: :meth:`stop` lets in-flight jobs finish.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any

import structlog

from course_ingest.models.jobs import JobType, QueueConfig, QueuedJob, QueueState
from course_ingest.providers.queue.sqlite_job_queue import SQLiteJobQueue
from course_ingest.providers.queue.sqlite_job_tracker import SQLiteJobTracker
from course_ingest.utils.concurrency import TokenBucketRateLimiter
from course_ingest.utils.logging import bind_job_context

logger = structlog.get_logger(logger_name=__name__)


class JobReporter:
    """Progress channel handed to a handler for one job attempt."""

    def __init__(self, job: QueuedJob, queue: SQLiteJobQueue, tracker: SQLiteJobTracker) -> None:
        self._job = job
        self._queue = queue
        self._tracker = tracker
        self.last_progress = 0.0

    async def progress(self, percentage: float) -> None:
        """Persist fractional progress (0-100) on the queue job and tracker row."""
        value = max(0.0, min(100.0, float(percentage)))
        self.last_progress = value
        await self._queue.update_progress(self._job.id, value)
        await self._tracker.update_progress(self._job.id, value)


class JobHandler(ABC):
    """Business logic for one job type."""

    job_type: JobType

    @abstractmethod
    async def process(self, job: QueuedJob, reporter: JobReporter) -> dict[str, Any]:
        """Run the job and return a JSON-serializable result.

        Any exception marks the attempt as failed.
        """

    async def on_failed(self, job: QueuedJob, error: BaseException, final: bool) -> None:
        """Hook run after a failed attempt; *final* is True once retries are exhausted."""
        return None


class WorkerPool:
    """Run a :class:`JobHandler` over one queue with bounded concurrency.

    Parameters
    ----------
    queue:
        Durable job queue.
    tracker:
        Job tracker kept in step with every attempt.
    config:
        The served queue's configuration (workers, rate limit, retry, timeout).
    handler:
        Business logic for the queue's job type.
    poll_interval:
        Longest idle sleep between claim attempts.
    """

    def __init__(
        self,
        queue: SQLiteJobQueue,
        tracker: SQLiteJobTracker,
        config: QueueConfig,
        handler: JobHandler,
        poll_interval: float = 1.0,
        rate_limiter: TokenBucketRateLimiter | None = None,
    ) -> None:
        if handler.job_type != config.job_type:
            raise ValueError(
                f"Handler for {handler.job_type.value} cannot serve queue '{config.name}' "
                f"({config.job_type.value})"
            )
        self._queue = queue
        self._tracker = tracker
        self._config = config
        self._handler = handler
        self._poll_interval = poll_interval
        self._limiter = rate_limiter or TokenBucketRateLimiter(
            config.rate_limit.max_jobs, config.rate_limit.window_seconds
        )
        self._tasks: list[asyncio.Task] = []
        self._stopping = asyncio.Event()
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._wakeup = asyncio.Event()

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> QueueConfig:
        return self._config

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Recover stalled jobs from a previous run and spawn the workers."""
        if self.running:
            return
        await self._queue.recover_stalled(self._config.name)
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"{self._config.name}-worker-{i}")
            for i in range(self._config.concurrency)
        ]
        logger.info("worker_pool_started", queue=self._config.name, workers=self._config.concurrency)

    async def stop(self) -> None:
        """Stop claiming new jobs and wait for in-flight jobs to finish."""
        self._stopping.set()
        self._resumed.set()
        self._wakeup.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("worker_pool_stopped", queue=self._config.name)

    def pause(self) -> None:
        """Stop claiming new jobs; in-flight jobs continue."""
        self._resumed.clear()
        logger.info("worker_pool_paused", queue=self._config.name)

    def resume(self) -> None:
        self._resumed.set()
        self._wakeup.set()
        logger.info("worker_pool_resumed", queue=self._config.name)

    def notify(self) -> None:
        """Wake idle workers (called after an enqueue in the same process)."""
        self._wakeup.set()

    async def drain(self, max_jobs: int | None = None) -> int:
        """Process ready jobs sequentially until none is claimable.

        Delayed retries whose backoff has not elapsed are left in place.
        Returns the number of attempts executed.
        """
        processed = 0
        while max_jobs is None or processed < max_jobs:
            await self._limiter.acquire()
            job = await self._queue.claim_next(self._config.name)
            if job is None:
                self._limiter.refund()
                break
            await self._run(job)
            processed += 1
        return processed

    # ------------------------------------------------------------------
    # Worker internals
    # ------------------------------------------------------------------

    async def _worker_loop(self, worker_id: int) -> None:
        while not self._stopping.is_set():
            await self._resumed.wait()
            if self._stopping.is_set():
                break

            await self._limiter.acquire()
            try:
                job = await self._queue.claim_next(self._config.name)
            except Exception:
                self._limiter.refund()
                logger.exception("job_claim_error", queue=self._config.name, worker=worker_id)
                await self._idle(self._poll_interval)
                continue

            if job is None:
                self._limiter.refund()
                delay = await self._queue.next_delay(self._config.name)
                await self._idle(self._poll_interval if delay is None else min(delay, self._poll_interval))
                continue

            await self._run(job)

    async def _idle(self, seconds: float) -> None:
        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=max(seconds, 0.01))
        except asyncio.TimeoutError:
            pass

    async def _run(self, job: QueuedJob) -> None:
        log = bind_job_context(logger, job.id, self._config.name, attempt=job.attempts_made)
        reporter = JobReporter(job, self._queue, self._tracker)
        start = time.monotonic()
        log.info("job_started", max_attempts=job.max_attempts)
        await self._tracker.mark_started(job.id)

        try:
            result = await asyncio.wait_for(
                self._handler.process(job, reporter),
                timeout=self._config.job_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if isinstance(exc, asyncio.TimeoutError):
                message = f"Job timed out after {self._config.job_timeout_seconds:.0f}s"
            else:
                message = str(exc) or type(exc).__name__
            await self._record_failure(job, exc, message, log)
            return

        updated = await self._queue.complete(job.id, result)
        if updated.state == QueueState.WAITING:
            # A rerun was requested while this attempt ran.
            await self._tracker.mark_requeued(job.id)
            self._wakeup.set()
            log.info("job_completed_rerun_pending", duration_ms=round((time.monotonic() - start) * 1000))
            return
        await self._tracker.mark_completed(job.id)
        log.info("job_completed", duration_ms=round((time.monotonic() - start) * 1000))

    async def _record_failure(
        self,
        job: QueuedJob,
        exc: BaseException,
        message: str,
        log: structlog.BoundLogger,
    ) -> None:
        updated = await self._queue.fail(job.id, message, self._config.retry)
        final = updated.state == QueueState.FAILED
        if final:
            await self._tracker.mark_failed(job.id, message)
        else:
            await self._tracker.mark_retrying(job.id, message)

        try:
            await self._handler.on_failed(updated, exc, final)
        except Exception:
            log.exception("job_failure_hook_error")
