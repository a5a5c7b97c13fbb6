"""Background worker that runs queued iteration jobs."""

from __future__ import annotations

import asyncio
import logging
import random
import threading
from collections.abc import Callable
from contextlib import suppress
from typing import Any

from job_iteration.application.iteration import IterableJob, IterationConfig
from job_iteration.application.registry import JobRegistry
from job_iteration.domain.errors import (
    EnumeratorContractError,
    IterationConfigurationError,
    LeaseLostError,
    UnknownJobError,
)
from job_iteration.domain.jobs import ClaimedJob
from job_iteration.domain.outcomes import IterationResult
from job_iteration.domain.ports import JobQueueRepository

logger = logging.getLogger(__name__)

_NON_RETRYABLE_ERRORS = (
    IterationConfigurationError,
    EnumeratorContractError,
    NotImplementedError,
)


class QueueScheduler:
    """Forward re-enqueue requests from job threads to the queue's event loop."""

    def __init__(
        self,
        queue: JobQueueRepository,
        loop: asyncio.AbstractEventLoop,
        *,
        on_enqueued: Callable[[], None] | None = None,
    ) -> None:
        self._queue = queue
        self._loop = loop
        self._on_enqueued = on_enqueued

    def schedule(self, job_name: str, arguments: list[Any], delay_seconds: float) -> None:
        """Enqueue and block until the queue has accepted the job."""

        future = asyncio.run_coroutine_threadsafe(
            self._queue.enqueue(job_name, arguments, delay_seconds=delay_seconds),
            self._loop,
        )
        future.result()
        if self._on_enqueued is not None:
            self._loop.call_soon_threadsafe(self._on_enqueued)


class IterationWorker:
    """Claim due jobs, run them in a worker thread and record the outcome.

    A failing job is retried from the execution state it had reached, with
    exponential backoff, until `max_retries` attempts have been used.
    """

    def __init__(
        self,
        queue: JobQueueRepository,
        registry: JobRegistry,
        *,
        config: IterationConfig | None = None,
        worker_id: str = "worker-local",
        poll_interval_seconds: float = 1.0,
        batch_size: int = 10,
        lease_seconds: float = 300.0,
        max_retries: int = 25,
        retry_base_delay_seconds: float = 2.0,
        retry_max_delay_seconds: float = 300.0,
        retry_jitter_ratio: float = 0.2,
        max_error_length: int = 2000,
    ) -> None:
        self._queue = queue
        self._registry = registry
        self._config = config or IterationConfig()
        self._worker_id = worker_id
        self._poll_interval_seconds = max(poll_interval_seconds, 0.01)
        self._batch_size = max(batch_size, 1)
        self._lease_seconds = max(lease_seconds, 0.01)
        self._max_retries = max(max_retries, 0)
        self._retry_base_delay_seconds = max(retry_base_delay_seconds, 0.0)
        self._retry_max_delay_seconds = max(
            retry_max_delay_seconds,
            self._retry_base_delay_seconds,
        )
        self._retry_jitter_ratio = max(min(retry_jitter_ratio, 1.0), 0.0)
        self._max_error_length = max(max_error_length, 128)

        self._stop_signal = threading.Event()
        self._task: asyncio.Task[None] | None = None
        self._wake_event = asyncio.Event()
        self._stopping = asyncio.Event()
        self._lifecycle_lock = asyncio.Lock()

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def is_quiet(self) -> bool:
        return self._stop_signal.is_set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop if not already running."""

        async with self._lifecycle_lock:
            task = self._task
            if task is not None and not task.done():
                return

            self._stopping.clear()
            self._stop_signal.clear()
            self._wake_event.set()
            self._task = asyncio.create_task(
                self._run_loop(),
                name=f"iteration-worker-{self._worker_id}",
            )

    async def stop(self) -> None:
        """Ask running jobs to checkpoint, then stop the background loop."""

        self.quiet()
        async with self._lifecycle_lock:
            task = self._task
            if task is None:
                return
            self._task = None

            self._stopping.set()
            self._wake_event.set()

        with suppress(asyncio.CancelledError):
            await task

    def quiet(self) -> None:
        """Stop claiming jobs and interrupt running ones at their next step boundary."""

        if not self._stop_signal.is_set():
            logger.info("Worker '%s' is going quiet.", self._worker_id)
        self._stop_signal.set()

    def notify_new_job(self) -> None:
        """Wake the loop so newly enqueued jobs run without waiting a poll."""

        self._wake_event.set()

    async def run_due_jobs_once(self) -> int:
        """Claim one batch of due jobs, run them and return the claimed count."""

        if self._stop_signal.is_set():
            return 0

        jobs = await self._queue.claim_due_jobs(
            lease_owner=self._worker_id,
            limit=self._batch_size,
            lease_seconds=self._lease_seconds,
        )
        for claimed in jobs:
            await self._run_claimed_job(claimed)
        return len(jobs)

    async def _run_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                processed = await self.run_due_jobs_once()
            except Exception:
                logger.exception("Iteration worker loop failed.")
                processed = 0

            if processed > 0:
                continue

            self._wake_event.clear()
            try:
                await asyncio.wait_for(
                    self._wake_event.wait(),
                    timeout=self._poll_interval_seconds,
                )
            except TimeoutError:
                pass

    async def _run_claimed_job(self, claimed: ClaimedJob) -> IterationResult | None:
        try:
            return await self._process_claimed_job(claimed)
        except LeaseLostError as exc:
            logger.warning(
                "Job %s (%s) is no longer leased by '%s', leaving it to its owner: %s",
                claimed.job_id,
                claimed.job_name,
                self._worker_id,
                exc,
            )
            return None

    async def _process_claimed_job(self, claimed: ClaimedJob) -> IterationResult | None:
        # Later jobs of a claimed batch may have outlived their lease while earlier ones ran.
        await self._queue.extend_lease(
            claimed.job_id,
            lease_owner=self._worker_id,
            lease_seconds=self._lease_seconds,
        )
        try:
            job_class = self._registry.resolve(claimed.job_name)
        except UnknownJobError as exc:
            await self._queue.mark_failed(
                claimed.job_id,
                lease_owner=self._worker_id,
                error=self._compact_error(exc),
            )
            logger.error("Job %s failed: %s", claimed.job_id, exc)
            return None

        job = self._build_job(job_class)
        try:
            result = await self._perform_with_lease(claimed, job)
        except _NON_RETRYABLE_ERRORS as exc:
            await self._queue.mark_failed(
                claimed.job_id,
                lease_owner=self._worker_id,
                error=self._compact_error(exc),
            )
            logger.error(
                "Job %s (%s) is misconfigured and will not be retried: %s",
                claimed.job_id,
                claimed.job_name,
                exc,
            )
            return None
        except Exception as exc:
            await self._retry_or_fail(claimed, job, exc)
            return None

        await self._queue.mark_completed(claimed.job_id, lease_owner=self._worker_id)
        logger.info(
            "Job %s (%s) finished with status %s after %d iteration(s).",
            claimed.job_id,
            claimed.job_name,
            result.status,
            result.iterations,
        )
        return result

    async def _perform_with_lease(self, claimed: ClaimedJob, job: IterableJob) -> IterationResult:
        heartbeat = asyncio.create_task(
            self._keep_lease(claimed.job_id),
            name=f"lease-heartbeat-{claimed.job_id}",
        )
        try:
            return await asyncio.to_thread(job.perform, *claimed.arguments)
        finally:
            heartbeat.cancel()
            with suppress(asyncio.CancelledError):
                await heartbeat

    async def _keep_lease(self, job_id: str) -> None:
        interval = self._lease_seconds / 3
        while True:
            await asyncio.sleep(interval)
            try:
                await self._queue.extend_lease(
                    job_id,
                    lease_owner=self._worker_id,
                    lease_seconds=self._lease_seconds,
                )
            except LeaseLostError as exc:
                logger.warning("Job %s lost its lease while running: %s", job_id, exc)
                return
            except Exception:
                logger.exception("Failed to extend the lease of job %s.", job_id)

    def _build_job(self, job_class: type[IterableJob]) -> IterableJob:
        scheduler = QueueScheduler(
            self._queue,
            asyncio.get_running_loop(),
            on_enqueued=self.notify_new_job,
        )
        return job_class(
            scheduler=scheduler,
            config=self._config,
            stop_signal=self._stop_signal,
        )

    async def _retry_or_fail(
        self,
        claimed: ClaimedJob,
        job: IterableJob,
        exc: Exception,
    ) -> None:
        error = self._compact_error(exc)
        if claimed.attempt > self._max_retries:
            await self._queue.mark_failed(
                claimed.job_id,
                lease_owner=self._worker_id,
                error=error,
            )
            logger.error(
                "Job %s (%s) failed after %d attempt(s): %s",
                claimed.job_id,
                claimed.job_name,
                claimed.attempt,
                error,
            )
            return

        # Resume the retry from the last successful step, not from the claimed payload.
        arguments = job.retry_arguments() if job.executions > 0 else claimed.arguments
        delay = self._retry_delay(claimed.attempt)
        await self._queue.schedule_retry(
            claimed.job_id,
            lease_owner=self._worker_id,
            arguments=arguments,
            delay_seconds=delay,
            error=error,
        )
        logger.warning(
            "Job %s (%s) failed (attempt %d), retrying in %.1fs from cursor %r: %s",
            claimed.job_id,
            claimed.job_name,
            claimed.attempt,
            delay,
            job.cursor_position,
            error,
        )

    def _retry_delay(self, attempt_number: int) -> float:
        base_delay = self._retry_base_delay_seconds * (2 ** max(attempt_number - 1, 0))
        capped_delay = min(base_delay, self._retry_max_delay_seconds)
        if self._retry_jitter_ratio > 0:
            jitter_window = capped_delay * self._retry_jitter_ratio
            jitter = random.uniform(-jitter_window, jitter_window)
            capped_delay = max(capped_delay + jitter, self._retry_base_delay_seconds)
        return capped_delay

    def _compact_error(self, exc: BaseException) -> str:
        error = f"{type(exc).__name__}: {exc}".strip()
        return error[: self._max_error_length]


__all__ = ["IterationWorker", "QueueScheduler"]
