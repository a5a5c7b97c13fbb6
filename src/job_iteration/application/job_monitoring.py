"""Read models and worker controls for the management API."""

from __future__ import annotations

from job_iteration.application.worker import IterationWorker
from job_iteration.domain.cursors import encode
from job_iteration.domain.errors import JobNotFoundError
from job_iteration.domain.execution_state import read_execution_state
from job_iteration.domain.jobs import JobStatus, QueuedJob
from job_iteration.domain.monitoring_models import (
    IterationProgressResponse,
    JobInfoResponse,
    JobListResponse,
    WorkerStateResponse,
)
from job_iteration.domain.ports import JobQueueRepository


class JobMonitoringService:
    """Expose queued jobs with their checkpointed progress."""

    def __init__(self, queue: JobQueueRepository, worker: IterationWorker) -> None:
        self._queue = queue
        self._worker = worker

    @property
    def queue(self) -> JobQueueRepository:
        return self._queue

    @property
    def worker(self) -> IterationWorker:
        return self._worker

    async def list_jobs(self, status: JobStatus | None = None) -> JobListResponse:
        jobs = await self._queue.list_jobs(status)
        return JobListResponse(
            worker_id=self._worker.worker_id,
            jobs=[self._to_info(job) for job in jobs],
        )

    async def get_job_info(self, job_id: str) -> JobInfoResponse:
        job = await self._queue.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job '{job_id}' not found.")
        return self._to_info(job)

    def worker_state(self) -> WorkerStateResponse:
        return WorkerStateResponse(
            worker_id=self._worker.worker_id,
            running=self._worker.is_running,
            quiet=self._worker.is_quiet,
        )

    def quiet_worker(self) -> WorkerStateResponse:
        """Interrupt running jobs at their next step and stop claiming new ones."""

        self._worker.quiet()
        return self.worker_state()

    def _to_info(self, job: QueuedJob) -> JobInfoResponse:
        state = read_execution_state(job.arguments)
        if state is None:
            progress = IterationProgressResponse()
        else:
            progress = IterationProgressResponse(
                executions=state.executions,
                cursor_position=encode(state.cursor_position),
                times_interrupted=state.times_interrupted,
                total_time=state.total_time,
            )
        return JobInfoResponse(
            job_id=job.job_id,
            job_name=job.job_name,
            status=job.status,
            attempt=job.attempt,
            run_at=job.run_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
            lease_owner=job.lease_owner,
            last_error=job.last_error,
            arguments=job.arguments,
            progress=progress,
        )


__all__ = ["JobMonitoringService"]
