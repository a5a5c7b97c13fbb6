"""In-memory job queue implementation."""

from __future__ import annotations

import asyncio
import copy
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from job_iteration.domain.errors import JobNotFoundError, LeaseLostError
from job_iteration.domain.jobs import ClaimedJob, JobStatus, QueuedJob
from job_iteration.domain.ports import JobQueueRepository


class InMemoryJobQueue(JobQueueRepository):
    """Simple job queue for local development and tests."""

    def __init__(self) -> None:
        self._jobs: dict[str, QueuedJob] = {}
        self._lock = asyncio.Lock()

    async def enqueue(
        self,
        job_name: str,
        arguments: list[Any],
        *,
        delay_seconds: float = 0.0,
    ) -> str:
        """Insert one queued job."""

        now = datetime.now(tz=UTC)
        job = QueuedJob(
            job_id=str(uuid4()),
            job_name=job_name,
            arguments=copy.deepcopy(list(arguments)),
            status=JobStatus.QUEUED,
            attempt=0,
            run_at=now + timedelta(seconds=max(delay_seconds, 0.0)),
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._jobs[job.job_id] = job
        return job.job_id

    async def claim_due_jobs(
        self,
        *,
        lease_owner: str,
        limit: int,
        lease_seconds: float,
    ) -> list[ClaimedJob]:
        """Claim due queued jobs and running jobs whose lease expired."""

        if limit <= 0:
            return []

        now = datetime.now(tz=UTC)
        lease_until = now + timedelta(seconds=max(lease_seconds, 0.0))
        async with self._lock:
            due = [
                job
                for job in self._jobs.values()
                if (job.status is JobStatus.QUEUED and job.run_at <= now)
                or (
                    job.status is JobStatus.RUNNING
                    and job.lease_until is not None
                    and job.lease_until <= now
                )
            ]
            due.sort(key=lambda job: (job.run_at, job.created_at, job.job_id))

            results: list[ClaimedJob] = []
            for job in due[:limit]:
                job.status = JobStatus.RUNNING
                job.lease_owner = lease_owner
                job.lease_until = lease_until
                job.attempt += 1
                job.updated_at = now
                results.append(
                    ClaimedJob(
                        job_id=job.job_id,
                        job_name=job.job_name,
                        arguments=copy.deepcopy(job.arguments),
                        lease_owner=lease_owner,
                        attempt=job.attempt,
                    )
                )
            return results

    async def extend_lease(self, job_id: str, *, lease_owner: str, lease_seconds: float) -> None:
        now = datetime.now(tz=UTC)
        async with self._lock:
            job = self._require_lease(job_id, lease_owner)
            job.lease_until = now + timedelta(seconds=max(lease_seconds, 0.0))
            job.updated_at = now

    async def mark_completed(self, job_id: str, *, lease_owner: str) -> None:
        async with self._lock:
            job = self._require_lease(job_id, lease_owner)
            job.status = JobStatus.COMPLETED
            job.lease_owner = None
            job.lease_until = None
            job.updated_at = datetime.now(tz=UTC)

    async def schedule_retry(
        self,
        job_id: str,
        *,
        lease_owner: str,
        arguments: list[Any],
        delay_seconds: float,
        error: str,
    ) -> None:
        now = datetime.now(tz=UTC)
        async with self._lock:
            job = self._require_lease(job_id, lease_owner)
            job.status = JobStatus.QUEUED
            job.arguments = copy.deepcopy(list(arguments))
            job.run_at = now + timedelta(seconds=max(delay_seconds, 0.0))
            job.lease_owner = None
            job.lease_until = None
            job.last_error = error
            job.updated_at = now

    async def mark_failed(self, job_id: str, *, lease_owner: str, error: str) -> None:
        async with self._lock:
            job = self._require_lease(job_id, lease_owner)
            job.status = JobStatus.FAILED
            job.lease_owner = None
            job.lease_until = None
            job.last_error = error
            job.updated_at = datetime.now(tz=UTC)

    async def get_job(self, job_id: str) -> QueuedJob | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            return None if job is None else copy.deepcopy(job)

    async def list_jobs(self, status: JobStatus | None = None) -> list[QueuedJob]:
        async with self._lock:
            jobs = [
                copy.deepcopy(job)
                for job in self._jobs.values()
                if status is None or job.status == status
            ]
        jobs.sort(key=lambda job: (job.created_at, job.job_id))
        return jobs

    def _require(self, job_id: str) -> QueuedJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job '{job_id}' not found.")
        return job

    def _require_lease(self, job_id: str, lease_owner: str) -> QueuedJob:
        job = self._require(job_id)
        if job.status is not JobStatus.RUNNING or job.lease_owner != lease_owner:
            raise LeaseLostError(
                f"Job '{job_id}' is not leased by '{lease_owner}' "
                f"(status {job.status}, owner {job.lease_owner!r})."
            )
        return job


__all__ = ["InMemoryJobQueue"]
