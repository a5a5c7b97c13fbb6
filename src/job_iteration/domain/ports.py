"""Ports for enumerator sources, job scheduling, and the job queue."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any, Protocol, runtime_checkable

from job_iteration.domain.cursors import Cursor
from job_iteration.domain.jobs import ClaimedJob, JobStatus, QueuedJob


@runtime_checkable
class OrderedSource(Protocol):
    """A restartable, ordered data source addressed by cursors."""

    def estimated_remaining(self, cursor: Cursor = None) -> int | None:
        """Return how many items follow `cursor`, or None when unknown."""

    def produce(self, cursor: Cursor = None) -> Iterator[tuple[Any, Cursor]]:
        """Lazily yield `(item, cursor)` pairs that follow `cursor`."""


class JobScheduler(Protocol):
    """Synchronous hand-off used by a running job to schedule its continuation."""

    def schedule(self, job_name: str, arguments: list[Any], delay_seconds: float) -> None:
        """Enqueue `job_name` with `arguments` to run after `delay_seconds`."""


@runtime_checkable
class JobQueueRepository(Protocol):
    """Durable job queue with lease-claim semantics."""

    async def enqueue(
        self,
        job_name: str,
        arguments: list[Any],
        *,
        delay_seconds: float = 0.0,
    ) -> str:
        """Insert one job and return its id."""

    async def claim_due_jobs(
        self,
        *,
        lease_owner: str,
        limit: int,
        lease_seconds: float,
    ) -> list[ClaimedJob]:
        """Claim queued jobs that are due, or running jobs whose lease expired."""

    async def extend_lease(self, job_id: str, *, lease_owner: str, lease_seconds: float) -> None:
        """Push the lease of a running job forward; raise if `lease_owner` lost it."""

    async def mark_completed(self, job_id: str, *, lease_owner: str) -> None:
        """Mark one job leased by `lease_owner` as finished."""

    async def schedule_retry(
        self,
        job_id: str,
        *,
        lease_owner: str,
        arguments: list[Any],
        delay_seconds: float,
        error: str,
    ) -> None:
        """Put a failed job leased by `lease_owner` back on the queue with new arguments."""

    async def mark_failed(self, job_id: str, *, lease_owner: str, error: str) -> None:
        """Mark one job leased by `lease_owner` as permanently failed."""

    async def get_job(self, job_id: str) -> QueuedJob | None:
        """Return one job by id."""

    async def list_jobs(self, status: JobStatus | None = None) -> list[QueuedJob]:
        """Return jobs, optionally filtered by status."""


__all__ = [
    "JobQueueRepository",
    "JobScheduler",
    "OrderedSource",
]
