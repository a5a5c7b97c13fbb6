"""Queued job durability models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any


class JobStatus(StrEnum):
    """Durable job queue states."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


@dataclass(slots=True)
class QueuedJob:
    """One row of the job queue."""

    job_id: str
    job_name: str
    arguments: list[Any]
    status: JobStatus
    attempt: int
    run_at: datetime
    created_at: datetime
    updated_at: datetime
    lease_owner: str | None = None
    lease_until: datetime | None = None
    last_error: str | None = None


@dataclass(slots=True, frozen=True)
class ClaimedJob:
    """A job claimed for execution on one worker."""

    job_id: str
    job_name: str
    arguments: list[Any]
    lease_owner: str
    attempt: int


__all__ = [
    "ClaimedJob",
    "JobStatus",
    "QueuedJob",
    "TERMINAL_JOB_STATUSES",
]
