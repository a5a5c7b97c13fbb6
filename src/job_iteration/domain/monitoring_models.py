"""Monitoring models for the job management API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from job_iteration.domain.jobs import JobStatus


class MonitoringModel(BaseModel):
    """Base model for management routes."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class IterationProgressResponse(MonitoringModel):
    """Checkpointed iteration progress embedded in a job payload."""

    executions: int = 0
    cursor_position: Any = Field(default=None, alias="cursorPosition")
    times_interrupted: int = Field(default=0, alias="timesInterrupted")
    total_time: float = Field(default=0.0, alias="totalTime")


class JobInfoResponse(MonitoringModel):
    """Single job management payload."""

    job_id: str = Field(alias="jobId")
    job_name: str = Field(alias="jobName")
    status: JobStatus
    attempt: int
    run_at: datetime = Field(alias="runAt")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    lease_owner: str | None = Field(default=None, alias="leaseOwner")
    last_error: str | None = Field(default=None, alias="lastError")
    arguments: list[Any] = Field(default_factory=list)
    progress: IterationProgressResponse


class JobListResponse(MonitoringModel):
    """Collection wrapper for the job list endpoint."""

    worker_id: str = Field(alias="workerId")
    jobs: list[JobInfoResponse]


class WorkerStateResponse(MonitoringModel):
    """Worker lifecycle flags."""

    worker_id: str = Field(alias="workerId")
    running: bool
    quiet: bool


__all__ = [
    "IterationProgressResponse",
    "JobInfoResponse",
    "JobListResponse",
    "WorkerStateResponse",
]
