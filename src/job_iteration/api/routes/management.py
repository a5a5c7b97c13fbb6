"""Management routes for monitoring iteration jobs."""

from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from job_iteration.api.dependencies import get_monitoring_service
from job_iteration.application.job_monitoring import JobMonitoringService
from job_iteration.domain.errors import IterationConfigurationError, JobNotFoundError
from job_iteration.domain.jobs import JobStatus
from job_iteration.domain.monitoring_models import (
    JobInfoResponse,
    JobListResponse,
    WorkerStateResponse,
)

router = APIRouter(prefix="/management", tags=["job management"])


def _raise_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, JobNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, IterationConfigurationError):
        raise HTTPException(status_code=400, detail=str(exc))
    raise HTTPException(status_code=500, detail="Unexpected job queue error")


@router.get("/jobs", response_model=JobListResponse, status_code=200)
async def list_jobs(
    status: JobStatus | None = Query(default=None),
    service: JobMonitoringService = Depends(get_monitoring_service),
) -> JobListResponse:
    """List jobs with their checkpointed iteration progress."""

    try:
        return await service.list_jobs(status)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


@router.get("/jobs/{id}", response_model=JobInfoResponse, status_code=200)
async def get_job_details(
    id: str = Path(...),
    service: JobMonitoringService = Depends(get_monitoring_service),
) -> JobInfoResponse:
    """Get one job with its checkpointed iteration progress."""

    try:
        return await service.get_job_info(id)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)


@router.get("/worker", response_model=WorkerStateResponse, status_code=200)
async def get_worker_state(
    service: JobMonitoringService = Depends(get_monitoring_service),
) -> WorkerStateResponse:
    return service.worker_state()


@router.post("/worker/quiet", response_model=WorkerStateResponse, status_code=202)
async def quiet_worker(
    service: JobMonitoringService = Depends(get_monitoring_service),
) -> WorkerStateResponse:
    """Interrupt running jobs at their next step boundary."""

    return service.quiet_worker()


__all__ = ["router"]
