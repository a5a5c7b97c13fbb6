"""Application layer public API."""

from job_iteration.application.iteration import CONFIGURED, IterableJob, IterationConfig
from job_iteration.application.job_monitoring import JobMonitoringService
from job_iteration.application.registry import JobRegistry
from job_iteration.application.throttling import (
    Throttle,
    ThrottleCondition,
    ThrottleConditions,
)
from job_iteration.application.worker import IterationWorker, QueueScheduler

__all__ = [
    "CONFIGURED",
    "IterableJob",
    "IterationConfig",
    "IterationWorker",
    "JobMonitoringService",
    "JobRegistry",
    "QueueScheduler",
    "Throttle",
    "ThrottleCondition",
    "ThrottleConditions",
]
