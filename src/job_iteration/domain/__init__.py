"""Domain public API."""

from job_iteration.domain.cursors import Cursor, decode, encode
from job_iteration.domain.errors import (
    EnumeratorContractError,
    IterationConfigurationError,
    IterationError,
    JobNotFoundError,
    LeaseLostError,
    UnknownJobError,
)
from job_iteration.domain.execution_state import (
    METADATA_KEY,
    ExecutionState,
    IterationMetadata,
    extract_execution_state,
    inject_execution_state,
    read_execution_state,
)
from job_iteration.domain.jobs import ClaimedJob, JobStatus, QueuedJob
from job_iteration.domain.monitoring_models import (
    IterationProgressResponse,
    JobInfoResponse,
    JobListResponse,
    WorkerStateResponse,
)
from job_iteration.domain.outcomes import (
    CONTINUE,
    AbortIteration,
    Complete,
    CompleteSkipHook,
    Continue,
    IterationResult,
    IterationStatus,
    RetryAfter,
    StepResult,
)
from job_iteration.domain.ports import JobQueueRepository, JobScheduler, OrderedSource

__all__ = [
    "CONTINUE",
    "METADATA_KEY",
    "AbortIteration",
    "ClaimedJob",
    "Complete",
    "CompleteSkipHook",
    "Continue",
    "Cursor",
    "EnumeratorContractError",
    "ExecutionState",
    "IterationConfigurationError",
    "IterationError",
    "IterationMetadata",
    "IterationProgressResponse",
    "IterationResult",
    "IterationStatus",
    "JobInfoResponse",
    "JobListResponse",
    "JobNotFoundError",
    "LeaseLostError",
    "JobQueueRepository",
    "JobScheduler",
    "JobStatus",
    "OrderedSource",
    "QueuedJob",
    "RetryAfter",
    "StepResult",
    "UnknownJobError",
    "WorkerStateResponse",
    "decode",
    "encode",
    "extract_execution_state",
    "inject_execution_state",
    "read_execution_state",
]
