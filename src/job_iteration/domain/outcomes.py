"""Step results and invocation outcomes for iteration jobs."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from job_iteration.domain.execution_state import ExecutionState


@dataclass(slots=True, frozen=True)
class Continue:
    """Keep iterating."""


@dataclass(slots=True, frozen=True)
class Complete:
    """Stop iterating and finish the job, running `on_complete`."""


@dataclass(slots=True, frozen=True)
class CompleteSkipHook:
    """Stop iterating and finish the job without running `on_complete`."""


@dataclass(slots=True, frozen=True)
class RetryAfter:
    """Stop iterating and re-enqueue the job after `backoff` seconds."""

    backoff: float | None = None


StepResult = Continue | Complete | CompleteSkipHook | RetryAfter

CONTINUE = Continue()


class AbortIteration(Exception):
    """Raised from step code to leave the iteration loop early."""

    def __init__(self, result: StepResult | None = None) -> None:
        self.result: StepResult = Complete() if result is None else result
        super().__init__(repr(self.result))


class IterationStatus(StrEnum):
    """Terminal states of a single job invocation."""

    COMPLETED = "COMPLETED"
    REENQUEUED = "REENQUEUED"
    ABORTED = "ABORTED"


@dataclass(slots=True, frozen=True)
class IterationResult:
    """What one call to `perform` ended with."""

    status: IterationStatus
    state: ExecutionState
    iterations: int
    backoff: float | None = None


__all__ = [
    "CONTINUE",
    "AbortIteration",
    "Complete",
    "CompleteSkipHook",
    "Continue",
    "IterationResult",
    "IterationStatus",
    "RetryAfter",
    "StepResult",
]
