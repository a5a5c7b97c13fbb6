"""Interruptible, resumable execution loop for iteration jobs."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar, Final

from job_iteration.application.throttling import (
    BackoffSpec,
    Predicate,
    ThrottleCondition,
    ThrottleConditions,
)
from job_iteration.domain.cursors import Cursor
from job_iteration.domain.errors import EnumeratorContractError, IterationConfigurationError
from job_iteration.domain.execution_state import (
    ExecutionState,
    extract_execution_state,
    inject_execution_state,
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
from job_iteration.domain.ports import JobScheduler
from job_iteration.enumerators.base import Enumerator
from job_iteration.enumerators.builders import Enumerators

CONFIGURED: Final = object()


def _default_logger() -> logging.Logger:
    return logging.getLogger("job_iteration")


@dataclass(slots=True, frozen=True)
class IterationConfig:
    """Process-wide iteration settings threaded into every job instance."""

    max_job_runtime: float | None = None
    default_retry_backoff: float | None = None
    logger: logging.Logger = field(default_factory=_default_logger)


class IterableJob(Enumerators):
    """Base class for jobs that iterate over an enumerator and checkpoint progress.

    Subclasses implement `build_enumerator` and `each_iteration`; `perform` is
    owned by this class and cannot be redefined. Between items the job may be
    interrupted by a throttle condition, the runtime limit or a stop signal,
    in which case it re-enqueues itself with its cursor embedded in the last
    argument.
    """

    job_name: ClassVar[str | None] = None
    max_job_runtime: ClassVar[Any] = CONFIGURED
    throttle_conditions: ClassVar[ThrottleConditions] = ThrottleConditions()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "perform" in cls.__dict__:
            raise TypeError(
                f"Job {cls.__qualname__} cannot redefine `perform`; implement "
                "`build_enumerator` and `each_iteration` instead."
            )
        cls.throttle_conditions = ThrottleConditions(tuple(cls.throttle_conditions))

    def __init__(
        self,
        *,
        scheduler: JobScheduler | None = None,
        config: IterationConfig | None = None,
        stop_signal: threading.Event | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.config = config or IterationConfig()
        self.stop_signal = stop_signal
        self.arguments: list[Any] = []
        self.state = ExecutionState()
        self.current_run_iterations = 0
        self.start_time: float | None = None
        self._run_started_at: float | None = None

    @classmethod
    def name(cls) -> str:
        """Return the name this job is registered and enqueued under."""

        return cls.job_name or f"{cls.__module__}.{cls.__qualname__}"

    @classmethod
    def throttle_on(
        cls,
        condition: Predicate | None = None,
        *,
        backoff: BackoffSpec = 30.0,
    ) -> Any:
        """Register a throttle condition on this class.

        Works as a plain call or as a decorator::

            @ReportJob.throttle_on(backoff=60)
            def replica_lagging(job): ...
        """

        def register(predicate: Predicate) -> Predicate:
            cls.throttle_conditions = cls.throttle_conditions.add(
                ThrottleCondition(condition=predicate, backoff=backoff)
            )
            return predicate

        if condition is None:
            return register
        return register(condition)

    @property
    def cursor_position(self) -> Cursor:
        return self.state.cursor_position

    @property
    def executions(self) -> int:
        return self.state.executions

    @property
    def times_interrupted(self) -> int:
        return self.state.times_interrupted

    @property
    def total_time(self) -> float:
        return self.state.total_time

    def build_enumerator(self, *arguments: Any, cursor: Cursor) -> Enumerator | None:
        raise NotImplementedError(
            f"{type(self).__name__} must implement a 'build_enumerator' method"
        )

    def each_iteration(self, item: Any, *arguments: Any) -> StepResult | None:
        raise NotImplementedError(
            f"{type(self).__name__} must implement an 'each_iteration' method"
        )

    def around_iteration(self, step: Callable[[], None]) -> None:
        """Wrap one step; overrides must call `step()` exactly once."""

        step()

    def on_start(self) -> None:
        """Called before the first item of the first invocation."""

    def on_resume(self) -> None:
        """Called before the first item of every later invocation."""

    def on_shutdown(self) -> None:
        """Called whenever an invocation stops iterating without an error."""

    def on_complete(self) -> None:
        """Called once when the enumerator is exhausted."""

    def runtime_limit(self) -> float | None:
        limit = type(self).max_job_runtime
        if limit is CONFIGURED:
            return self.config.max_job_runtime
        return limit

    def runtime_exceeded(self) -> bool:
        limit = self.runtime_limit()
        if limit is None or self.start_time is None:
            return False
        return time.monotonic() - self.start_time > limit

    def stop_requested(self) -> bool:
        return self.stop_signal is not None and self.stop_signal.is_set()

    def retry_arguments(self) -> list[Any]:
        """Arguments for retrying this instance from its last checkpoint."""

        return inject_execution_state(self.arguments, self.state)

    def perform(self, *arguments: Any) -> IterationResult:
        """Run one invocation: resume, iterate, then complete or re-enqueue."""

        user_arguments, state = extract_execution_state(arguments)
        self.arguments = user_arguments
        self.state = state
        self.current_run_iterations = 0
        state.executions += 1
        self.start_time = time.monotonic()
        self._run_started_at = self.start_time

        try:
            return self._perform(state)
        finally:
            self._record_runtime()

    def _perform(self, state: ExecutionState) -> IterationResult:
        logger = self.config.logger
        enumerator = self.build_enumerator(*self.arguments, cursor=state.cursor_position)
        if enumerator is None:
            logger.info("`build_enumerator` returned None. Skipping the job.")
            return IterationResult(IterationStatus.COMPLETED, state, 0)
        if not isinstance(enumerator, Enumerator):
            raise EnumeratorContractError(
                f"{type(self).__name__}.build_enumerator must return an Enumerator "
                f"or None, got {type(enumerator).__name__}."
            )

        if state.executions == 1 and state.times_interrupted == 0:
            self.on_start()
        else:
            self.on_resume()

        outcome = self._iterate(enumerator)
        self.on_shutdown()
        self._record_runtime()

        if isinstance(outcome, RetryAfter):
            backoff = self._reenqueue(outcome.backoff)
            return IterationResult(
                IterationStatus.REENQUEUED, state, self.current_run_iterations, backoff
            )
        if isinstance(outcome, CompleteSkipHook):
            return IterationResult(IterationStatus.ABORTED, state, self.current_run_iterations)

        self.on_complete()
        logger.info(
            "Completed iterating. times_interrupted=%d total_time=%.3f",
            state.times_interrupted,
            state.total_time,
        )
        return IterationResult(IterationStatus.COMPLETED, state, self.current_run_iterations)

    def _iterate(self, enumerator: Enumerator) -> StepResult:
        found_anything = False
        for item, cursor in enumerator:
            found_anything = True
            result = self._run_step(item)
            if not isinstance(result, Continue):
                return result

            self.state.cursor_position = cursor
            self.current_run_iterations += 1
            throttle = type(self).throttle_conditions.evaluate(self)
            if throttle is not None:
                return RetryAfter(throttle.backoff)

        if not found_anything:
            self.config.logger.info(
                "Enumerator found nothing to iterate! times_interrupted=%d cursor_position=%r",
                self.state.times_interrupted,
                self.state.cursor_position,
            )
        return Complete()

    def _run_step(self, item: Any) -> StepResult:
        results: list[Any] = []

        def step() -> None:
            if results:
                raise EnumeratorContractError(
                    f"{type(self).__name__}.around_iteration called the step more than once."
                )
            results.append(self.each_iteration(item, *self.arguments))

        try:
            self.around_iteration(step)
        except AbortIteration as abort:
            return abort.result

        if not results:
            raise EnumeratorContractError(
                f"{type(self).__name__}.around_iteration must call the step it is given."
            )
        result = results[0]
        if isinstance(result, StepResult):
            return result
        return CONTINUE

    def _reenqueue(self, backoff: float | None) -> float:
        if self.scheduler is None:
            raise IterationConfigurationError(
                f"{type(self).__name__} was interrupted but has no scheduler to re-enqueue it."
            )

        if backoff is None:
            backoff = self.config.default_retry_backoff or 0.0
        self.state.times_interrupted += 1
        self.config.logger.info(
            "Interrupting and re-enqueueing the job cursor_position=%r",
            self.state.cursor_position,
        )
        self.scheduler.schedule(type(self).name(), self.retry_arguments(), backoff)
        return backoff

    def _record_runtime(self) -> None:
        if self._run_started_at is None:
            return
        now = time.monotonic()
        self.state.total_time += now - self._run_started_at
        self._run_started_at = None


def _max_runtime_exceeded(job: IterableJob) -> bool:
    return job.runtime_exceeded()


def _stop_requested(job: IterableJob) -> bool:
    return job.stop_requested()


IterableJob.throttle_on(_max_runtime_exceeded, backoff=None)
IterableJob.throttle_on(_stop_requested, backoff=None)


__all__ = [
    "CONFIGURED",
    "IterableJob",
    "IterationConfig",
]
