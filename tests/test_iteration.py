from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

import pytest
from sqlalchemy import (
    Column,
    Engine,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    insert,
    select,
)

from job_iteration.application.iteration import IterableJob, IterationConfig
from job_iteration.domain.errors import EnumeratorContractError, IterationConfigurationError
from job_iteration.domain.execution_state import METADATA_KEY, extract_execution_state
from job_iteration.domain.outcomes import (
    AbortIteration,
    CompleteSkipHook,
    IterationStatus,
    RetryAfter,
)
from job_iteration.enumerators import Enumerator

metadata = MetaData()
products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(50), nullable=False),
)


class RecordingScheduler:
    """Scheduler test double that records re-enqueue requests."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[Any], float]] = []

    def schedule(self, job_name: str, arguments: list[Any], delay_seconds: float) -> None:
        self.calls.append((job_name, arguments, delay_seconds))


class RecordingJob(IterableJob):
    """Array job that records hooks and processed items per instance."""

    items: list[Any] = ["a", "b", "c", "d", "e"]

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.events: list[str] = []
        self.processed: list[Any] = []

    def build_enumerator(self, *arguments: Any, cursor: Any) -> Enumerator:
        return self.array_enumerator(self.items, cursor=cursor)

    def each_iteration(self, item: Any, *arguments: Any) -> Any:
        self.processed.append(item)
        return None

    def on_start(self) -> None:
        self.events.append("start")

    def on_resume(self) -> None:
        self.events.append("resume")

    def on_shutdown(self) -> None:
        self.events.append("shutdown")

    def on_complete(self) -> None:
        self.events.append("complete")


def _products_engine(row_count: int) -> Engine:
    engine = create_engine("sqlite://")
    metadata.create_all(engine)
    with engine.begin() as connection:
        connection.execute(
            insert(products),
            [{"id": index, "name": f"product-{index}"} for index in range(1, row_count + 1)],
        )
    return engine


def _run_until_done(
    job_factory: Callable[[RecordingScheduler], IterableJob],
    arguments: list[Any],
    *,
    max_invocations: int = 20,
) -> list[IterableJob]:
    """Perform a job and every continuation it schedules, like a queue would."""

    invocations: list[IterableJob] = []
    pending = [arguments]
    while pending:
        assert len(invocations) < max_invocations
        scheduler = RecordingScheduler()
        job = job_factory(scheduler)
        job.perform(*pending.pop())
        invocations.append(job)
        pending.extend(call_arguments for _, call_arguments, _ in scheduler.calls)
    return invocations


def test_job_without_interruptions_runs_every_item_and_completes() -> None:
    scheduler = RecordingScheduler()
    job = RecordingJob(scheduler=scheduler)

    result = job.perform()

    assert result.status is IterationStatus.COMPLETED
    assert result.iterations == 5
    assert job.processed == ["a", "b", "c", "d", "e"]
    assert job.events == ["start", "shutdown", "complete"]
    assert job.cursor_position == 4
    assert job.executions == 1
    assert scheduler.calls == []


def test_throttled_job_reenqueues_with_cursor_in_trailing_argument() -> None:
    class ThrottledJob(RecordingJob):
        pass

    ThrottledJob.throttle_on(lambda job: job.current_run_iterations >= 2, backoff=5)
    scheduler = RecordingScheduler()
    job = ThrottledJob(scheduler=scheduler)

    result = job.perform("tenant-1")

    assert result.status is IterationStatus.REENQUEUED
    assert result.backoff == 5.0
    assert job.processed == ["a", "b"]
    assert job.events == ["start", "shutdown"]

    [(job_name, arguments, delay)] = scheduler.calls
    assert job_name == ThrottledJob.name()
    assert delay == 5.0
    assert arguments[0] == "tenant-1"
    payload = arguments[-1][METADATA_KEY]
    assert payload["executions"] == 1
    assert payload["cursorPosition"] == 1
    assert payload["timesInterrupted"] == 1
    assert payload["totalTime"] >= 0


def test_resumed_job_continues_after_checkpoint_and_calls_on_resume() -> None:
    class ThrottledJob(RecordingJob):
        pass

    ThrottledJob.throttle_on(lambda job: job.current_run_iterations >= 2, backoff=0)

    invocations = _run_until_done(lambda scheduler: ThrottledJob(scheduler=scheduler), [])

    assert [job.processed for job in invocations] == [["a", "b"], ["c", "d"], ["e"]]
    assert [job.events[0] for job in invocations] == ["start", "resume", "resume"]
    assert [job.executions for job in invocations] == [1, 2, 3]
    assert invocations[-1].events == ["resume", "shutdown", "complete"]


def test_build_enumerator_returning_none_skips_the_job(caplog: pytest.LogCaptureFixture) -> None:
    class NothingJob(RecordingJob):
        def build_enumerator(self, *arguments: Any, cursor: Any) -> None:
            return None

    caplog.set_level(logging.INFO, logger="job_iteration")
    job = NothingJob()

    result = job.perform()

    assert result.status is IterationStatus.COMPLETED
    assert job.events == []
    assert "`build_enumerator` returned None. Skipping the job." in caplog.text


def test_empty_enumerator_completes_and_logs(caplog: pytest.LogCaptureFixture) -> None:
    class EmptyJob(RecordingJob):
        items: list[Any] = []

    caplog.set_level(logging.INFO, logger="job_iteration")
    scheduler = RecordingScheduler()
    job = EmptyJob(scheduler=scheduler)

    result = job.perform()

    assert result.status is IterationStatus.COMPLETED
    assert job.events == ["start", "shutdown", "complete"]
    assert scheduler.calls == []
    assert "Enumerator found nothing to iterate! times_interrupted=0 cursor_position=None" in (
        caplog.text
    )
    assert "Completed iterating. times_interrupted=0" in caplog.text


def test_missing_build_enumerator_names_the_method() -> None:
    class IncompleteJob(IterableJob):
        def each_iteration(self, item: Any, *arguments: Any) -> None:
            return None

    with pytest.raises(NotImplementedError, match="build_enumerator"):
        IncompleteJob().perform()


def test_missing_each_iteration_names_the_method() -> None:
    class IncompleteJob(IterableJob):
        def build_enumerator(self, *arguments: Any, cursor: Any) -> Enumerator:
            return self.array_enumerator([1], cursor=cursor)

    with pytest.raises(NotImplementedError, match="each_iteration"):
        IncompleteJob().perform()


def test_build_enumerator_must_return_an_enumerator() -> None:
    class ListJob(RecordingJob):
        def build_enumerator(self, *arguments: Any, cursor: Any) -> Any:
            return [1, 2, 3]

    with pytest.raises(EnumeratorContractError, match="list"):
        ListJob().perform()


def test_perform_cannot_be_redefined() -> None:
    with pytest.raises(TypeError, match="perform"):

        class BadJob(RecordingJob):
            def perform(self, *arguments: Any) -> Any:  # type: ignore[override]
                return None


def test_abort_completes_without_advancing_cursor() -> None:
    class AbortingJob(RecordingJob):
        def each_iteration(self, item: Any, *arguments: Any) -> Any:
            if item == "c":
                raise AbortIteration()
            self.processed.append(item)
            return None

    job = AbortingJob()

    result = job.perform()

    assert result.status is IterationStatus.COMPLETED
    assert job.processed == ["a", "b"]
    assert job.cursor_position == 1
    assert job.events == ["start", "shutdown", "complete"]


def test_abort_can_skip_the_complete_hook() -> None:
    class AbortingJob(RecordingJob):
        def each_iteration(self, item: Any, *arguments: Any) -> Any:
            if item == "b":
                return CompleteSkipHook()
            return None

    job = AbortingJob()

    result = job.perform()

    assert result.status is IterationStatus.ABORTED
    assert job.events == ["start", "shutdown"]


def test_abort_can_request_a_retry_with_custom_backoff() -> None:
    class RetryingJob(RecordingJob):
        def each_iteration(self, item: Any, *arguments: Any) -> Any:
            if item == "d":
                raise AbortIteration(RetryAfter(12))
            self.processed.append(item)
            return None

    scheduler = RecordingScheduler()
    job = RetryingJob(scheduler=scheduler)

    result = job.perform()

    assert result.status is IterationStatus.REENQUEUED
    assert job.cursor_position == 2
    [(_, arguments, delay)] = scheduler.calls
    assert delay == 12.0
    assert arguments[-1][METADATA_KEY]["cursorPosition"] == 2


def test_step_error_propagates_without_hooks_or_checkpoint() -> None:
    class FailingJob(RecordingJob):
        def each_iteration(self, item: Any, *arguments: Any) -> Any:
            if item == "c":
                raise RuntimeError("boom")
            self.processed.append(item)
            return None

    scheduler = RecordingScheduler()
    job = FailingJob(scheduler=scheduler)

    with pytest.raises(RuntimeError, match="boom"):
        job.perform("x")

    assert job.events == ["start"]
    assert scheduler.calls == []
    arguments, state = extract_execution_state(job.retry_arguments())
    assert arguments == ["x"]
    assert state.cursor_position == 1
    assert state.executions == 1


def test_around_iteration_wraps_every_step() -> None:
    class WrappedJob(RecordingJob):
        def around_iteration(self, step: Callable[[], None]) -> None:
            self.events.append("before")
            step()
            self.events.append("after")

    job = WrappedJob()
    job.perform()

    assert job.events.count("before") == 5
    assert job.events.count("after") == 5


def test_around_iteration_must_call_the_step() -> None:
    class SwallowingJob(RecordingJob):
        def around_iteration(self, step: Callable[[], None]) -> None:
            return None

    with pytest.raises(EnumeratorContractError):
        SwallowingJob().perform()


def test_max_runtime_interrupts_with_default_backoff() -> None:
    class SlowJob(RecordingJob):
        max_job_runtime = 10.0

        def on_start(self) -> None:
            assert self.start_time is not None
            self.start_time -= 60

    scheduler = RecordingScheduler()
    config = IterationConfig(default_retry_backoff=7.0)
    job = SlowJob(scheduler=scheduler, config=config)

    result = job.perform()

    assert result.status is IterationStatus.REENQUEUED
    assert job.processed == ["a"]
    [(_, _, delay)] = scheduler.calls
    assert delay == 7.0


def test_configured_max_runtime_applies_unless_class_overrides_it() -> None:
    class DisabledLimitJob(RecordingJob):
        max_job_runtime = None

    config = IterationConfig(max_job_runtime=30.0)

    assert RecordingJob(config=config).runtime_limit() == 30.0
    assert DisabledLimitJob(config=config).runtime_limit() is None


def test_stop_signal_interrupts_at_next_step_boundary() -> None:
    stop_signal = threading.Event()

    class StoppingJob(RecordingJob):
        def each_iteration(self, item: Any, *arguments: Any) -> Any:
            self.processed.append(item)
            if item == "b":
                stop_signal.set()
            return None

    scheduler = RecordingScheduler()
    job = StoppingJob(scheduler=scheduler, stop_signal=stop_signal)

    result = job.perform()

    assert result.status is IterationStatus.REENQUEUED
    assert job.processed == ["a", "b"]
    [(_, _, delay)] = scheduler.calls
    assert delay == 0.0


def test_interruption_without_scheduler_is_a_configuration_error() -> None:
    stop_signal = threading.Event()
    stop_signal.set()

    with pytest.raises(IterationConfigurationError):
        RecordingJob(stop_signal=stop_signal).perform()


def test_batches_of_three_over_ten_rows() -> None:
    engine = _products_engine(10)

    class BatchJob(RecordingJob):
        def build_enumerator(self, *arguments: Any, cursor: Any) -> Enumerator:
            return self.batches_enumerator(
                self.connection, select(products), cursor=cursor, batch_size=3
            )

        def each_iteration(self, rows: Any, *arguments: Any) -> None:
            self.processed.append([row.id for row in rows])

    with engine.connect() as connection:
        job = BatchJob()
        job.connection = connection  # type: ignore[attr-defined]
        job.perform()

    assert [len(batch) for batch in job.processed] == [3, 3, 3, 1]
    assert job.events.count("complete") == 1


def test_interrupting_after_every_batch_resumes_exactly() -> None:
    engine = _products_engine(10)
    hooks: list[str] = []

    class BatchJob(RecordingJob):
        def build_enumerator(self, *arguments: Any, cursor: Any) -> Enumerator:
            return self.batches_enumerator(
                connection, select(products), cursor=cursor, batch_size=3
            )

        def each_iteration(self, rows: Any, *arguments: Any) -> None:
            self.processed.extend(row.id for row in rows)

        def on_shutdown(self) -> None:
            hooks.append("shutdown")

        def on_complete(self) -> None:
            hooks.append("complete")

    BatchJob.throttle_on(
        lambda job: job.current_run_iterations >= 1 and job.cursor_position != 10,
        backoff=0,
    )

    with engine.connect() as connection:
        invocations = _run_until_done(lambda scheduler: BatchJob(scheduler=scheduler), [])

    assert len(invocations) == 4
    assert [job.processed for job in invocations] == [[1, 2, 3], [4, 5, 6], [7, 8, 9], [10]]
    assert [job.executions for job in invocations] == [1, 2, 3, 4]
    assert [job.times_interrupted for job in invocations] == [1, 2, 3, 3]
    assert hooks.count("shutdown") == 4
    assert hooks.count("complete") == 1
    assert invocations[-1].total_time >= invocations[0].total_time
