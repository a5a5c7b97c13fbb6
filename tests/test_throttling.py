from __future__ import annotations

from typing import Any

from job_iteration.application.iteration import IterableJob
from job_iteration.application.throttling import ThrottleCondition, ThrottleConditions
from job_iteration.enumerators import Enumerator


class _Job(IterableJob):
    def build_enumerator(self, *arguments: Any, cursor: Any) -> Enumerator:
        return self.array_enumerator([], cursor=cursor)

    def each_iteration(self, item: Any, *arguments: Any) -> None:
        return None


def test_first_matching_condition_wins() -> None:
    conditions = (
        ThrottleConditions()
        .add(ThrottleCondition(lambda job: False, backoff=1))
        .add(ThrottleCondition(lambda job: True, backoff=2))
        .add(ThrottleCondition(lambda job: True, backoff=3))
    )

    throttle = conditions.evaluate(object())

    assert throttle is not None
    assert throttle.backoff == 2.0


def test_no_matching_condition_means_no_throttle() -> None:
    conditions = ThrottleConditions().add(ThrottleCondition(lambda job: False))

    assert conditions.evaluate(object()) is None


def test_callable_backoff_is_computed_on_every_match() -> None:
    delays = iter([5.0, 10.0])
    conditions = ThrottleConditions().add(
        ThrottleCondition(lambda job: True, backoff=lambda: next(delays))
    )

    first = conditions.evaluate(object())
    second = conditions.evaluate(object())

    assert first is not None and first.backoff == 5.0
    assert second is not None and second.backoff == 10.0


def test_add_returns_a_new_registry() -> None:
    empty = ThrottleConditions()
    added = empty.add(ThrottleCondition(lambda job: True))

    assert len(empty) == 0
    assert len(added) == 1


def test_subclass_conditions_do_not_leak_into_parent() -> None:
    class Parent(_Job):
        pass

    Parent.throttle_on(lambda job: False, backoff=1)

    class Child(Parent):
        pass

    Child.throttle_on(lambda job: True, backoff=2)

    assert len(Parent.throttle_conditions) == len(IterableJob.throttle_conditions) + 1
    assert len(Child.throttle_conditions) == len(Parent.throttle_conditions) + 1
    assert list(Child.throttle_conditions)[: len(Parent.throttle_conditions)] == list(
        Parent.throttle_conditions
    )


def test_parent_conditions_are_evaluated_before_child_conditions() -> None:
    class Parent(_Job):
        pass

    Parent.throttle_on(lambda job: True, backoff=11)

    class Child(Parent):
        pass

    Child.throttle_on(lambda job: True, backoff=22)

    throttle = Child.throttle_conditions.evaluate(Child())

    assert throttle is not None
    assert throttle.backoff == 11.0


def test_throttle_on_works_as_a_decorator() -> None:
    class Decorated(_Job):
        pass

    @Decorated.throttle_on(backoff=7)
    def always(job: IterableJob) -> bool:
        return True

    throttle = Decorated.throttle_conditions.evaluate(Decorated())

    assert always(Decorated()) is True
    assert throttle is not None
    assert throttle.backoff == 7.0


def test_builtin_conditions_do_not_fire_for_an_idle_job() -> None:
    assert IterableJob.throttle_conditions.evaluate(_Job()) is None
