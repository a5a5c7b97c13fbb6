"""Throttle conditions evaluated after every processed item."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

BackoffSpec = float | Callable[[], float] | None
Predicate = Callable[[Any], bool]


@dataclass(slots=True, frozen=True)
class ThrottleCondition:
    """Side-effect-free predicate over a running job and its backoff.

    `backoff` is either seconds, a zero-argument callable computing seconds
    on every match, or `None` to fall back to the configured default.
    """

    condition: Predicate
    backoff: BackoffSpec = 30.0

    def applies_to(self, job: Any) -> bool:
        return bool(self.condition(job))

    def resolve_backoff(self) -> float | None:
        if self.backoff is None:
            return None
        if callable(self.backoff):
            return float(self.backoff())
        return float(self.backoff)


@dataclass(slots=True, frozen=True)
class Throttle:
    """A matched throttle condition."""

    condition: ThrottleCondition
    backoff: float | None


@dataclass(slots=True, frozen=True)
class ThrottleConditions:
    """Ordered, immutable registry of throttle conditions."""

    conditions: tuple[ThrottleCondition, ...] = ()

    def add(self, condition: ThrottleCondition) -> ThrottleConditions:
        """Return a registry with `condition` appended."""

        return ThrottleConditions((*self.conditions, condition))

    def evaluate(self, job: Any) -> Throttle | None:
        """Return the first condition that applies, in registration order."""

        for condition in self.conditions:
            if condition.applies_to(job):
                return Throttle(condition=condition, backoff=condition.resolve_backoff())
        return None

    def __iter__(self) -> Iterator[ThrottleCondition]:
        return iter(self.conditions)

    def __len__(self) -> int:
        return len(self.conditions)


__all__ = [
    "BackoffSpec",
    "Predicate",
    "Throttle",
    "ThrottleCondition",
    "ThrottleConditions",
]
