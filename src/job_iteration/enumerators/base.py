"""Lazy, cursor-addressed sequences returned by `build_enumerator`."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

from job_iteration.domain.cursors import Cursor
from job_iteration.domain.ports import OrderedSource

EnumeratorFactory = Callable[[], Iterator[tuple[Any, Cursor]]]
SizeEstimate = Callable[[], int | None] | int | None


class Enumerator:
    """Restartable lazy sequence of `(item, cursor)` pairs.

    Every iteration calls the factory again, so nothing is fetched until the
    first pair is pulled and an enumerator can be walked more than once.
    """

    def __init__(self, factory: EnumeratorFactory, size: SizeEstimate = None) -> None:
        self._factory = factory
        self._size = size

    @classmethod
    def from_source(cls, source: OrderedSource, cursor: Cursor = None) -> Enumerator:
        """Wrap an ordered source resumed from `cursor`."""

        return cls(
            lambda: source.produce(cursor),
            lambda: source.estimated_remaining(cursor),
        )

    def __iter__(self) -> Iterator[tuple[Any, Cursor]]:
        return iter(self._factory())

    def size(self) -> int | None:
        """Return the size estimate, evaluating it lazily."""

        if callable(self._size):
            return self._size()
        return self._size

    def __repr__(self) -> str:
        return f"<{type(self).__name__} factory={self._factory!r}>"


__all__ = ["Enumerator", "EnumeratorFactory", "SizeEstimate"]
