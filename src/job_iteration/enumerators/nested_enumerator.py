"""Depth-first composition of enumerators into one enumerator."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from typing import Any

from job_iteration.domain.cursors import Cursor
from job_iteration.domain.errors import EnumeratorContractError, IterationConfigurationError
from job_iteration.enumerators.base import Enumerator

LevelBuilder = Callable[..., Enumerator]


class NestedEnumerator:
    """Cross product of levels, walked depth first.

    Level `i` is called as `level(*items_of_enclosing_levels, cursor)` and
    must return an `Enumerator`. Only innermost items are yielded. The
    composite cursor holds one slot per level: enclosing levels store the
    cursor that resumes them at their current item, the innermost level
    stores the cursor of the yielded item itself.
    """

    def __init__(self, levels: Sequence[LevelBuilder], cursor: Cursor = None) -> None:
        if not levels:
            raise IterationConfigurationError("Nested enumerator needs at least one level.")
        for index, level in enumerate(levels):
            if not callable(level):
                raise IterationConfigurationError(
                    f"Nested level {index} must be a callable returning an enumerator, "
                    f"got {type(level).__name__}."
                )

        self._levels = list(levels)
        self._cursors = _cursor_slots(cursor, len(self._levels))

    def enumerator(self) -> Enumerator:
        return Enumerator(self._iterate)

    def _iterate(self) -> Iterator[tuple[Any, tuple[Cursor, ...]]]:
        yield from self._walk(0, (), self._cursors, ())

    def _walk(
        self,
        depth: int,
        outer_items: tuple[Any, ...],
        resume: list[Cursor],
        prefix: tuple[Cursor, ...],
    ) -> Iterator[tuple[Any, tuple[Cursor, ...]]]:
        level = self._levels[depth]
        enumerator = level(*outer_items, resume[depth])
        if not isinstance(enumerator, Enumerator):
            raise EnumeratorContractError(
                f"Nested level {depth} must return an Enumerator, "
                f"got {type(enumerator).__name__}."
            )

        innermost = depth == len(self._levels) - 1
        fresh = [None] * len(self._levels)
        previous = resume[depth]
        for item, cursor in enumerator:
            if innermost:
                yield item, (*prefix, cursor)
            else:
                yield from self._walk(depth + 1, (*outer_items, item), resume, (*prefix, previous))
                resume = fresh
            previous = cursor


def _cursor_slots(cursor: Cursor, level_count: int) -> list[Cursor]:
    if cursor is None:
        return [None] * level_count
    if level_count == 1:
        if isinstance(cursor, (tuple, list)) and len(cursor) == 1:
            return [cursor[0]]
        return [cursor]
    if not isinstance(cursor, (tuple, list)) or len(cursor) != level_count:
        raise IterationConfigurationError(
            f"cursor should have the same number of values as levels ({level_count}), "
            f"got {cursor!r}."
        )
    return list(cursor)


__all__ = ["LevelBuilder", "NestedEnumerator"]
