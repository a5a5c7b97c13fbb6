"""Enumerator over an in-memory list, addressed by element index."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import Row, RowMapping
from sqlalchemy.orm import InstanceState

from job_iteration.domain.cursors import Cursor
from job_iteration.domain.errors import IterationConfigurationError
from job_iteration.enumerators.base import Enumerator


class ArraySource:
    """Ordered source over a finite list; the cursor is the last processed index."""

    def __init__(self, items: Sequence[Any]) -> None:
        if not isinstance(items, (list, tuple)):
            raise IterationConfigurationError(
                f"items must be a list or tuple, got {type(items).__name__}."
            )
        if any(_is_tabular_row(item) for item in items):
            raise IterationConfigurationError(
                "items cannot contain database rows; iterate them with a tabular "
                "enumerator so that checkpoints use their keys."
            )
        self._items = items

    def estimated_remaining(self, cursor: Cursor = None) -> int:
        return max(len(self._items) - _start_index(cursor), 0)

    def produce(self, cursor: Cursor = None) -> Iterator[tuple[Any, int]]:
        for index in range(_start_index(cursor), len(self._items)):
            yield self._items[index], index

    def elements(self, cursor: Cursor = None) -> Enumerator:
        _start_index(cursor)
        return Enumerator.from_source(self, cursor)


def _start_index(cursor: Cursor) -> int:
    if cursor is None:
        return 0
    if isinstance(cursor, bool) or not isinstance(cursor, int):
        raise IterationConfigurationError(
            f"Array cursor must be an integer index, got {cursor!r}."
        )
    return cursor + 1


def _is_tabular_row(item: object) -> bool:
    if isinstance(item, (Row, RowMapping)):
        return True
    return isinstance(sa_inspect(item, raiseerr=False), InstanceState)


__all__ = ["ArraySource"]
