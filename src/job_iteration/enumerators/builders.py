"""Enumerator constructors available on every iterable job."""

from __future__ import annotations

import os
from collections.abc import Sequence
from typing import Any, TextIO

from sqlalchemy import Select

from job_iteration.domain.cursors import Cursor
from job_iteration.enumerators.array_enumerator import ArraySource
from job_iteration.enumerators.base import Enumerator
from job_iteration.enumerators.csv_enumerator import DelimitedFileSource
from job_iteration.enumerators.nested_enumerator import LevelBuilder, NestedEnumerator
from job_iteration.enumerators.tabular_enumerator import (
    ColumnSpec,
    StatementExecutor,
    TabularSource,
)


class Enumerators:
    """Mixin with one builder per enumerator variant."""

    def array_enumerator(self, items: Sequence[Any], *, cursor: Cursor = None) -> Enumerator:
        """Enumerate list elements; the cursor is the index of the last one processed."""

        return ArraySource(items).elements(cursor)

    def records_enumerator(
        self,
        connection: StatementExecutor,
        statement: Select[Any],
        *,
        cursor: Cursor = None,
        columns: ColumnSpec | Sequence[ColumnSpec] | None = None,
        order: str | Sequence[str] = "asc",
        batch_size: int = 100,
    ) -> Enumerator:
        """Enumerate rows of `statement` one at a time.

        Rows are still fetched `batch_size` at a time. The cursor is the value
        of `columns` (the primary key by default) for the last processed row.
        """

        source = TabularSource(
            connection, statement, columns=columns, order=order, batch_size=batch_size
        )
        return source.records(cursor)

    def batches_enumerator(
        self,
        connection: StatementExecutor,
        statement: Select[Any],
        *,
        cursor: Cursor = None,
        columns: ColumnSpec | Sequence[ColumnSpec] | None = None,
        order: str | Sequence[str] = "asc",
        batch_size: int = 100,
    ) -> Enumerator:
        """Enumerate lists of up to `batch_size` rows."""

        source = TabularSource(
            connection, statement, columns=columns, order=order, batch_size=batch_size
        )
        return source.batches(cursor)

    def relations_enumerator(
        self,
        connection: StatementExecutor,
        statement: Select[Any],
        *,
        cursor: Cursor = None,
        columns: ColumnSpec | Sequence[ColumnSpec] | None = None,
        order: str | Sequence[str] = "asc",
        batch_size: int = 100,
    ) -> Enumerator:
        """Enumerate statements narrowed to the primary keys of each batch.

        Useful for bulk updates and deletes that never need the rows loaded.
        """

        source = TabularSource(
            connection, statement, columns=columns, order=order, batch_size=batch_size
        )
        return source.relations(cursor)

    def csv_enumerator(
        self,
        stream: TextIO | str | os.PathLike[str],
        *,
        cursor: Cursor = None,
        headers: bool = True,
        **format_params: Any,
    ) -> Enumerator:
        return DelimitedFileSource(stream, headers=headers, **format_params).rows(cursor)

    def csv_batches_enumerator(
        self,
        stream: TextIO | str | os.PathLike[str],
        *,
        cursor: Cursor = None,
        batch_size: int = 100,
        headers: bool = True,
        **format_params: Any,
    ) -> Enumerator:
        source = DelimitedFileSource(stream, headers=headers, **format_params)
        return source.batches(cursor, batch_size=batch_size)

    def nested_enumerator(
        self,
        levels: Sequence[LevelBuilder],
        *,
        cursor: Cursor = None,
    ) -> Enumerator:
        """Walk `levels` depth first; see `NestedEnumerator`."""

        return NestedEnumerator(levels, cursor).enumerator()


__all__ = ["Enumerators"]
