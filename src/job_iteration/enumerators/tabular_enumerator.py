"""Keyset-paginated enumerators over SQLAlchemy select statements.

Batches are fetched with a seek predicate on the ordering columns instead of
OFFSET, so deep pages cost the same as the first one and concurrent inserts
never shift rows across page boundaries. For `columns=[updated_at, id]` and a
cursor `(t, k)` the follow-up query looks like::

    SELECT ... WHERE updated_at > :t OR (updated_at = :t AND id > :k)
    ORDER BY updated_at, id LIMIT :batch_size

The first fetch of a resumed run compares the last column inclusively, so the
checkpointed row is looked up again instead of assumed. When it is still
there it is dropped from the batch because it was already processed.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from enum import StrEnum
from typing import Any, Protocol

from sqlalchemy import Column, ColumnElement, Select, Table, and_, func, or_, select, tuple_
from sqlalchemy.orm import QueryableAttribute
from sqlalchemy.sql.expression import Join

from job_iteration.domain.cursors import Cursor, as_tuple, coerce_value, unwrap
from job_iteration.domain.errors import IterationConfigurationError
from job_iteration.enumerators.base import Enumerator

_DEFAULT_BATCH_SIZE = 100

ColumnSpec = str | ColumnElement[Any] | QueryableAttribute[Any]


class SortDirection(StrEnum):
    """Ordering direction of one keyset column."""

    ASC = "asc"
    DESC = "desc"


class StatementExecutor(Protocol):
    """Anything that executes SQLAlchemy statements, e.g. a Connection or Session."""

    def execute(self, statement: Any) -> Any:
        """Execute `statement` and return a result."""


def keyset_predicate(
    columns: Sequence[ColumnElement[Any]],
    directions: Sequence[SortDirection],
    cursor: Sequence[Any],
    *,
    inclusive: bool,
) -> ColumnElement[bool]:
    """Build the lexicographic "after cursor" predicate for the given columns.

    (x, y) > (a, b)   iff  x > a OR (x = a AND y > b)
    (x, y) >= (a, b)  iff  x > a OR (x = a AND y >= b)

    Descending columns use `<`/`<=` instead. Only the last column is ever
    compared inclusively.
    """

    if not columns or len(columns) != len(cursor) or len(columns) != len(directions):
        raise IterationConfigurationError(
            "keyset_predicate needs one direction and one cursor value per column."
        )

    last_index = len(columns) - 1
    clause = _compare(columns[last_index], directions[last_index], cursor[last_index], inclusive)
    for index in range(last_index - 1, -1, -1):
        column, direction, value = columns[index], directions[index], cursor[index]
        clause = or_(_compare(column, direction, value, False), and_(column == value, clause))
    return clause


class TabularSource:
    """Ordered source over the rows of a select statement.

    - `records` yields each row with its own cursor.
    - `batches` yields lists of rows with the cursor of the last row.
    - `relations` yields unloaded statements narrowed to the primary keys of
      one batch, for callers that issue their own bulk statements.
    """

    def __init__(
        self,
        connection: StatementExecutor,
        statement: Select[Any],
        *,
        columns: ColumnSpec | Sequence[ColumnSpec] | None = None,
        order: str | Sequence[str] = SortDirection.ASC,
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ) -> None:
        if not isinstance(statement, Select):
            raise IterationConfigurationError(
                f"statement must be a SQLAlchemy Select, got {type(statement).__name__}."
            )
        if (
            statement._order_by_clauses
            or statement._limit_clause is not None
            or statement._offset_clause is not None
        ):
            raise IterationConfigurationError(
                "The statement cannot use ORDER BY, LIMIT or OFFSET because iteration "
                "orders and pages by cursor. Narrow the rows with a WHERE condition "
                "on the primary key column instead."
            )
        if batch_size < 1:
            raise IterationConfigurationError(f"batch_size must be >= 1, got {batch_size}.")

        table = _primary_table(statement)
        primary_key = list(table.primary_key.columns)
        if not primary_key:
            raise IterationConfigurationError(f"Table '{table.name}' has no primary key.")

        specs = _as_list(columns) if columns is not None else primary_key
        if not specs:
            raise IterationConfigurationError("Must specify at least one column.")
        resolved = [_resolve_column(statement, table, spec) for spec in specs]

        primary_key_index = [_index_of(resolved, pk_column) for pk_column in primary_key]
        if any(index is None for index in primary_key_index):
            raise IterationConfigurationError(
                "columns must include the primary key column(s): "
                + ", ".join(pk_column.key for pk_column in primary_key)
            )

        self._connection = connection
        self._statement = statement
        self._columns = resolved
        self._directions = _parse_order(order, len(resolved))
        self._batch_size = batch_size
        self._primary_key = primary_key
        self._primary_key_index = [index for index in primary_key_index if index is not None]
        self._python_types = [_python_type(column) for column in resolved]
        self._key_labels = [f"cursor_column_{index + 1}" for index in range(len(resolved))]
        self._selects_entities, self._single_entity = _entity_shape(statement)
        self._cursor_keys, self._records_statement = self._with_cursor_columns(statement)

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def estimated_remaining(self, cursor: Cursor = None) -> int:
        """Count rows after `cursor` with a separate, uncached count query."""

        statement = self._statement
        position = self.validate_cursor(cursor)
        if position:
            statement = statement.where(
                keyset_predicate(self._columns, self._directions, position, inclusive=False)
            )
        count_statement = select(func.count()).select_from(statement.subquery())
        return int(self._connection.execute(count_statement).scalar_one())

    def produce(self, cursor: Cursor = None) -> Iterator[tuple[Any, Cursor]]:
        for rows, cursors in self._fetch_batches(cursor, load=True):
            for row, position in zip(rows, cursors, strict=True):
                yield row, unwrap(position)

    def records(self, cursor: Cursor = None) -> Enumerator:
        """Enumerate rows one by one."""

        self.validate_cursor(cursor)
        return Enumerator.from_source(self, cursor)

    def batches(self, cursor: Cursor = None) -> Enumerator:
        """Enumerate loaded lists of up to `batch_size` rows."""

        self.validate_cursor(cursor)

        def iterate() -> Iterator[tuple[list[Any], Cursor]]:
            for rows, cursors in self._fetch_batches(cursor, load=True):
                yield rows, unwrap(cursors[-1])

        return Enumerator(iterate, lambda: self.estimated_remaining(cursor))

    def relations(self, cursor: Cursor = None) -> Enumerator:
        """Enumerate statements narrowed to the primary keys of each batch."""

        self.validate_cursor(cursor)

        def iterate() -> Iterator[tuple[Select[Any], Cursor]]:
            for _, cursors in self._fetch_batches(cursor, load=False):
                yield self._narrow_to_batch(cursors), unwrap(cursors[-1])

        def size() -> int:
            count = self.estimated_remaining(cursor)
            return (count + self._batch_size - 1) // self._batch_size

        return Enumerator(iterate, size)

    def validate_cursor(self, cursor: Cursor) -> tuple[Any, ...]:
        """Return the cursor as column-typed values, rejecting a wrong arity."""

        values = as_tuple(cursor)
        if not values:
            return ()
        if len(values) != len(self._columns):
            raise IterationConfigurationError(
                f"cursor must include values for all {len(self._columns)} column(s), "
                f"got {cursor!r}."
            )
        return tuple(
            coerce_value(value, python_type)
            for value, python_type in zip(values, self._python_types, strict=True)
        )

    def _fetch_batches(
        self,
        cursor: Cursor,
        *,
        load: bool,
    ) -> Iterator[tuple[list[Any], list[tuple[Any, ...]]]]:
        """Yield each batch of rows together with the cursor of every row."""

        keys = self._cursor_keys if load else self._key_labels
        position = self.validate_cursor(cursor)
        batches_fetched = 0
        while True:
            inclusive = bool(position) and batches_fetched == 0
            limit = self._batch_size + 1 if inclusive else self._batch_size
            rows = self._execute_batch(position, inclusive=inclusive, limit=limit, load=load)
            batches_fetched += 1
            reached_end = len(rows) < limit
            cursors = [_cursor_of(row, keys) for row in rows]

            if inclusive and cursors and cursors[0] == position:
                rows, cursors = rows[1:], cursors[1:]
            rows, cursors = rows[: self._batch_size], cursors[: self._batch_size]
            if not rows:
                return

            position = cursors[-1]
            yield (self._items(rows) if load else rows), cursors
            if reached_end:
                return

    def _execute_batch(
        self,
        position: tuple[Any, ...],
        *,
        inclusive: bool,
        limit: int,
        load: bool,
    ) -> list[Any]:
        if load:
            statement = self._records_statement
        else:
            statement = self._statement.with_only_columns(
                *(
                    column.label(label)
                    for column, label in zip(self._columns, self._key_labels, strict=True)
                ),
                maintain_column_froms=True,
            )
        if position:
            statement = statement.where(
                keyset_predicate(self._columns, self._directions, position, inclusive=inclusive)
            )
        statement = (
            statement.order_by(*self._ordering())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(self._connection.execute(statement).all())

    def _items(self, rows: list[Any]) -> list[Any]:
        if self._single_entity:
            return [row[0] for row in rows]
        return rows

    def _narrow_to_batch(self, cursors: list[tuple[Any, ...]]) -> Select[Any]:
        if len(self._primary_key) == 1:
            index = self._primary_key_index[0]
            ids = [values[index] for values in cursors]
            return self._statement.where(self._primary_key[0].in_(ids))

        ids = [tuple(values[index] for index in self._primary_key_index) for values in cursors]
        return self._statement.where(tuple_(*self._primary_key).in_(ids))

    def _ordering(self) -> list[ColumnElement[Any]]:
        return [
            column.asc() if direction is SortDirection.ASC else column.desc()
            for column, direction in zip(self._columns, self._directions, strict=True)
        ]

    def _with_cursor_columns(self, statement: Select[Any]) -> tuple[list[Any], Select[Any]]:
        """Select cursor columns the statement does not already return."""

        keys: list[Any] = []
        extra: list[ColumnElement[Any]] = []
        for index, column in enumerate(self._columns):
            # ORM entity rows are keyed by entity, so their cursor columns are labelled.
            if not self._selects_entities and statement.selected_columns.contains_column(column):
                keys.append(column)
            else:
                label = self._key_labels[index]
                keys.append(label)
                extra.append(column.label(label))
        if extra:
            statement = statement.add_columns(*extra)
        return keys, statement


def _cursor_of(row: Any, keys: Sequence[Any]) -> tuple[Any, ...]:
    mapping = row._mapping
    return tuple(mapping[key] for key in keys)


def _entity_shape(statement: Select[Any]) -> tuple[bool, bool]:
    """Return whether the statement selects ORM entities, and only one of them."""

    descriptions = statement.column_descriptions
    entities = [
        description for description in descriptions if description.get("entity") is not None
    ]
    single = (
        len(descriptions) == 1
        and len(entities) == 1
        and entities[0]["expr"] is entities[0]["entity"]
    )
    return bool(entities), single


def _compare(
    column: ColumnElement[Any],
    direction: SortDirection,
    value: Any,
    inclusive: bool,
) -> ColumnElement[bool]:
    if direction is SortDirection.ASC:
        return column >= value if inclusive else column > value
    return column <= value if inclusive else column < value


def _parse_order(order: str | Sequence[str], column_count: int) -> list[SortDirection]:
    raw = [order] if isinstance(order, str) else list(order)
    try:
        directions = [SortDirection(str(value).lower()) for value in raw]
    except ValueError:
        raise IterationConfigurationError(
            f"order must be 'asc' or 'desc' or a list of them, got {order!r}."
        ) from None

    if isinstance(order, str):
        return directions * column_count
    if len(directions) != column_count:
        raise IterationConfigurationError("order must include a direction for each column.")
    return directions


def _primary_table(statement: Select[Any]) -> Table:
    for from_clause in statement.get_final_froms():
        table = _leftmost_table(from_clause)
        if table is not None:
            return table
    raise IterationConfigurationError("statement must select from a table.")


def _leftmost_table(from_clause: Any) -> Table | None:
    if isinstance(from_clause, Table):
        return from_clause
    if isinstance(from_clause, Join):
        return _leftmost_table(from_clause.left) or _leftmost_table(from_clause.right)
    return None


def _statement_tables(statement: Select[Any]) -> list[Table]:
    tables: list[Table] = []
    pending = list(statement.get_final_froms())
    while pending:
        from_clause = pending.pop(0)
        if isinstance(from_clause, Table):
            tables.append(from_clause)
        elif isinstance(from_clause, Join):
            pending.extend([from_clause.left, from_clause.right])
    return tables


def _resolve_column(statement: Select[Any], table: Table, spec: ColumnSpec) -> ColumnElement[Any]:
    clause_element = getattr(spec, "__clause_element__", None)
    if clause_element is not None:
        spec = clause_element()
    if isinstance(spec, ColumnElement):
        return spec
    if not isinstance(spec, str):
        raise IterationConfigurationError(f"Unsupported column specification: {spec!r}.")

    table_name, _, column_name = spec.rpartition(".")
    candidates = [table]
    if table_name:
        candidates = [
            candidate
            for candidate in _statement_tables(statement)
            if candidate.name == table_name
        ]
    for candidate in candidates:
        if column_name in candidate.c:
            return candidate.c[column_name]
    raise IterationConfigurationError(f"Unknown column '{spec}' for this statement.")


def _index_of(columns: Sequence[ColumnElement[Any]], target: Column[Any]) -> int | None:
    for index, column in enumerate(columns):
        if column is target or column.shares_lineage(target):
            return index
    return None


def _python_type(column: ColumnElement[Any]) -> type | None:
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


def _as_list(columns: ColumnSpec | Sequence[ColumnSpec]) -> list[ColumnSpec]:
    if isinstance(columns, (str, ColumnElement, QueryableAttribute)):
        return [columns]
    return list(columns)


__all__ = [
    "SortDirection",
    "StatementExecutor",
    "TabularSource",
    "keyset_predicate",
]
