"""Cursor codec shared by enumerators and the job payload.

A cursor is either a bare scalar or a tuple of scalars. On the wire a
one-value cursor stays a bare scalar and wider cursors become lists, and
timestamps are written as fixed microsecond-precision text so that ties on a
timestamp column keep their ordering after a round trip.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from job_iteration.domain.errors import IterationConfigurationError

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

_TIMESTAMP_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{6}(?:[+-]\d{2}:\d{2})?$"
)

Cursor = Any
SerializedCursor = Any


def encode(cursor: Cursor) -> SerializedCursor:
    """Encode a cursor into a JSON-safe value."""

    if cursor is None:
        return None
    if isinstance(cursor, (tuple, list)):
        if not cursor:
            return None
        values = [encode_value(value) for value in cursor]
        if len(values) == 1:
            return values[0]
        return values
    return encode_value(cursor)


def decode(serialized: SerializedCursor, arity: int | None = None) -> Cursor:
    """Decode a serialized cursor, checking its arity when one is expected."""

    if serialized is None:
        return None
    if isinstance(serialized, (tuple, list)):
        values = tuple(decode_value(value) for value in serialized)
    else:
        values = (decode_value(serialized),)

    if arity is not None and len(values) != arity:
        raise IterationConfigurationError(
            f"Cursor must include {arity} value(s), got {len(values)}: {serialized!r}."
        )
    return unwrap(values)


def encode_value(value: Any) -> Any:
    """Encode one cursor component."""

    if isinstance(value, datetime):
        text = value.strftime(TIMESTAMP_FORMAT)
        offset = value.utcoffset()
        if offset is not None:
            text += _format_offset(offset)
        return text
    if isinstance(value, (tuple, list)):
        return [encode_value(item) for item in value]
    return value


def decode_value(value: Any) -> Any:
    """Decode one cursor component."""

    if isinstance(value, str) and _TIMESTAMP_PATTERN.match(value):
        return datetime.fromisoformat(value)
    if isinstance(value, (tuple, list)):
        return tuple(decode_value(item) for item in value)
    return value


def coerce_value(value: Any, python_type: type | None) -> Any:
    """Convert an encoded component back into the type of its column."""

    if python_type is datetime and isinstance(value, str):
        return datetime.fromisoformat(value)
    if python_type is str and isinstance(value, datetime):
        # Text keys shaped like timestamps are decoded eagerly; restore the text.
        return encode_value(value)
    return value


def as_tuple(cursor: Cursor) -> tuple[Any, ...]:
    """Normalize a cursor to its tuple form; `None` becomes an empty tuple."""

    if cursor is None:
        return ()
    if isinstance(cursor, (tuple, list)):
        return tuple(cursor)
    return (cursor,)


def unwrap(values: Sequence[Any]) -> Cursor:
    """Return a bare scalar for one-value cursors, a tuple otherwise."""

    if len(values) == 1:
        return values[0]
    return tuple(values)


def _format_offset(offset: timedelta) -> str:
    total_minutes = int(offset.total_seconds()) // 60
    sign = "+" if total_minutes >= 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{sign}{hours:02d}:{minutes:02d}"


__all__ = [
    "TIMESTAMP_FORMAT",
    "Cursor",
    "SerializedCursor",
    "as_tuple",
    "coerce_value",
    "decode",
    "decode_value",
    "encode",
    "encode_value",
    "unwrap",
]
