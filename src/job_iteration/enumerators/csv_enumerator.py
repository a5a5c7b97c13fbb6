"""Enumerators over delimited text files."""

from __future__ import annotations

import csv
import os
from collections.abc import Iterator
from contextlib import contextmanager
from itertools import islice
from pathlib import Path
from typing import Any, TextIO

from job_iteration.domain.cursors import Cursor
from job_iteration.domain.errors import IterationConfigurationError
from job_iteration.enumerators.base import Enumerator

_DEFAULT_BATCH_SIZE = 100


class DelimitedFileSource:
    """Ordered source over the data rows of a delimited file.

    Rows are addressed by their 0-based index among data rows; the header row,
    when present, is not counted. A source built from a path reopens the file
    on every pass, while an open stream is rewound when it is seekable.
    """

    def __init__(
        self,
        stream: TextIO | str | os.PathLike[str],
        *,
        headers: bool = True,
        **format_params: Any,
    ) -> None:
        if isinstance(stream, (str, os.PathLike)):
            self._path: Path | None = Path(stream)
            self._stream: TextIO | None = None
        elif hasattr(stream, "read"):
            name = getattr(stream, "name", None)
            self._path = Path(name) if isinstance(name, str) and os.path.isfile(name) else None
            self._stream = stream
        else:
            raise IterationConfigurationError(
                f"Expected a path or a text stream, got {type(stream).__name__}."
            )
        self._headers = headers
        self._format_params = format_params

    def estimated_remaining(self, cursor: Cursor = None) -> int | None:
        total = self._count_rows()
        if total is None:
            return None
        return max(total - _start_index(cursor), 0)

    def produce(self, cursor: Cursor = None) -> Iterator[tuple[Any, int]]:
        start = _start_index(cursor)
        with self._reader() as reader:
            for index, row in enumerate(islice(reader, start, None), start=start):
                yield row, index

    def rows(self, cursor: Cursor = None) -> Enumerator:
        """Enumerate rows with their data-row index."""

        _start_index(cursor)
        return Enumerator.from_source(self, cursor)

    def batches(
        self,
        cursor: Cursor = None,
        *,
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ) -> Enumerator:
        """Enumerate fixed-size chunks of rows with the chunk's own index.

        Resuming after chunk `k` continues at row `(k + 1) * batch_size`, so a
        resumed run never starts inside a chunk.
        """

        if batch_size < 1:
            raise IterationConfigurationError(f"batch_size must be >= 1, got {batch_size}.")
        first_chunk = _start_index(cursor)

        def iterate() -> Iterator[tuple[list[Any], int]]:
            with self._reader() as reader:
                rows = islice(reader, first_chunk * batch_size, None)
                chunk_index = first_chunk
                while chunk := list(islice(rows, batch_size)):
                    yield chunk, chunk_index
                    chunk_index += 1

        def size() -> int | None:
            total = self._count_rows()
            if total is None:
                return None
            return max(-(-total // batch_size) - first_chunk, 0)

        return Enumerator(iterate, size)

    @contextmanager
    def _reader(self) -> Iterator[Iterator[Any]]:
        stream = self._stream
        if stream is None:
            with self._open() as handle:
                yield self._parse(handle)
            return

        if stream.seekable():
            stream.seek(0)
        yield self._parse(stream)

    def _open(self) -> TextIO:
        if self._path is None:
            raise IterationConfigurationError("This source is not backed by a file path.")
        return self._path.open(newline="")

    def _parse(self, handle: TextIO) -> Iterator[Any]:
        if self._headers:
            return iter(csv.DictReader(handle, **self._format_params))
        return iter(csv.reader(handle, **self._format_params))

    def _count_rows(self) -> int | None:
        if self._path is None:
            return None
        with self._open() as handle:
            return sum(1 for _ in self._parse(handle))


def _start_index(cursor: Cursor) -> int:
    if cursor is None:
        return 0
    if isinstance(cursor, bool) or not isinstance(cursor, int):
        raise IterationConfigurationError(
            f"File cursor must be an integer index, got {cursor!r}."
        )
    return cursor + 1


__all__ = ["DelimitedFileSource"]
