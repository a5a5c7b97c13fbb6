"""Enumerator sources and combinators."""

from job_iteration.enumerators.array_enumerator import ArraySource
from job_iteration.enumerators.base import Enumerator
from job_iteration.enumerators.builders import Enumerators
from job_iteration.enumerators.csv_enumerator import DelimitedFileSource
from job_iteration.enumerators.nested_enumerator import NestedEnumerator
from job_iteration.enumerators.tabular_enumerator import (
    SortDirection,
    TabularSource,
    keyset_predicate,
)

__all__ = [
    "ArraySource",
    "DelimitedFileSource",
    "Enumerator",
    "Enumerators",
    "NestedEnumerator",
    "SortDirection",
    "TabularSource",
    "keyset_predicate",
]
