"""Lookup of iterable job classes by their enqueued name."""

from __future__ import annotations

import importlib
import logging
from collections.abc import Iterable

from job_iteration.application.iteration import IterableJob
from job_iteration.domain.errors import UnknownJobError

logger = logging.getLogger(__name__)


class JobRegistry:
    """Maps job names to `IterableJob` subclasses."""

    def __init__(self, jobs: Iterable[type[IterableJob]] = ()) -> None:
        self._jobs: dict[str, type[IterableJob]] = {}
        for job_class in jobs:
            self.register(job_class)

    def register(self, job_class: type[IterableJob]) -> type[IterableJob]:
        """Register one job class; usable as a class decorator."""

        if not (isinstance(job_class, type) and issubclass(job_class, IterableJob)):
            raise TypeError(f"{job_class!r} is not an IterableJob subclass.")

        name = job_class.name()
        existing = self._jobs.get(name)
        if existing is not None and existing is not job_class:
            raise ValueError(f"Job name '{name}' is already registered to {existing!r}.")
        self._jobs[name] = job_class
        return job_class

    def resolve(self, name: str) -> type[IterableJob]:
        job_class = self._jobs.get(name)
        if job_class is None:
            raise UnknownJobError(f"No iterable job registered under '{name}'.")
        return job_class

    def names(self) -> list[str]:
        return sorted(self._jobs)

    def __contains__(self, name: object) -> bool:
        return name in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    @classmethod
    def discover(cls, modules: Iterable[str] = ()) -> JobRegistry:
        """Import `modules` and register the concrete jobs they define.

        A job is concrete when a class between it and `IterableJob` defines
        `build_enumerator`. Jobs from submodules of a listed package count as
        defined by that package.
        """

        module_names = list(modules)
        for module_name in module_names:
            importlib.import_module(module_name)
            logger.info("Imported job module '%s'.", module_name)

        registry = cls()
        for job_class in _all_subclasses(IterableJob):
            if not _defined_in(job_class, module_names):
                continue
            if "build_enumerator" in _defined_methods(job_class):
                registry.register(job_class)
        return registry


def _all_subclasses(base: type[IterableJob]) -> list[type[IterableJob]]:
    found: list[type[IterableJob]] = []
    pending = list(base.__subclasses__())
    while pending:
        job_class = pending.pop(0)
        if job_class not in found:
            found.append(job_class)
            pending.extend(job_class.__subclasses__())
    return found


def _defined_in(job_class: type[IterableJob], module_names: list[str]) -> bool:
    module = job_class.__module__
    return any(module == name or module.startswith(f"{name}.") for name in module_names)


def _defined_methods(job_class: type[IterableJob]) -> set[str]:
    names: set[str] = set()
    for klass in job_class.__mro__:
        if klass is IterableJob:
            break
        names.update(klass.__dict__)
    return names


__all__ = ["JobRegistry"]
