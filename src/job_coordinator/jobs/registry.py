"""Load-time job catalogue mapping job names to typed handlers."""

from __future__ import annotations

import importlib
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from job_coordinator.errors import (
    CyclicDependencyError,
    UnknownGroupError,
    UnknownJobError,
)
from job_coordinator.jobs.types import JobHandler

_registry_logger = logging.getLogger("job_coordinator.jobs.registry")


@dataclass(slots=True, frozen=True)
class JobDefinition:
    """Registered job: metadata plus the callable that does the work."""

    name: str
    execute: JobHandler
    description: str = ""
    dependencies: tuple[str, ...] = ()
    group: str | None = None
    default_params: Mapping[str, Any] = field(default_factory=dict)
    examples: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.name or self.name != self.name.strip():
            raise ValueError(f"Invalid job name {self.name!r}")
        if not callable(self.execute):
            raise TypeError(f"Job '{self.name}' execute must be callable")
        if not isinstance(self.default_params, Mapping):
            raise TypeError(f"Job '{self.name}' default_params must be a mapping")
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        object.__setattr__(
            self, "default_params", MappingProxyType(dict(self.default_params))
        )


class JobRegistry:
    """Name-indexed job catalogue; validated once all modules registered."""

    def __init__(self, definitions: Iterable[JobDefinition] = ()) -> None:
        self._jobs: dict[str, JobDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: JobDefinition) -> JobDefinition:
        if definition.name in self._jobs:
            raise ValueError(f"Job '{definition.name}' is already registered")
        self._jobs[definition.name] = definition
        return definition

    def job(
        self,
        name: str,
        *,
        description: str = "",
        dependencies: Iterable[str] = (),
        group: str | None = None,
        default_params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Decorator form of :meth:`register`."""

        def decorator(handler: JobHandler) -> JobHandler:
            self.register(
                JobDefinition(
                    name=name,
                    execute=handler,
                    description=description,
                    dependencies=tuple(dependencies),
                    group=group,
                    default_params=default_params or {},
                )
            )
            return handler

        return decorator

    def get(self, name: str) -> JobDefinition | None:
        return self._jobs.get(name)

    def require(self, name: str) -> JobDefinition:
        definition = self._jobs.get(name)
        if definition is None:
            raise UnknownJobError(name)
        return definition

    def __contains__(self, name: object) -> bool:
        return name in self._jobs

    def __iter__(self) -> Iterator[JobDefinition]:
        return iter(self._jobs.values())

    def __len__(self) -> int:
        return len(self._jobs)

    def as_mapping(self) -> Mapping[str, JobDefinition]:
        return MappingProxyType(self._jobs)

    def names(self) -> list[str]:
        return list(self._jobs)

    def by_group(self, group: str) -> list[JobDefinition]:
        members = [job for job in self._jobs.values() if job.group == group]
        if not members:
            raise UnknownGroupError(group)
        return members

    def groups(self) -> list[str]:
        return sorted({job.group for job in self._jobs.values() if job.group})

    def validate(self) -> None:
        """Fail fast on missing dependencies, self-dependencies and cycles."""

        from job_coordinator.jobs.dependencies import resolve_job_dependencies

        for definition in self._jobs.values():
            for dependency in definition.dependencies:
                if dependency == definition.name:
                    raise CyclicDependencyError([definition.name, definition.name])
                if dependency not in self._jobs:
                    raise UnknownJobError(dependency, required_by=definition.name)

        resolve_job_dependencies(self._jobs)
        _registry_logger.info(
            "job_registry_validated",
            extra={"job_count": len(self._jobs), "groups": self.groups()},
        )


def load_job_modules(registry: JobRegistry, module_paths: Iterable[str]) -> None:
    """Import modules exposing ``register_jobs(registry)`` and let them register."""

    for module_path in module_paths:
        module = importlib.import_module(module_path)
        register_jobs = getattr(module, "register_jobs", None)
        if not callable(register_jobs):
            raise RuntimeError(
                f"Job module '{module_path}' does not define register_jobs(registry)"
            )
        register_jobs(registry)
        _registry_logger.info(
            "job_module_loaded",
            extra={"module": module_path, "job_count": len(registry)},
        )


__all__ = ["JobDefinition", "JobRegistry", "load_job_modules"]
