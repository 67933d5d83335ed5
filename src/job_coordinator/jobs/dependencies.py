"""Topological ordering of jobs by their declared dependencies."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from job_coordinator.errors import (
    CyclicDependencyError,
    UnknownGroupError,
    UnknownJobError,
)
from job_coordinator.jobs.registry import JobDefinition


@dataclass(slots=True, frozen=True)
class ResolvedJob:
    """A job placed in enqueue order."""

    name: str
    group: str | None
    default_params: Mapping[str, Any]
    dependencies: tuple[str, ...]


def resolve_job_dependencies(
    jobs: Mapping[str, JobDefinition],
    *,
    restrict_to_given: bool = False,
) -> list[ResolvedJob]:
    """Return ``jobs`` ordered so every dependency precedes its dependents.

    Registration order is kept wherever the dependency edges allow it. When
    ``restrict_to_given`` is set, edges pointing outside ``jobs`` are ignored
    instead of raising :class:`UnknownJobError`.
    """

    resolved: list[ResolvedJob] = []
    visited: set[str] = set()
    visiting: list[str] = []

    def visit(job_name: str, required_by: str | None) -> None:
        if job_name in visited:
            return

        if job_name in visiting:
            cycle_start = visiting.index(job_name)
            raise CyclicDependencyError([*visiting[cycle_start:], job_name])

        job = jobs.get(job_name)
        if job is None:
            raise UnknownJobError(job_name, required_by=required_by)

        visiting.append(job_name)
        for dependency in job.dependencies:
            if restrict_to_given and dependency not in jobs:
                continue
            visit(dependency, job_name)
        visiting.pop()

        visited.add(job_name)
        resolved.append(
            ResolvedJob(
                name=job_name,
                group=job.group,
                default_params=job.default_params,
                dependencies=job.dependencies,
            )
        )

    for job_name in jobs:
        visit(job_name, None)

    return resolved


def resolve_jobs_by_group(
    jobs: Mapping[str, JobDefinition],
    group: str,
) -> list[ResolvedJob]:
    """Order the members of ``group`` using only edges between members."""

    members = {name: job for name, job in jobs.items() if job.group == group}
    if not members:
        raise UnknownGroupError(group)

    return resolve_job_dependencies(members, restrict_to_given=True)


def job_group_counts(jobs: Mapping[str, JobDefinition]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for job in jobs.values():
        if job.group:
            counts[job.group] = counts.get(job.group, 0) + 1
    return dict(sorted(counts.items()))


__all__ = [
    "ResolvedJob",
    "job_group_counts",
    "resolve_job_dependencies",
    "resolve_jobs_by_group",
]
