"""Pydantic schemas for the registered job catalogue."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from job_coordinator.jobs.registry import JobDefinition


class JobDefinitionRead(BaseModel):
    """Registered job metadata."""

    name: str
    description: str
    group: str | None
    dependencies: list[str]
    default_params: dict[str, Any]
    examples: list[str]

    @classmethod
    def from_definition(cls, definition: JobDefinition) -> JobDefinitionRead:
        return cls(
            name=definition.name,
            description=definition.description,
            group=definition.group,
            dependencies=list(definition.dependencies),
            default_params=dict(definition.default_params),
            examples=list(definition.examples),
        )


class JobGroupRead(BaseModel):
    """Job group with its member count."""

    group: str
    job_count: int
    jobs: list[str]


__all__ = ["JobDefinitionRead", "JobGroupRead"]
