"""Job catalogue, handler contracts and dependency ordering."""

from job_coordinator.jobs.dependencies import (
    ResolvedJob,
    job_group_counts,
    resolve_job_dependencies,
    resolve_jobs_by_group,
)
from job_coordinator.jobs.registry import JobDefinition, JobRegistry, load_job_modules
from job_coordinator.jobs.types import JobHandler, JobOutcome

__all__ = [
    "JobDefinition",
    "JobHandler",
    "JobOutcome",
    "JobRegistry",
    "ResolvedJob",
    "job_group_counts",
    "load_job_modules",
    "resolve_job_dependencies",
    "resolve_jobs_by_group",
]
