"""API package exports."""

from job_coordinator import __version__
from job_coordinator.api.jobs import router as jobs_router
from job_coordinator.api.runs import router as runs_router
from job_coordinator.api.scheduler import router as scheduler_router
from job_coordinator.api.workers import router as workers_router

__all__ = [
    "__version__",
    "jobs_router",
    "runs_router",
    "scheduler_router",
    "workers_router",
]
