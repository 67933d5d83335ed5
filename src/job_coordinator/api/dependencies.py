"""FastAPI dependency getters reading services from application state."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from job_coordinator.runtime import CoordinatorRuntime
from job_coordinator.services.schedules import ScheduleService
from job_coordinator.services.scheduler import SchedulerService


def get_runtime(request: Request) -> CoordinatorRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if isinstance(runtime, CoordinatorRuntime):
        return runtime

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Job coordinator is unavailable",
    )


def get_scheduler_service(request: Request) -> SchedulerService:
    scheduler = getattr(request.app.state, "scheduler_service", None)
    if isinstance(scheduler, SchedulerService):
        return scheduler

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Scheduler service is unavailable",
    )


def get_schedule_service(request: Request) -> ScheduleService:
    schedule_service = getattr(request.app.state, "schedule_service", None)
    if isinstance(schedule_service, ScheduleService):
        return schedule_service

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Schedule service is unavailable",
    )


__all__ = ["get_runtime", "get_schedule_service", "get_scheduler_service"]
