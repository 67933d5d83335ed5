"""Routes for pausing periodic triggers and firing cron schedules by hand."""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from fastapi import APIRouter, Depends, status

from job_coordinator.api.dependencies import (
    get_schedule_service,
    get_scheduler_service,
)
from job_coordinator.api.errors import raise_api_error
from job_coordinator.schemas import (
    EnqueueResponse,
    ScheduleRead,
    SchedulerJobRead,
    SchedulerStatusResponse,
)
from job_coordinator.services.schedules import ScheduleService
from job_coordinator.services.scheduler import SchedulerService

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])

T = TypeVar("T")


def _call(operation: Callable[[], T]) -> T:
    try:
        return operation()
    except Exception as error:
        raise_api_error(error)


def _status(scheduler: SchedulerService) -> SchedulerStatusResponse:
    return SchedulerStatusResponse(
        enabled=scheduler.enabled,
        running=scheduler.running,
        paused=scheduler.paused,
    )


@router.get("", response_model=SchedulerStatusResponse)
async def get_scheduler_status(
    scheduler: SchedulerService = Depends(get_scheduler_service),
) -> SchedulerStatusResponse:
    return _status(scheduler)


@router.post("/pause", response_model=SchedulerStatusResponse)
async def pause_scheduler(
    scheduler: SchedulerService = Depends(get_scheduler_service),
) -> SchedulerStatusResponse:
    """Stop firing reaper sweeps and cron schedules until resumed."""

    _call(scheduler.pause)
    return _status(scheduler)


@router.post("/resume", response_model=SchedulerStatusResponse)
async def resume_scheduler(
    scheduler: SchedulerService = Depends(get_scheduler_service),
) -> SchedulerStatusResponse:
    _call(scheduler.resume)
    return _status(scheduler)


@router.get("/jobs", response_model=list[SchedulerJobRead])
async def list_scheduler_jobs(
    scheduler: SchedulerService = Depends(get_scheduler_service),
) -> list[SchedulerJobRead]:
    return [SchedulerJobRead.model_validate(job) for job in _call(scheduler.list_jobs)]


@router.post("/jobs/{job_id}/pause", response_model=SchedulerJobRead)
async def pause_scheduler_job(
    job_id: str,
    scheduler: SchedulerService = Depends(get_scheduler_service),
) -> SchedulerJobRead:
    return SchedulerJobRead.model_validate(_call(lambda: scheduler.pause_job(job_id)))


@router.post("/jobs/{job_id}/resume", response_model=SchedulerJobRead)
async def resume_scheduler_job(
    job_id: str,
    scheduler: SchedulerService = Depends(get_scheduler_service),
) -> SchedulerJobRead:
    return SchedulerJobRead.model_validate(_call(lambda: scheduler.resume_job(job_id)))


@router.get("/schedules", response_model=list[ScheduleRead])
async def list_schedules(
    schedule_service: ScheduleService = Depends(get_schedule_service),
) -> list[ScheduleRead]:
    return [
        ScheduleRead.model_validate(definition)
        for definition in schedule_service.definitions
    ]


@router.post(
    "/schedules/{schedule_id}/run",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def run_schedule_now(
    schedule_id: str,
    schedule_service: ScheduleService = Depends(get_schedule_service),
) -> EnqueueResponse:
    """Enqueue a schedule's targets now, exactly as its cron tick would."""

    try:
        run_ids = await schedule_service.fire_schedule(schedule_id)
    except Exception as error:
        raise_api_error(error)

    return EnqueueResponse(run_ids=run_ids)
