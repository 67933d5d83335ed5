"""Pydantic schemas for the periodic scheduler and cron schedules."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from job_coordinator.services.schedules import ScheduleMode


class SchedulerStatusResponse(BaseModel):
    enabled: bool
    running: bool
    paused: bool


class SchedulerJobRead(BaseModel):
    """One periodic job as registered with APScheduler."""

    model_config = ConfigDict(from_attributes=True)

    job_id: str
    name: str | None
    trigger: str
    next_run_time: datetime | None
    paused: bool


class ScheduleRead(BaseModel):
    """Cron schedule declared in ``JOB_SCHEDULES``."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    cron: str
    mode: ScheduleMode
    target: str | None
    enabled: bool
    timezone: str
    description: str
