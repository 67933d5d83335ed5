"""Periodic scheduler jobs: the stalled-run sweep and cron enqueue schedules."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field, field_validator, model_validator

from job_coordinator.config import Settings
from job_coordinator.models import JobTrigger
from job_coordinator.services.enqueue import EnqueueService
from job_coordinator.services.reaper import StalledRunReaper
from job_coordinator.services.scheduler import SchedulerService

_schedule_logger = logging.getLogger("job_coordinator.scheduler.jobs")

_schedule_service: ScheduleService | None = None

STALLED_RUN_SWEEP_JOB_ID = "stalled-run-sweep"
SCHEDULE_JOB_ID_PREFIX = "schedule:"


class ScheduleMode(str, Enum):
    """What a cron schedule enqueues when it fires."""

    ALL_JOBS = "ALL_JOBS"
    GROUP = "GROUP"
    JOB = "JOB"


class ScheduleDefinition(BaseModel):
    """Cron schedule loaded from ``JOB_SCHEDULES``."""

    id: str = Field(min_length=1, max_length=50)
    cron: str
    mode: ScheduleMode = ScheduleMode.ALL_JOBS
    target: str | None = None
    enabled: bool = True
    timezone: str = "UTC"
    description: str = ""

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, value: str) -> str:
        CronTrigger.from_crontab(value)
        return value

    @model_validator(mode="after")
    def validate_target(self) -> ScheduleDefinition:
        if self.mode is ScheduleMode.ALL_JOBS:
            return self
        if not self.target:
            raise ValueError(f"Schedule mode {self.mode.value} requires a target")
        return self

    @property
    def scheduler_job_id(self) -> str:
        return f"{SCHEDULE_JOB_ID_PREFIX}{self.id}"


def load_schedule_definitions(
    raw_schedules: Iterable[Mapping[str, Any]],
) -> list[ScheduleDefinition]:
    definitions = [ScheduleDefinition.model_validate(raw) for raw in raw_schedules]
    seen: set[str] = set()
    for definition in definitions:
        if definition.id in seen:
            raise ValueError(f"Duplicate schedule id '{definition.id}'")
        seen.add(definition.id)
    return definitions


class ScheduleService:
    """Register periodic scheduler jobs and run them when they fire."""

    def __init__(
        self,
        *,
        scheduler: SchedulerService,
        enqueue_service: EnqueueService,
        reaper: StalledRunReaper,
        settings: Settings,
        definitions: Iterable[ScheduleDefinition] | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._enqueue_service = enqueue_service
        self._reaper = reaper
        self._settings = settings
        if definitions is None:
            definitions = load_schedule_definitions(settings.JOB_SCHEDULES)
        self._definitions = {definition.id: definition for definition in definitions}

    @property
    def definitions(self) -> list[ScheduleDefinition]:
        return list(self._definitions.values())

    def register_jobs(self) -> None:
        if not self._scheduler.enabled:
            _schedule_logger.info("schedule_registration_skipped_scheduler_disabled")
            return

        self._scheduler.add_interval_job(
            job_id=STALLED_RUN_SWEEP_JOB_ID,
            name="Stalled run sweep",
            func=run_scheduled_stalled_run_sweep,
            seconds=self._settings.REAPER_INTERVAL_SECONDS,
        )

        registered: list[str] = []
        for definition in self._definitions.values():
            if not definition.enabled:
                continue
            self._scheduler.add_crontab_job(
                job_id=definition.scheduler_job_id,
                name=definition.description or definition.id,
                func=run_scheduled_enqueue,
                crontab=definition.cron,
                timezone=definition.timezone,
                args=(definition.id,),
            )
            registered.append(definition.id)

        _schedule_logger.info(
            "scheduler_jobs_registered",
            extra={
                "reaper_interval_seconds": self._settings.REAPER_INTERVAL_SECONDS,
                "schedule_ids": registered,
            },
        )

    async def run_stalled_run_sweep(self) -> list[int]:
        result = await self._reaper.sweep(self._settings.stalled_threshold_ms)
        return list(result.reaped_run_ids)

    async def fire_schedule(self, schedule_id: str) -> list[int]:
        """Enqueue the runs a schedule stands for, tagged with its id."""

        definition = self._definitions.get(schedule_id)
        if definition is None:
            raise LookupError(f"Schedule '{schedule_id}' not found")

        triggered_by = f"schedule:{definition.id}"
        if definition.mode is ScheduleMode.JOB:
            run_ids = [
                await self._enqueue_service.enqueue_one(
                    str(definition.target),
                    triggered_by=triggered_by,
                    trigger=JobTrigger.SCHEDULED,
                    scope="schedule",
                    schedule_id=definition.id,
                )
            ]
        elif definition.mode is ScheduleMode.GROUP:
            run_ids = await self._enqueue_service.enqueue_group(
                str(definition.target),
                triggered_by=triggered_by,
                trigger=JobTrigger.SCHEDULED,
                schedule_id=definition.id,
            )
        else:
            run_ids = await self._enqueue_service.enqueue_all(
                triggered_by=triggered_by,
                trigger=JobTrigger.SCHEDULED,
                schedule_id=definition.id,
            )

        _schedule_logger.info(
            "schedule_fired",
            extra={
                "schedule_id": definition.id,
                "mode": definition.mode.value,
                "run_ids": run_ids,
            },
        )
        return run_ids


def set_schedule_service(service: ScheduleService) -> None:
    global _schedule_service
    _schedule_service = service


def _require_schedule_service() -> ScheduleService:
    if _schedule_service is None:
        raise RuntimeError("Schedule service is not initialized")

    return _schedule_service


async def run_scheduled_stalled_run_sweep() -> None:
    await _require_schedule_service().run_stalled_run_sweep()


async def run_scheduled_enqueue(schedule_id: str) -> None:
    await _require_schedule_service().fire_schedule(schedule_id)


__all__ = [
    "STALLED_RUN_SWEEP_JOB_ID",
    "ScheduleDefinition",
    "ScheduleMode",
    "ScheduleService",
    "load_schedule_definitions",
    "run_scheduled_enqueue",
    "run_scheduled_stalled_run_sweep",
    "set_schedule_service",
]
