"""Periodic trigger host for reaper sweeps and cron schedules."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.events import EVENT_JOB_EXECUTED
from apscheduler.events import EVENT_JOB_MAX_INSTANCES
from apscheduler.events import EVENT_JOB_SUBMITTED
from apscheduler.events import JobExecutionEvent
from apscheduler.events import JobSubmissionEvent
from apscheduler.events import SchedulerEvent
from apscheduler.job import Job
from apscheduler.jobstores.base import BaseJobStore
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import STATE_PAUSED
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from job_coordinator.config import Settings
from job_coordinator.errors import ScheduledJobNotFoundError, SchedulerUnavailableError

JobCallable = Callable[..., Awaitable[None] | None]

_scheduler_logger = logging.getLogger("job_coordinator.scheduler")

# A late tick is merged into the next one and never overlaps a running tick.
PERIODIC_JOB_DEFAULTS: dict[str, Any] = {"coalesce": True, "max_instances": 1}

_LISTENED_EVENTS = (
    EVENT_JOB_SUBMITTED | EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES
)


@dataclass(slots=True, frozen=True)
class SchedulerJobState:
    """Snapshot of one registered periodic job."""

    job_id: str
    name: str | None
    trigger: str
    next_run_time: datetime | None
    paused: bool

    @classmethod
    def from_job(cls, job: Job) -> SchedulerJobState:
        next_run_time = getattr(job, "next_run_time", None)
        return cls(
            job_id=job.id,
            name=job.name,
            trigger=str(job.trigger),
            next_run_time=next_run_time,
            paused=next_run_time is None,
        )


def _build_jobstore(jobstore_url: str | None) -> BaseJobStore:
    if jobstore_url:
        return SQLAlchemyJobStore(url=jobstore_url)
    return MemoryJobStore()


class SchedulerService:
    """Owns one ``AsyncIOScheduler``; every call fails fast when disabled."""

    def __init__(
        self,
        *,
        enabled: bool,
        jobstore_url: str | None,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._enabled = enabled
        if scheduler is None:
            scheduler = AsyncIOScheduler(
                jobstores={"default": _build_jobstore(jobstore_url)},
                job_defaults=PERIODIC_JOB_DEFAULTS,
            )
        self._scheduler = scheduler
        self._scheduler.add_listener(self._handle_job_event, _LISTENED_EVENTS)

    @classmethod
    def from_settings(cls, settings: Settings) -> SchedulerService:
        return cls(
            enabled=settings.SCHEDULER_ENABLED,
            jobstore_url=settings.SCHEDULER_JOBSTORE_URL,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def running(self) -> bool:
        return self._enabled and bool(self._scheduler.running)

    @property
    def paused(self) -> bool:
        return self._enabled and bool(self._scheduler.state == STATE_PAUSED)

    async def start(self) -> None:
        if not self._enabled:
            _scheduler_logger.info("scheduler_disabled")
            return
        if not self._scheduler.running:
            self._scheduler.start()
            job_count = len(self._scheduler.get_jobs())
            _scheduler_logger.info("scheduler_started", extra={"job_count": job_count})

    async def shutdown(self) -> None:
        if self.running:
            self._scheduler.shutdown(wait=False)
            _scheduler_logger.info("scheduler_shutdown")

    def pause(self) -> None:
        self._require_running().pause()
        _scheduler_logger.info("scheduler_paused")

    def resume(self) -> None:
        self._require_running().resume()
        _scheduler_logger.info("scheduler_resumed")

    def add_interval_job(
        self,
        *,
        job_id: str,
        func: JobCallable,
        seconds: int,
        name: str | None = None,
        args: Sequence[Any] = (),
    ) -> Job:
        self._require_enabled()
        if seconds <= 0:
            raise ValueError("Interval seconds must be greater than zero")
        return self._add(job_id, func, IntervalTrigger(seconds=seconds), name, args)

    def add_crontab_job(
        self,
        *,
        job_id: str,
        func: JobCallable,
        crontab: str,
        timezone: str = "UTC",
        name: str | None = None,
        args: Sequence[Any] = (),
    ) -> Job:
        """Schedule ``func`` from a five-field crontab expression.

        Raises ``ValueError`` for an expression APScheduler cannot parse.
        """

        self._require_enabled()
        trigger = CronTrigger.from_crontab(crontab, timezone=timezone)
        return self._add(job_id, func, trigger, name, args)

    def remove_job(self, job_id: str) -> None:
        self._control_job(job_id, "removed", self._scheduler.remove_job)

    def pause_job(self, job_id: str) -> SchedulerJobState:
        self._control_job(job_id, "paused", self._scheduler.pause_job)
        return SchedulerJobState.from_job(self._require_job(job_id))

    def resume_job(self, job_id: str) -> SchedulerJobState:
        self._control_job(job_id, "resumed", self._scheduler.resume_job)
        return SchedulerJobState.from_job(self._require_job(job_id))

    def list_jobs(self) -> list[SchedulerJobState]:
        self._require_enabled()
        return [SchedulerJobState.from_job(job) for job in self._scheduler.get_jobs()]

    def _add(
        self,
        job_id: str,
        func: JobCallable,
        trigger: BaseTrigger,
        name: str | None,
        args: Sequence[Any],
    ) -> Job:
        job = self._scheduler.add_job(
            func,
            trigger=trigger,
            args=list(args),
            id=job_id,
            name=name,
            replace_existing=True,
            **PERIODIC_JOB_DEFAULTS,
        )
        _scheduler_logger.debug(
            "scheduler_job_added", extra={"job_id": job_id, "trigger": str(trigger)}
        )
        return job

    def _control_job(
        self, job_id: str, action: str, operation: Callable[[str], Any]
    ) -> None:
        self._require_enabled()
        operation(self._require_job(job_id).id)
        _scheduler_logger.info(f"scheduler_job_{action}", extra={"job_id": job_id})

    def _require_enabled(self) -> None:
        if not self._enabled:
            raise SchedulerUnavailableError("Scheduler is disabled")

    def _require_running(self) -> AsyncIOScheduler:
        self._require_enabled()
        if not self._scheduler.running:
            raise SchedulerUnavailableError("Scheduler is not running")
        return self._scheduler

    def _require_job(self, job_id: str) -> Job:
        job = self._scheduler.get_job(job_id)
        if job is None:
            raise ScheduledJobNotFoundError(job_id)
        return job

    @staticmethod
    def _handle_job_event(event: SchedulerEvent) -> None:
        job_id = getattr(event, "job_id", None)
        if event.code == EVENT_JOB_MAX_INSTANCES:
            _scheduler_logger.warning(
                "scheduler_job_tick_skipped", extra={"job_id": job_id}
            )
        elif isinstance(event, JobSubmissionEvent):
            _scheduler_logger.debug(
                "scheduler_job_submitted",
                extra={
                    "job_id": job_id,
                    "scheduled_run_times": [
                        run_time.isoformat() for run_time in event.scheduled_run_times
                    ],
                },
            )
        elif isinstance(event, JobExecutionEvent) and event.exception is not None:
            _scheduler_logger.error(
                "scheduler_job_failed",
                extra={
                    "job_id": job_id,
                    "exception": str(event.exception),
                    "traceback": event.traceback,
                },
            )
        elif isinstance(event, JobExecutionEvent):
            _scheduler_logger.debug("scheduler_job_succeeded", extra={"job_id": job_id})


__all__ = ["PERIODIC_JOB_DEFAULTS", "SchedulerJobState", "SchedulerService"]
