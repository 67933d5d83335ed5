"""Tests for the APScheduler wrapper that hosts periodic coordinator jobs."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

import pytest
from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_MAX_INSTANCES,
    JobExecutionEvent,
    JobSubmissionEvent,
)

from job_coordinator.errors import ScheduledJobNotFoundError, SchedulerUnavailableError
from job_coordinator.services.scheduler import PERIODIC_JOB_DEFAULTS, SchedulerService


async def _noop_job() -> None:
    return None


async def _enqueue_tick(schedule_id: str) -> None:
    return None


@pytest.mark.asyncio
async def test_scheduler_service_hosts_sweep_and_cron_jobs(tmp_path: Path) -> None:
    scheduler = SchedulerService(
        enabled=True, jobstore_url=f"sqlite:///{tmp_path / 'jobs.sqlite'}"
    )
    scheduler.add_interval_job(job_id="reaper:sweep", func=_noop_job, seconds=60)
    scheduler.add_crontab_job(
        job_id="schedule:nightly",
        func=_enqueue_tick,
        crontab="0 3 * * *",
        timezone="Europe/Berlin",
        args=("nightly",),
    )

    await scheduler.start()
    try:
        jobs = {job.job_id: job for job in scheduler.list_jobs()}
        assert set(jobs) == {"reaper:sweep", "schedule:nightly"}
        assert jobs["reaper:sweep"].trigger.startswith("interval")
        assert jobs["schedule:nightly"].trigger.startswith("cron")

        assert scheduler.pause_job("schedule:nightly").paused is True
        assert scheduler.resume_job("schedule:nightly").paused is False

        scheduler.remove_job("schedule:nightly")
        assert [job.job_id for job in scheduler.list_jobs()] == ["reaper:sweep"]
        with pytest.raises(ScheduledJobNotFoundError):
            scheduler.pause_job("schedule:nightly")
    finally:
        await scheduler.shutdown()


@pytest.mark.asyncio
async def test_scheduler_service_keeps_jobs_in_persistent_store(
    tmp_path: Path,
) -> None:
    jobstore_url = f"sqlite:///{tmp_path / 'jobs.sqlite'}"
    first = SchedulerService(enabled=True, jobstore_url=jobstore_url)
    first.add_interval_job(job_id="reaper:sweep", func=_noop_job, seconds=60)
    await first.start()
    await first.shutdown()

    second = SchedulerService(enabled=True, jobstore_url=jobstore_url)
    await second.start()
    try:
        assert [job.job_id for job in second.list_jobs()] == ["reaper:sweep"]
    finally:
        await second.shutdown()


@pytest.mark.asyncio
async def test_scheduler_service_uses_memory_store_without_jobstore_url() -> None:
    scheduler = SchedulerService(enabled=True, jobstore_url=None)
    scheduler.add_interval_job(job_id="memory-job", func=_noop_job, seconds=30)

    await scheduler.start()
    try:
        assert scheduler.running is True
        scheduler.pause()
        assert scheduler.paused is True
        scheduler.resume()
        assert scheduler.paused is False
    finally:
        await scheduler.shutdown()

    assert scheduler.running is False


@pytest.mark.asyncio
async def test_scheduler_service_rejects_operations_when_disabled() -> None:
    scheduler = SchedulerService(enabled=False, jobstore_url=None)

    await scheduler.start()

    assert scheduler.running is False
    assert scheduler.paused is False
    with pytest.raises(SchedulerUnavailableError, match="disabled"):
        scheduler.pause()
    with pytest.raises(SchedulerUnavailableError, match="disabled"):
        scheduler.add_interval_job(job_id="reaper:sweep", func=_noop_job, seconds=5)
    with pytest.raises(SchedulerUnavailableError, match="disabled"):
        scheduler.list_jobs()


def test_scheduler_service_rejects_invalid_schedules() -> None:
    scheduler = SchedulerService(enabled=True, jobstore_url=None)

    with pytest.raises(ValueError):
        scheduler.add_interval_job(job_id="bad", func=_noop_job, seconds=0)
    with pytest.raises(ValueError):
        scheduler.add_crontab_job(job_id="bad", func=_noop_job, crontab="not cron")


def test_periodic_jobs_coalesce_and_never_overlap() -> None:
    assert PERIODIC_JOB_DEFAULTS == {"coalesce": True, "max_instances": 1}


def test_job_event_listener_logs_skips_and_failures(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.DEBUG, logger="job_coordinator.scheduler")
    run_time = datetime(2026, 3, 1, tzinfo=UTC)

    SchedulerService._handle_job_event(
        JobSubmissionEvent(EVENT_JOB_MAX_INSTANCES, "sweep", "default", [run_time])
    )
    SchedulerService._handle_job_event(
        JobExecutionEvent(
            EVENT_JOB_ERROR,
            "sweep",
            "default",
            run_time,
            exception=RuntimeError("store down"),
            traceback="Traceback ...",
        )
    )

    messages = [record.getMessage() for record in caplog.records]
    assert messages == ["scheduler_job_tick_skipped", "scheduler_job_failed"]
    assert caplog.records[0].levelno == logging.WARNING
    assert getattr(caplog.records[1], "exception") == "store down"
