"""Tests for job log persistence and the per-run progress logger."""

from __future__ import annotations

from typing import Any

import pytest
from conftest import FakeClock, SessionScopeFactory

from job_coordinator.jobs import JobDefinition, JobRegistry
from job_coordinator.models import JobLogLevel
from job_coordinator.services.job_logger import (
    JobLogger,
    JobLogService,
    format_duration,
)
from job_coordinator.services.job_runs import JobRunService, RunOutcome


async def _noop(params: dict[str, Any], context: Any) -> None:
    return None


async def _running_run(
    session_factory: SessionScopeFactory, clock: FakeClock
) -> tuple[JobRunService, int]:
    run_service = JobRunService(
        registry=JobRegistry([JobDefinition(name="ingest", execute=_noop)]),
        session_factory=session_factory,
        now_factory=clock,
    )
    run_id = await run_service.create("ingest")
    await run_service.claim("worker-a")
    return run_service, run_id


@pytest.mark.asyncio
async def test_job_logger_writes_lines_and_tracks_progress(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    run_service, run_id = await _running_run(session_factory, clock)
    log_service = JobLogService(session_factory=session_factory, now_factory=clock)
    job_logger = JobLogger(
        job_run_id=run_id,
        job_name="ingest",
        worker_id="worker-a",
        run_service=run_service,
        log_service=log_service,
        now_factory=clock,
    )

    await job_logger.set_stage("load")
    await job_logger.set_total(4, "rows")
    await job_logger.increment_progress(3)
    await job_logger.warning("row 2 skipped", {"row": 2})
    job_logger.add_outcome("inserts", 3)
    clock.advance(seconds=65)
    summary = await job_logger.log_summary()

    run = await run_service.get_run(run_id)
    assert run.current_stage == "load"
    assert run.progress_total == 4
    assert run.progress_current == 3
    assert run.progress_percent == 75
    assert run.progress_message == "load (3 / 4)"

    logs = await log_service.list_logs(run_id)
    assert [entry.level for entry in logs] == [
        JobLogLevel.MILESTONE,
        JobLogLevel.INFO,
        JobLogLevel.WARNING,
        JobLogLevel.MILESTONE,
    ]
    assert logs[0].message == "Starting: load"
    assert logs[1].message == "Will process 4 rows"
    assert logs[2].context == {"row": 2}
    assert all(entry.stage == "load" for entry in logs)
    assert logs[3].message.startswith("Completed in 1m 5s")
    assert "Inserts: 3" in logs[3].message

    assert summary == {
        "warnings": 1,
        "inserts": 3,
        "processed": 3,
        "elapsed_ms": 65_000,
    }


@pytest.mark.asyncio
async def test_job_logger_progress_stops_after_run_leaves_running(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    run_service, run_id = await _running_run(session_factory, clock)
    log_service = JobLogService(session_factory=session_factory, now_factory=clock)
    job_logger = JobLogger(
        job_run_id=run_id,
        job_name="ingest",
        worker_id="worker-a",
        run_service=run_service,
        log_service=log_service,
        now_factory=clock,
    )
    await run_service.finish(run_id, RunOutcome.failed("reaped"))

    await job_logger.set_progress(10)
    await job_logger.error("still talking")

    run = await run_service.get_run(run_id)
    assert run.progress_current is None
    logs = await log_service.list_logs(run_id, level=JobLogLevel.ERROR)
    assert [entry.message for entry in logs] == ["still talking"]


@pytest.mark.asyncio
async def test_list_logs_filters_by_level_and_limit(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    _, run_id = await _running_run(session_factory, clock)
    log_service = JobLogService(session_factory=session_factory, now_factory=clock)
    for index in range(3):
        await log_service.write(run_id, JobLogLevel.INFO, f"line {index}")
        clock.advance(seconds=1)
    await log_service.write(run_id, JobLogLevel.ERROR, "failed")

    limited = await log_service.list_logs(run_id, limit=2)
    errors = await log_service.list_logs(run_id, level=JobLogLevel.ERROR)

    assert [entry.message for entry in limited] == ["line 0", "line 1"]
    assert [entry.message for entry in errors] == ["failed"]
    assert await log_service.run_exists(run_id) is True
    assert await log_service.run_exists(run_id + 100) is False


def test_format_duration() -> None:
    assert format_duration(4_500) == "4s"
    assert format_duration(125_000) == "2m 5s"
    assert format_duration(3_725_000) == "1h 2m 5s"
