"""Tests for stalled-run detection and recovery."""

from __future__ import annotations

from typing import Any

import pytest
from conftest import FakeClock, SessionScopeFactory
from sqlalchemy import update

from job_coordinator.jobs import JobDefinition, JobRegistry
from job_coordinator.models import JobLogLevel, JobRun, JobRunStatus
from job_coordinator.services.job_logger import JobLogService
from job_coordinator.services.job_runs import JobRunService, RunOutcome
from job_coordinator.services.reaper import STALLED_RUN_ERROR, StalledRunReaper

THRESHOLD_MS = 300_000


async def _noop(params: dict[str, Any], context: Any) -> None:
    return None


def _build(
    session_factory: SessionScopeFactory, clock: FakeClock
) -> tuple[StalledRunReaper, JobRunService, JobLogService]:
    run_service = JobRunService(
        registry=JobRegistry([JobDefinition(name="ingest", execute=_noop)]),
        session_factory=session_factory,
        now_factory=clock,
    )
    log_service = JobLogService(session_factory=session_factory, now_factory=clock)
    reaper = StalledRunReaper(
        session_factory=session_factory, now_factory=clock, log_service=log_service
    )
    return reaper, run_service, log_service


@pytest.mark.asyncio
async def test_sweep_fails_runs_with_stale_heartbeat(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    reaper, run_service, log_service = _build(session_factory, clock)
    run_id = await run_service.create("ingest")
    await run_service.claim("worker-a")
    clock.advance(seconds=301)

    result = await reaper.sweep(THRESHOLD_MS)

    run = await run_service.get_run(run_id)
    [entry] = await log_service.list_logs(run_id)
    assert result.reaped_run_ids == (run_id,)
    assert result.reaped_count == 1
    assert run.status == JobRunStatus.FAILED
    assert run.error == STALLED_RUN_ERROR
    assert run.duration_ms == 301_000
    assert entry.level == JobLogLevel.ERROR
    assert entry.stage == "reaper"
    assert entry.message == STALLED_RUN_ERROR


@pytest.mark.asyncio
async def test_sweep_never_reaps_a_run_heartbeating_within_threshold(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    reaper, run_service, _ = _build(session_factory, clock)
    run_id = await run_service.create("ingest")
    await run_service.claim("worker-a")

    for _ in range(6):
        clock.advance(milliseconds=THRESHOLD_MS // 2)
        assert await run_service.heartbeat(run_id, "worker-a") is True
        result = await reaper.sweep(THRESHOLD_MS)
        assert result.reaped_count == 0

    run = await run_service.get_run(run_id)
    assert run.status == JobRunStatus.RUNNING


@pytest.mark.asyncio
async def test_sweep_reaps_running_rows_without_heartbeat(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    reaper, run_service, _ = _build(session_factory, clock)
    run_id = await run_service.create("ingest")
    await run_service.claim("worker-a")
    async with session_factory() as session:
        await session.execute(
            update(JobRun).where(JobRun.id == run_id).values(last_heartbeat_at=None)
        )

    result = await reaper.sweep(THRESHOLD_MS)

    assert result.reaped_run_ids == (run_id,)


@pytest.mark.asyncio
async def test_sweep_ignores_queued_and_terminal_runs(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    reaper, run_service, _ = _build(session_factory, clock)
    finished_id = await run_service.create("ingest")
    clock.advance(seconds=1)
    waiting_id = await run_service.create("ingest")
    await run_service.claim("worker-a")
    await run_service.finish(finished_id, RunOutcome.succeeded())
    clock.advance(seconds=3600)

    result = await reaper.sweep(THRESHOLD_MS)

    assert result.reaped_count == 0
    assert (await run_service.get_run(waiting_id)).status == JobRunStatus.QUEUED


@pytest.mark.asyncio
async def test_late_finish_after_reap_is_a_no_op(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    reaper, run_service, _ = _build(session_factory, clock)
    run_id = await run_service.create("ingest")
    await run_service.claim("worker-a")
    clock.advance(seconds=600)
    await reaper.sweep(THRESHOLD_MS)

    applied = await run_service.finish(
        run_id, RunOutcome.succeeded({"rows": 1}), worker_id="worker-a"
    )

    run = await run_service.get_run(run_id)
    assert applied is False
    assert run.status == JobRunStatus.FAILED
    assert run.outcome_summary is None


@pytest.mark.asyncio
async def test_sweep_rejects_non_positive_threshold(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    reaper, _, _ = _build(session_factory, clock)

    with pytest.raises(ValueError):
        await reaper.sweep(0)


@pytest.mark.asyncio
async def test_startup_sweep_logs_detected_runs(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
    caplog: pytest.LogCaptureFixture,
) -> None:
    reaper, run_service, _ = _build(session_factory, clock)
    first_id = await run_service.create("ingest")
    await run_service.claim("worker-a")
    second_id = await run_service.create("ingest")
    await run_service.claim("worker-a")
    clock.advance(seconds=900)
    caplog.set_level("INFO", logger="job_coordinator.reaper")

    result = await reaper.handle_startup_sweep(THRESHOLD_MS)

    assert result.reaped_run_ids == (first_id, second_id)
    detected = [
        record
        for record in caplog.records
        if record.getMessage() == "startup_stalled_runs_detected"
    ]
    assert len(detected) == 1
    assert getattr(detected[0], "count") == 2
