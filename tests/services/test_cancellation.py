"""Tests for the cancellation coordinator."""

from __future__ import annotations

from typing import Any

import pytest
from conftest import FakeClock, SessionScopeFactory

from job_coordinator.errors import InvalidRunStateError, RunNotFoundError
from job_coordinator.jobs import JobDefinition, JobRegistry
from job_coordinator.models import JobLogLevel, JobRunStatus
from job_coordinator.services.cancellation import CancellationCoordinator
from job_coordinator.services.job_logger import JobLogService
from job_coordinator.services.job_runs import CancelResult, JobRunService, RunOutcome


async def _noop(params: dict[str, Any], context: Any) -> None:
    return None


def _build(
    session_factory: SessionScopeFactory, clock: FakeClock
) -> tuple[CancellationCoordinator, JobRunService, JobLogService]:
    run_service = JobRunService(
        registry=JobRegistry([JobDefinition(name="ingest", execute=_noop)]),
        session_factory=session_factory,
        now_factory=clock,
    )
    log_service = JobLogService(session_factory=session_factory, now_factory=clock)
    coordinator = CancellationCoordinator(
        run_service=run_service, log_service=log_service
    )
    return coordinator, run_service, log_service


@pytest.mark.asyncio
async def test_cancel_queued_run_is_immediate_and_audited(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    coordinator, run_service, log_service = _build(session_factory, clock)
    run_id = await run_service.create("ingest")

    result = await coordinator.cancel(run_id, requested_by="alice")

    run = await run_service.get_run(run_id)
    [entry] = await log_service.list_logs(run_id)
    assert result is CancelResult.CANCELLED
    assert run.status == JobRunStatus.CANCELLED
    assert entry.level == JobLogLevel.WARNING
    assert entry.stage == "cancellation"
    assert entry.message == "Cancelled by alice before start"
    assert entry.context == {"requested_by": "alice", "result": "cancelled"}


@pytest.mark.asyncio
async def test_cancel_running_run_requests_cooperative_stop(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
    caplog: pytest.LogCaptureFixture,
) -> None:
    coordinator, run_service, log_service = _build(session_factory, clock)
    run_id = await run_service.create("ingest")
    await run_service.claim("worker-a")
    caplog.set_level("INFO", logger="job_coordinator.cancellation")

    result = await coordinator.cancel(run_id, requested_by="ops")

    run = await run_service.get_run(run_id)
    [entry] = await log_service.list_logs(run_id)
    assert result is CancelResult.CANCELLATION_REQUESTED
    assert run.status == JobRunStatus.RUNNING
    assert run.cancel_requested_by == "ops"
    assert entry.message == "Cancellation requested by ops"

    handled = [
        record
        for record in caplog.records
        if record.getMessage() == "job_run_cancel_request_handled"
    ]
    assert len(handled) == 1
    assert getattr(handled[0], "result") == "cancellation_requested"


@pytest.mark.asyncio
async def test_cancel_rejects_finished_and_unknown_runs_without_logging(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    coordinator, run_service, log_service = _build(session_factory, clock)
    run_id = await run_service.create("ingest")
    await run_service.claim("worker-a")
    await run_service.finish(run_id, RunOutcome.succeeded())

    with pytest.raises(InvalidRunStateError):
        await coordinator.cancel(run_id, requested_by="alice")
    with pytest.raises(RunNotFoundError):
        await coordinator.cancel(run_id + 1, requested_by="alice")

    assert await log_service.list_logs(run_id) == []
