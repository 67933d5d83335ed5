"""Crash recovery: a worker dies mid-run and a replacement takes over."""

from __future__ import annotations

from typing import Any

import pytest
from conftest import FakeClock, SessionScopeFactory

from job_coordinator.config import Settings
from job_coordinator.errors import WorkerAlreadyRunningError
from job_coordinator.jobs import JobDefinition, JobRegistry
from job_coordinator.models import JobLogLevel, JobRunStatus
from job_coordinator.runtime import build_runtime
from job_coordinator.services.job_context import JobContext
from job_coordinator.services.job_runs import RunOutcome
from job_coordinator.services.reaper import STALLED_RUN_ERROR


async def _ingest(params: dict[str, Any], context: JobContext) -> dict[str, Any]:
    await context.logger.set_stage("ingest")
    await context.logger.increment_progress(int(params.get("rows", 1)))
    return {"rows": int(params.get("rows", 1))}


@pytest.mark.asyncio
async def test_crash_recovery_fails_orphaned_run_and_lets_new_worker_start(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
    caplog: pytest.LogCaptureFixture,
) -> None:
    settings = Settings(
        WORKER_POOL="recovery",
        WORKER_LIVENESS_WINDOW_SECONDS=30,
        WORKER_LEASE_TTL_SECONDS=30,
        STALLED_RUN_THRESHOLD_SECONDS=300,
    )
    runtime = build_runtime(
        settings,
        session_factory=session_factory,
        now_factory=clock,
        registry=JobRegistry([JobDefinition(name="ingest", execute=_ingest)]),
    )

    crashed_worker = runtime.worker_manager._worker_factory()
    await crashed_worker.start(run_loops=False)
    orphan_id = await runtime.enqueue_service.enqueue_one("ingest")
    claimed = await runtime.run_service.claim(str(crashed_worker.worker_id))
    assert claimed is not None
    assert claimed.id == orphan_id

    # The process dies here: no finish, no heartbeat, no lease release.
    clock.advance(seconds=10)
    with pytest.raises(WorkerAlreadyRunningError):
        await runtime.worker_manager.start()

    clock.advance(seconds=300)
    caplog.set_level("INFO", logger="job_coordinator.reaper")
    sweep = await runtime.reaper.handle_startup_sweep(settings.stalled_threshold_ms)

    assert sweep.reaped_run_ids == (orphan_id,)
    orphan = await runtime.run_service.get_run(orphan_id)
    assert orphan.status == JobRunStatus.FAILED
    assert orphan.error == STALLED_RUN_ERROR
    reaper_logs = await runtime.log_service.list_logs(
        orphan_id, level=JobLogLevel.ERROR
    )
    assert [entry.stage for entry in reaper_logs] == ["reaper"]
    assert any(
        record.getMessage() == "startup_stalled_runs_detected"
        for record in caplog.records
    )

    replacement = runtime.worker_manager._worker_factory()
    await replacement.start(run_loops=False)
    fresh_id = await runtime.enqueue_service.enqueue_one("ingest", params={"rows": 7})

    assert await replacement.run_once() == fresh_id
    fresh = await runtime.run_service.get_run(fresh_id)
    assert fresh.status == JobRunStatus.SUCCEEDED
    assert fresh.outcome_summary is not None
    assert fresh.outcome_summary["rows"] == 7

    late = await runtime.run_service.finish(
        orphan_id,
        RunOutcome.succeeded({"rows": 1}),
        worker_id=str(crashed_worker.worker_id),
    )
    assert late is False
    await replacement.stop()
