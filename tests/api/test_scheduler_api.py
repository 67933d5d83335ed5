"""Tests for scheduler management and cron schedule routes."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from conftest import FakeClock, SessionScopeFactory
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from job_coordinator.api.scheduler import router
from job_coordinator.config import Settings
from job_coordinator.jobs import JobDefinition, JobRegistry
from job_coordinator.models import JobTrigger
from job_coordinator.runtime import build_runtime
from job_coordinator.services.schedules import (
    STALLED_RUN_SWEEP_JOB_ID,
    ScheduleService,
)
from job_coordinator.services.scheduler import SchedulerService


async def _sweep_tick() -> None:
    return None


async def _noop_handler(params: dict[str, Any], context: Any) -> None:
    return None


def _scheduler_app(scheduler: SchedulerService) -> FastAPI:
    app = FastAPI()
    app.include_router(router)
    app.state.scheduler_service = scheduler
    return app


def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest_asyncio.fixture
async def persistent_scheduler(tmp_path: Path) -> AsyncIterator[SchedulerService]:
    scheduler = SchedulerService(
        enabled=True, jobstore_url=f"sqlite:///{tmp_path / 'apscheduler.sqlite'}"
    )
    scheduler.add_interval_job(
        job_id=STALLED_RUN_SWEEP_JOB_ID, func=_sweep_tick, seconds=60
    )
    await scheduler.start()
    yield scheduler
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_scheduler_api_pauses_whole_scheduler(
    persistent_scheduler: SchedulerService,
) -> None:
    async with _client(_scheduler_app(persistent_scheduler)) as client:
        initial = (await client.get("/api/scheduler")).json()
        paused = await client.post("/api/scheduler/pause")
        resumed = await client.post("/api/scheduler/resume")

    assert initial == {"enabled": True, "running": True, "paused": False}
    assert paused.status_code == 200
    assert paused.json()["paused"] is True
    assert resumed.json() == {"enabled": True, "running": True, "paused": False}


@pytest.mark.asyncio
async def test_scheduler_api_pauses_single_sweep_job(
    persistent_scheduler: SchedulerService,
) -> None:
    job_path = f"/api/scheduler/jobs/{STALLED_RUN_SWEEP_JOB_ID}"

    async with _client(_scheduler_app(persistent_scheduler)) as client:
        [listed] = (await client.get("/api/scheduler/jobs")).json()
        paused = await client.post(f"{job_path}/pause")
        resumed = await client.post(f"{job_path}/resume")
        unknown = await client.post("/api/scheduler/jobs/schedule:nope/resume")

    assert listed["job_id"] == STALLED_RUN_SWEEP_JOB_ID
    assert "interval" in listed["trigger"]
    assert listed["next_run_time"] is not None
    assert paused.json()["paused"] is True
    assert paused.json()["next_run_time"] is None
    assert resumed.json()["paused"] is False
    assert unknown.status_code == 404
    assert "schedule:nope" in unknown.json()["detail"]


@pytest.mark.asyncio
async def test_scheduler_api_returns_conflict_when_disabled() -> None:
    scheduler = SchedulerService(enabled=False, jobstore_url=None)

    async with _client(_scheduler_app(scheduler)) as client:
        status_response = await client.get("/api/scheduler")
        pause_response = await client.post("/api/scheduler/pause")
        jobs_response = await client.get("/api/scheduler/jobs")

    assert status_response.json() == {
        "enabled": False,
        "running": False,
        "paused": False,
    }
    assert pause_response.status_code == 409
    assert "disabled" in pause_response.json()["detail"]
    assert jobs_response.status_code == 409


@pytest.mark.asyncio
async def test_scheduler_api_pause_requires_running_scheduler() -> None:
    scheduler = SchedulerService(enabled=True, jobstore_url=None)

    async with _client(_scheduler_app(scheduler)) as client:
        response = await client.post("/api/scheduler/pause")

    assert response.status_code == 409
    assert "not running" in response.json()["detail"]


@pytest.mark.asyncio
async def test_scheduler_api_lists_and_fires_cron_schedules(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    settings = Settings(
        JOB_SCHEDULES=[
            {"id": "nightly", "cron": "0 3 * * *", "description": "Nightly"},
            {"id": "etl", "cron": "*/15 * * * *", "mode": "GROUP", "target": "etl"},
        ]
    )
    runtime = build_runtime(
        settings,
        session_factory=session_factory,
        now_factory=clock,
        registry=JobRegistry(
            [
                JobDefinition(name="ingest", execute=_noop_handler, group="etl"),
                JobDefinition(name="report", execute=_noop_handler),
            ]
        ),
    )
    scheduler = SchedulerService(enabled=True, jobstore_url=None)
    schedule_service = ScheduleService(
        scheduler=scheduler,
        enqueue_service=runtime.enqueue_service,
        reaper=runtime.reaper,
        settings=settings,
    )
    schedule_service.register_jobs()

    app = _scheduler_app(scheduler)
    app.state.schedule_service = schedule_service

    await scheduler.start()
    try:
        async with _client(app) as client:
            schedules_response = await client.get("/api/scheduler/schedules")
            assert schedules_response.status_code == 200
            schedules = {item["id"]: item for item in schedules_response.json()}
            assert schedules["nightly"]["mode"] == "ALL_JOBS"
            assert schedules["etl"]["target"] == "etl"

            jobs_response = await client.get("/api/scheduler/jobs")
            assert {job["job_id"] for job in jobs_response.json()} == {
                STALLED_RUN_SWEEP_JOB_ID,
                "schedule:nightly",
                "schedule:etl",
            }

            run_response = await client.post("/api/scheduler/schedules/etl/run")
            assert run_response.status_code == 202
            [run_id] = run_response.json()["run_ids"]

            missing_response = await client.post(
                "/api/scheduler/schedules/missing/run"
            )
            assert missing_response.status_code == 404
    finally:
        await scheduler.shutdown()

    run = await runtime.run_service.get_run(run_id)
    assert run.job_name == "ingest"
    assert run.trigger == JobTrigger.SCHEDULED
    assert run.schedule_id == "etl"
