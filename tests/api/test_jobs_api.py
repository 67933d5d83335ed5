"""Tests for job catalogue and enqueue routes."""

from __future__ import annotations

from typing import Any

import pytest
from conftest import FakeClock, SessionScopeFactory
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from job_coordinator.api.jobs import router as jobs_router
from job_coordinator.api.runs import router as runs_router
from job_coordinator.config import Settings
from job_coordinator.jobs import JobDefinition, JobRegistry
from job_coordinator.models import JobTrigger
from job_coordinator.runtime import CoordinatorRuntime, build_runtime


async def _noop(params: dict[str, Any], context: Any) -> None:
    return None


def _runtime(
    session_factory: SessionScopeFactory, clock: FakeClock
) -> CoordinatorRuntime:
    registry = JobRegistry(
        [
            JobDefinition(
                name="report",
                execute=_noop,
                description="Build the daily report",
                dependencies=("transform",),
            ),
            JobDefinition(
                name="transform",
                execute=_noop,
                dependencies=("ingest",),
                group="etl",
            ),
            JobDefinition(
                name="ingest",
                execute=_noop,
                group="etl",
                default_params={"batch": 100},
            ),
        ]
    )
    return build_runtime(
        Settings(),
        session_factory=session_factory,
        now_factory=clock,
        registry=registry,
    )


def _app(runtime: CoordinatorRuntime) -> FastAPI:
    app = FastAPI()
    app.include_router(runs_router)
    app.include_router(jobs_router)
    app.state.runtime = runtime
    return app


@pytest.mark.asyncio
async def test_jobs_api_lists_catalogue_and_groups(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    runtime = _runtime(session_factory, clock)

    transport = ASGITransport(app=_app(runtime))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        jobs_response = await client.get("/api/jobs")
        assert jobs_response.status_code == 200
        jobs = {job["name"]: job for job in jobs_response.json()}
        assert set(jobs) == {"report", "transform", "ingest"}
        assert jobs["report"]["dependencies"] == ["transform"]
        assert jobs["report"]["description"] == "Build the daily report"
        assert jobs["ingest"]["default_params"] == {"batch": 100}

        groups_response = await client.get("/api/jobs/groups")
        assert groups_response.status_code == 200
        assert groups_response.json() == [
            {"group": "etl", "job_count": 2, "jobs": ["transform", "ingest"]}
        ]


@pytest.mark.asyncio
async def test_jobs_api_enqueue_one_returns_accepted_run(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    runtime = _runtime(session_factory, clock)

    transport = ASGITransport(app=_app(runtime))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/api/jobs/ingest/enqueue",
            json={"params": {"batch": 5}, "triggered_by": "alice"},
        )
        assert response.status_code == 202
        payload = response.json()
        assert payload["status"] == "accepted"
        [run_id] = payload["run_ids"]

        bodyless_response = await client.post("/api/jobs/ingest/enqueue")
        assert bodyless_response.status_code == 202

        run_response = await client.get(f"/api/jobs/runs/{run_id}")
        run = run_response.json()
        assert run["status"] == "QUEUED"
        assert run["params"] == {"batch": 5}
        assert run["triggered_by"] == "alice"
        assert run["trigger"] == JobTrigger.MANUAL.value

        unknown_response = await client.post("/api/jobs/missing/enqueue")
        assert unknown_response.status_code == 404

        invalid_response = await client.post(
            "/api/jobs/ingest/enqueue", json={"params": ["not", "an", "object"]}
        )
        assert invalid_response.status_code == 422

    assert (await runtime.run_service.list_runs()).total_items == 2


@pytest.mark.asyncio
async def test_jobs_api_enqueue_all_and_group_preserve_dependency_order(
    session_factory: SessionScopeFactory,
    clock: FakeClock,
) -> None:
    runtime = _runtime(session_factory, clock)

    transport = ASGITransport(app=_app(runtime))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        all_response = await client.post(
            "/api/jobs/enqueue-all", json={"triggered_by": "ops"}
        )
        assert all_response.status_code == 202
        all_ids = all_response.json()["run_ids"]

        group_response = await client.post("/api/jobs/groups/etl/enqueue")
        assert group_response.status_code == 202
        group_ids = group_response.json()["run_ids"]

        missing_group_response = await client.post("/api/jobs/groups/nope/enqueue")
        assert missing_group_response.status_code == 404

    all_names = [(await runtime.run_service.get_run(i)).job_name for i in all_ids]
    group_names = [(await runtime.run_service.get_run(i)).job_name for i in group_ids]
    assert all_names == ["ingest", "transform", "report"]
    assert group_names == ["ingest", "transform"]
