"""Job run inspection, cancellation and cleanup API routes."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import JSONResponse

from job_coordinator.api.dependencies import get_runtime
from job_coordinator.api.errors import raise_api_error
from job_coordinator.models import JobLog, JobLogLevel, JobRun, JobRunStatus
from job_coordinator.runtime import CoordinatorRuntime
from job_coordinator.schemas import (
    CancelRequest,
    CancelResponse,
    CleanupStalledResponse,
    JobLogRead,
    JobRunPageResponse,
    JobRunRead,
    JobRunStatsResponse,
)
from job_coordinator.services.job_runs import CancelResult

router = APIRouter(prefix="/api/jobs/runs", tags=["job-runs"])


@router.get("", response_model=JobRunPageResponse, status_code=status.HTTP_200_OK)
async def list_job_runs(
    page: int = 1,
    page_size: int = 20,
    job_name: str | None = None,
    status_filter: JobRunStatus | None = Query(default=None, alias="status"),
    sort_by: str = "queued_at",
    sort_order: Literal["asc", "desc"] = "desc",
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> JobRunPageResponse:
    try:
        run_page = await runtime.run_service.list_runs(
            job_name=job_name,
            status=status_filter,
            page=page,
            page_size=page_size,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except Exception as error:
        raise_api_error(error)

    return JobRunPageResponse(
        page=run_page.page,
        page_size=run_page.page_size,
        total_items=run_page.total_items,
        total_pages=run_page.total_pages,
        items=[JobRunRead.model_validate(run) for run in run_page.items],
    )


@router.get("/active", response_model=list[JobRunRead], status_code=status.HTTP_200_OK)
async def list_active_job_runs(
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> list[JobRunRead]:
    runs: list[JobRun] = []
    try:
        runs = await runtime.run_service.list_active_runs()
    except Exception as error:
        raise_api_error(error)

    return [JobRunRead.model_validate(run) for run in runs]


@router.get(
    "/stats", response_model=JobRunStatsResponse, status_code=status.HTTP_200_OK
)
async def get_job_run_stats(
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> JobRunStatsResponse:
    try:
        stats = await runtime.run_service.stats()
    except Exception as error:
        raise_api_error(error)

    return JobRunStatsResponse(
        by_status=stats.by_status,
        total=stats.total,
        active=stats.active,
        last_24h=stats.last_24h,
    )


@router.post(
    "/cleanup-stalled",
    response_model=CleanupStalledResponse,
    status_code=status.HTTP_200_OK,
)
async def cleanup_stalled_job_runs(
    threshold_ms: int | None = Query(default=None, ge=1),
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> CleanupStalledResponse:
    try:
        result = await runtime.reaper.sweep(
            threshold_ms or runtime.settings.stalled_threshold_ms
        )
    except Exception as error:
        raise_api_error(error)

    return CleanupStalledResponse(
        reaped=result.reaped_count,
        run_ids=list(result.reaped_run_ids),
        threshold_ms=result.threshold_ms,
    )


@router.get("/{run_id}", response_model=JobRunRead, status_code=status.HTTP_200_OK)
async def get_job_run(
    run_id: int,
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> JobRunRead:
    try:
        run = await runtime.run_service.get_run(run_id)
    except Exception as error:
        raise_api_error(error)

    return JobRunRead.model_validate(run)


@router.get(
    "/{run_id}/logs",
    response_model=list[JobLogRead],
    status_code=status.HTTP_200_OK,
)
async def list_job_run_logs(
    run_id: int,
    level: JobLogLevel | None = None,
    limit: int = Query(default=200, ge=1, le=1000),
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> list[JobLogRead]:
    logs: list[JobLog] = []
    try:
        await runtime.run_service.get_run(run_id)
        logs = await runtime.log_service.list_logs(run_id, level=level, limit=limit)
    except Exception as error:
        raise_api_error(error)

    return [JobLogRead.model_validate(entry) for entry in logs]


@router.post(
    "/{run_id}/cancel",
    response_model=CancelResponse,
    status_code=status.HTTP_200_OK,
    responses={status.HTTP_202_ACCEPTED: {"model": CancelResponse}},
)
async def cancel_job_run(
    run_id: int,
    payload: CancelRequest | None = Body(default=None),
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> JSONResponse:
    request = payload or CancelRequest()
    result = CancelResult.CANCELLED
    try:
        result = await runtime.cancellation.cancel(
            run_id, requested_by=request.requested_by
        )
    except Exception as error:
        raise_api_error(error)

    response_status = (
        status.HTTP_200_OK
        if result is CancelResult.CANCELLED
        else status.HTTP_202_ACCEPTED
    )
    return JSONResponse(
        status_code=response_status,
        content=CancelResponse(run_id=run_id, status=result.value).model_dump(),
    )
