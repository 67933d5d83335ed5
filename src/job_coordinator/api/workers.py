"""Worker status and in-process worker control API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from job_coordinator.api.dependencies import get_runtime
from job_coordinator.api.errors import raise_api_error
from job_coordinator.runtime import CoordinatorRuntime
from job_coordinator.schemas import WorkerInstanceRead, WorkerStatusResponse

router = APIRouter(prefix="/api/workers", tags=["workers"])


async def _worker_status_response(
    runtime: CoordinatorRuntime, *, limit: int = 20
) -> WorkerStatusResponse:
    manager_status = await runtime.worker_manager.status()
    instances = await runtime.worker_registry.list_instances(
        runtime.worker_options.pool, limit=limit
    )
    return WorkerStatusResponse(
        pool=manager_status.pool,
        local_running=manager_status.local_running,
        worker_id=manager_status.worker_id,
        current_run_id=manager_status.current_run_id,
        jobs_processed=manager_status.jobs_processed,
        active_workers=manager_status.active_workers,
        lease_holder_id=manager_status.lease_holder_id,
        instances=[WorkerInstanceRead.model_validate(row) for row in instances],
    )


@router.get("", response_model=WorkerStatusResponse, status_code=status.HTTP_200_OK)
async def get_worker_status(
    limit: int = Query(default=20, ge=1, le=200),
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> WorkerStatusResponse:
    try:
        response = await _worker_status_response(runtime, limit=limit)
    except Exception as error:
        raise_api_error(error)

    return response


@router.post(
    "/start", response_model=WorkerStatusResponse, status_code=status.HTTP_200_OK
)
async def start_worker(
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> WorkerStatusResponse:
    try:
        await runtime.worker_manager.start()
        response = await _worker_status_response(runtime)
    except Exception as error:
        raise_api_error(error)

    return response


@router.post(
    "/stop", response_model=WorkerStatusResponse, status_code=status.HTTP_200_OK
)
async def stop_worker(
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> WorkerStatusResponse:
    try:
        await runtime.worker_manager.stop(
            timeout_seconds=runtime.settings.SHUTDOWN_GRACE_PERIOD_SECONDS
        )
        response = await _worker_status_response(runtime)
    except Exception as error:
        raise_api_error(error)

    return response
