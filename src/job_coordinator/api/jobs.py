"""Job catalogue and enqueue API routes."""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends, status

from job_coordinator.api.dependencies import get_runtime
from job_coordinator.api.errors import raise_api_error
from job_coordinator.jobs.dependencies import job_group_counts
from job_coordinator.runtime import CoordinatorRuntime
from job_coordinator.schemas import (
    EnqueueRequest,
    EnqueueResponse,
    JobDefinitionRead,
    JobGroupRead,
)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("", response_model=list[JobDefinitionRead], status_code=status.HTTP_200_OK)
async def list_jobs(
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> list[JobDefinitionRead]:
    return [
        JobDefinitionRead.from_definition(definition)
        for definition in runtime.registry
    ]


@router.get(
    "/groups", response_model=list[JobGroupRead], status_code=status.HTTP_200_OK
)
async def list_job_groups(
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> list[JobGroupRead]:
    counts = job_group_counts(runtime.registry.as_mapping())
    return [
        JobGroupRead(
            group=group,
            job_count=count,
            jobs=[definition.name for definition in runtime.registry.by_group(group)],
        )
        for group, count in counts.items()
    ]


@router.post(
    "/enqueue-all",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def enqueue_all_jobs(
    payload: EnqueueRequest | None = Body(default=None),
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> EnqueueResponse:
    request = payload or EnqueueRequest()
    run_ids: list[int] = []
    try:
        run_ids = await runtime.enqueue_service.enqueue_all(
            triggered_by=request.triggered_by
        )
    except Exception as error:
        raise_api_error(error)

    return EnqueueResponse(run_ids=run_ids)


@router.post(
    "/groups/{group}/enqueue",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def enqueue_job_group(
    group: str,
    payload: EnqueueRequest | None = Body(default=None),
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> EnqueueResponse:
    request = payload or EnqueueRequest()
    run_ids: list[int] = []
    try:
        run_ids = await runtime.enqueue_service.enqueue_group(
            group, triggered_by=request.triggered_by
        )
    except Exception as error:
        raise_api_error(error)

    return EnqueueResponse(run_ids=run_ids)


@router.post(
    "/{job_name}/enqueue",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def enqueue_job(
    job_name: str,
    payload: EnqueueRequest | None = Body(default=None),
    runtime: CoordinatorRuntime = Depends(get_runtime),
) -> EnqueueResponse:
    request = payload or EnqueueRequest()
    run_id = 0
    try:
        run_id = await runtime.enqueue_service.enqueue_one(
            job_name,
            params=request.params,
            triggered_by=request.triggered_by,
        )
    except Exception as error:
        raise_api_error(error)

    return EnqueueResponse(run_ids=[run_id])
