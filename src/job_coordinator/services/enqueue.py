"""Enqueue single jobs, the whole catalogue, or a group in dependency order."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from job_coordinator.jobs.dependencies import (
    ResolvedJob,
    resolve_job_dependencies,
    resolve_jobs_by_group,
)
from job_coordinator.jobs.registry import JobRegistry
from job_coordinator.models import JobTrigger
from job_coordinator.services.job_runs import JobRunService, NewRun

_enqueue_logger = logging.getLogger("job_coordinator.enqueue")


class EnqueueService:
    """Turn enqueue requests into ``QUEUED`` runs.

    Ordering is resolved before anything is written and every batch is inserted
    in a single transaction, so a cyclic or dangling dependency leaves the
    queue untouched.
    """

    def __init__(self, *, registry: JobRegistry, run_service: JobRunService) -> None:
        self._registry = registry
        self._run_service = run_service

    async def enqueue_one(
        self,
        job_name: str,
        *,
        params: object = None,
        triggered_by: str | None = None,
        trigger: JobTrigger = JobTrigger.MANUAL,
        scope: str | None = None,
        schedule_id: str | None = None,
    ) -> int:
        run_id = await self._run_service.create(
            job_name,
            trigger=trigger,
            scope=scope,
            params=params,
            triggered_by=triggered_by,
            schedule_id=schedule_id,
        )
        _enqueue_logger.info(
            "job_enqueued",
            extra={
                "run_id": run_id,
                "job_name": job_name,
                "trigger": trigger.value,
                "triggered_by": triggered_by,
            },
        )
        return run_id

    async def enqueue_all(
        self,
        *,
        triggered_by: str | None = None,
        trigger: JobTrigger = JobTrigger.MANUAL,
        schedule_id: str | None = None,
    ) -> list[int]:
        """Queue every registered job, dependencies first."""

        ordered = resolve_job_dependencies(self._registry.as_mapping())
        return await self._enqueue_ordered(
            ordered,
            scope="all",
            triggered_by=triggered_by,
            trigger=trigger,
            schedule_id=schedule_id,
        )

    async def enqueue_group(
        self,
        group: str,
        *,
        triggered_by: str | None = None,
        trigger: JobTrigger = JobTrigger.MANUAL,
        schedule_id: str | None = None,
    ) -> list[int]:
        """Queue the members of ``group``; dependencies outside it are not pulled in."""

        ordered = resolve_jobs_by_group(self._registry.as_mapping(), group)
        return await self._enqueue_ordered(
            ordered,
            scope=f"group:{group}",
            triggered_by=triggered_by,
            trigger=trigger,
            schedule_id=schedule_id,
        )

    async def _enqueue_ordered(
        self,
        ordered: Sequence[ResolvedJob],
        *,
        scope: str,
        triggered_by: str | None,
        trigger: JobTrigger,
        schedule_id: str | None,
    ) -> list[int]:
        run_ids = await self._run_service.create_many(
            [
                NewRun(
                    job_name=job.name,
                    trigger=trigger,
                    scope=scope,
                    triggered_by=triggered_by,
                    schedule_id=schedule_id,
                )
                for job in ordered
            ]
        )
        _enqueue_logger.info(
            "jobs_enqueued",
            extra={
                "scope": scope,
                "run_ids": run_ids,
                "job_names": [job.name for job in ordered],
                "trigger": trigger.value,
                "triggered_by": triggered_by,
            },
        )
        return run_ids


__all__ = ["EnqueueService"]
