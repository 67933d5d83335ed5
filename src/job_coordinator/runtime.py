"""Wire settings, the job registry and services into one runtime bundle."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from job_coordinator.config import Settings
from job_coordinator.jobs.registry import JobRegistry, load_job_modules
from job_coordinator.services.builtin_jobs import (
    REAP_STALLED_RUNS_JOB,
    register_builtin_jobs,
)
from job_coordinator.services.cancellation import CancellationCoordinator
from job_coordinator.services.enqueue import EnqueueService
from job_coordinator.services.job_logger import JobLogService
from job_coordinator.services.job_runs import JobRunService
from job_coordinator.services.job_worker import JobWorker, WorkerManager, WorkerOptions
from job_coordinator.services.reaper import StalledRunReaper
from job_coordinator.services.worker_registry import WorkerRegistryService
from job_coordinator.utils.clock import NowFactory, utc_now

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_runtime_logger = logging.getLogger("job_coordinator.runtime")


@dataclass(slots=True)
class CoordinatorRuntime:
    """Services shared by the API process and standalone workers."""

    settings: Settings
    registry: JobRegistry
    run_service: JobRunService
    log_service: JobLogService
    worker_registry: WorkerRegistryService
    enqueue_service: EnqueueService
    cancellation: CancellationCoordinator
    reaper: StalledRunReaper
    worker_options: WorkerOptions
    worker_manager: WorkerManager


def build_runtime(
    settings: Settings,
    *,
    session_factory: SessionScopeFactory | None = None,
    now_factory: NowFactory | None = None,
    registry: JobRegistry | None = None,
) -> CoordinatorRuntime:
    """Build services; a missing registry is loaded from ``JOB_MODULES``.

    The registry is validated before anything is returned, so unknown
    dependencies and cycles fail at startup.
    """

    if session_factory is None:
        from job_coordinator.database import session_scope

        session_factory = session_scope

    clock = now_factory or utc_now
    log_service = JobLogService(session_factory=session_factory, now_factory=clock)
    reaper = StalledRunReaper(
        session_factory=session_factory, now_factory=clock, log_service=log_service
    )

    job_registry = registry if registry is not None else JobRegistry()
    if registry is None:
        register_builtin_jobs(
            job_registry,
            reaper=reaper,
            default_threshold_ms=settings.stalled_threshold_ms,
        )
        load_job_modules(job_registry, settings.JOB_MODULES)
    job_registry.validate()

    run_service = JobRunService(
        registry=job_registry, session_factory=session_factory, now_factory=clock
    )
    worker_registry = WorkerRegistryService(
        session_factory=session_factory, now_factory=clock
    )
    worker_options = WorkerOptions.from_settings(settings)

    def create_worker() -> JobWorker:
        return JobWorker(
            registry=job_registry,
            run_service=run_service,
            worker_registry=worker_registry,
            log_service=log_service,
            options=worker_options,
            now_factory=clock,
        )

    runtime = CoordinatorRuntime(
        settings=settings,
        registry=job_registry,
        run_service=run_service,
        log_service=log_service,
        worker_registry=worker_registry,
        enqueue_service=EnqueueService(
            registry=job_registry, run_service=run_service
        ),
        cancellation=CancellationCoordinator(
            run_service=run_service, log_service=log_service
        ),
        reaper=reaper,
        worker_options=worker_options,
        worker_manager=WorkerManager(
            worker_factory=create_worker,
            worker_registry=worker_registry,
            options=worker_options,
            now_factory=clock,
        ),
    )

    _runtime_logger.info(
        "coordinator_runtime_built",
        extra={
            "job_count": len(job_registry),
            "pool": worker_options.pool,
            "builtin_reaper_job": REAP_STALLED_RUNS_JOB in job_registry,
        },
    )
    return runtime


__all__ = ["CoordinatorRuntime", "build_runtime"]
