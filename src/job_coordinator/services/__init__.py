"""Service layer for job coordination."""

from job_coordinator import __version__
from job_coordinator.services.cancellation import CancellationCoordinator
from job_coordinator.services.enqueue import EnqueueService
from job_coordinator.services.job_context import JobContext
from job_coordinator.services.job_logger import JobLogger, JobLogService
from job_coordinator.services.job_runs import (
    CancelResult,
    JobRunService,
    NewRun,
    RunOutcome,
    RunPage,
    RunProgress,
    RunStats,
)
from job_coordinator.services.job_worker import (
    JobWorker,
    WorkerManager,
    WorkerManagerStatus,
    WorkerOptions,
)
from job_coordinator.services.reaper import StalledRunReaper, SweepResult
from job_coordinator.services.scheduler import SchedulerJobState, SchedulerService
from job_coordinator.services.schedules import (
    ScheduleDefinition,
    ScheduleMode,
    ScheduleService,
)
from job_coordinator.services.worker_registry import WorkerRegistryService

__all__ = [
    "__version__",
    "CancelResult",
    "CancellationCoordinator",
    "EnqueueService",
    "JobContext",
    "JobLogService",
    "JobLogger",
    "JobRunService",
    "JobWorker",
    "NewRun",
    "RunOutcome",
    "RunPage",
    "RunProgress",
    "RunStats",
    "ScheduleDefinition",
    "ScheduleMode",
    "ScheduleService",
    "SchedulerJobState",
    "SchedulerService",
    "StalledRunReaper",
    "SweepResult",
    "WorkerManager",
    "WorkerManagerStatus",
    "WorkerOptions",
    "WorkerRegistryService",
]
