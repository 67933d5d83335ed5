"""Schema exports for API serialization."""

from job_coordinator import __version__
from job_coordinator.schemas.job_definition import JobDefinitionRead, JobGroupRead
from job_coordinator.schemas.job_run import (
    CancelRequest,
    CancelResponse,
    CleanupStalledResponse,
    EnqueueRequest,
    EnqueueResponse,
    JobLogRead,
    JobRunPageResponse,
    JobRunRead,
    JobRunStatsResponse,
)
from job_coordinator.schemas.scheduler import (
    ScheduleRead,
    SchedulerJobRead,
    SchedulerStatusResponse,
)
from job_coordinator.schemas.worker import WorkerInstanceRead, WorkerStatusResponse

__all__ = [
    "__version__",
    "CancelRequest",
    "CancelResponse",
    "CleanupStalledResponse",
    "EnqueueRequest",
    "EnqueueResponse",
    "JobDefinitionRead",
    "JobGroupRead",
    "JobLogRead",
    "JobRunPageResponse",
    "JobRunRead",
    "JobRunStatsResponse",
    "ScheduleRead",
    "SchedulerJobRead",
    "SchedulerStatusResponse",
    "WorkerInstanceRead",
    "WorkerStatusResponse",
]
