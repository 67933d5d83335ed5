"""ORM model exports."""

from job_coordinator import __version__
from job_coordinator.models.base import Base
from job_coordinator.models.job_log import JobLog, JobLogLevel
from job_coordinator.models.job_run import (
    ACTIVE_RUN_STATUSES,
    TERMINAL_RUN_STATUSES,
    JobRun,
    JobRunStatus,
    JobTrigger,
)
from job_coordinator.models.worker_instance import WorkerInstance, WorkerStatus
from job_coordinator.models.worker_lease import WorkerLease

__all__ = [
    "__version__",
    "ACTIVE_RUN_STATUSES",
    "Base",
    "JobLog",
    "JobLogLevel",
    "JobRun",
    "JobRunStatus",
    "JobTrigger",
    "TERMINAL_RUN_STATUSES",
    "WorkerInstance",
    "WorkerLease",
    "WorkerStatus",
]
