"""Domain errors raised by job coordination services."""

from __future__ import annotations

from collections.abc import Sequence


class JobCoordinatorError(Exception):
    """Base class for job coordination failures."""


class UnknownJobError(JobCoordinatorError, LookupError):
    """Raised when a job name is not present in the job registry."""

    def __init__(self, job_name: str, *, required_by: str | None = None) -> None:
        self.job_name = job_name
        self.required_by = required_by
        if required_by is None:
            message = f"Unknown job '{job_name}'"
        else:
            message = f"Unknown job '{job_name}' (dependency of '{required_by}')"
        super().__init__(message)


class UnknownGroupError(JobCoordinatorError, LookupError):
    """Raised when no registered job declares membership in a group."""

    def __init__(self, group: str) -> None:
        self.group = group
        super().__init__(f"No jobs registered for group '{group}'")


class InvalidParametersError(JobCoordinatorError, ValueError):
    """Raised when enqueue parameters are not a structured object."""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid parameter '{field}': {reason}")


class RunNotFoundError(JobCoordinatorError, LookupError):
    """Raised when a job run id does not exist."""

    def __init__(self, run_id: int) -> None:
        self.run_id = run_id
        super().__init__(f"Job run {run_id} not found")


class InvalidRunStateError(JobCoordinatorError, RuntimeError):
    """Raised when an operation is not valid for the run's current status."""

    def __init__(self, run_id: int, status: str, operation: str) -> None:
        self.run_id = run_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} job run {run_id} in status {status}")


class CyclicDependencyError(JobCoordinatorError, RuntimeError):
    """Raised when declared job dependencies form a cycle."""

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = tuple(cycle)
        super().__init__(f"Circular dependency detected: {' -> '.join(self.cycle)}")


class WorkerAlreadyRunningError(JobCoordinatorError, RuntimeError):
    """Raised when a worker start is refused because another worker is live."""

    def __init__(self, pool: str, reason: str) -> None:
        self.pool = pool
        self.reason = reason
        super().__init__(f"Worker pool '{pool}' already has a live worker: {reason}")


class StorageError(JobCoordinatorError, RuntimeError):
    """Retryable failure reading or writing the persistent store."""


class SchedulerUnavailableError(JobCoordinatorError, RuntimeError):
    """Raised when the periodic scheduler is disabled or not running."""


class ScheduledJobNotFoundError(JobCoordinatorError, LookupError):
    """Raised when a scheduler job id is not registered."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Scheduler job '{job_id}' not found")


class JobCancelledError(Exception):
    """Raised inside a job body once it observes a cancellation request."""

    def __init__(self, run_id: int, requested_by: str | None = None) -> None:
        self.run_id = run_id
        self.requested_by = requested_by
        super().__init__(f"Job run {run_id} cancelled")


__all__ = [
    "CyclicDependencyError",
    "InvalidParametersError",
    "InvalidRunStateError",
    "JobCancelledError",
    "JobCoordinatorError",
    "RunNotFoundError",
    "ScheduledJobNotFoundError",
    "SchedulerUnavailableError",
    "StorageError",
    "UnknownGroupError",
    "UnknownJobError",
    "WorkerAlreadyRunningError",
]
