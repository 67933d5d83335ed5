"""Cancellation requests for queued and running job runs."""

from __future__ import annotations

import logging

from job_coordinator.models import JobLogLevel
from job_coordinator.services.job_logger import JobLogService
from job_coordinator.services.job_runs import CancelResult, JobRunService

_cancellation_logger = logging.getLogger("job_coordinator.cancellation")


class CancellationCoordinator:
    """Record cancellation requests and leave an audit line in the run's log."""

    def __init__(
        self,
        *,
        run_service: JobRunService,
        log_service: JobLogService,
    ) -> None:
        self._run_service = run_service
        self._log_service = log_service

    async def cancel(self, run_id: int, *, requested_by: str) -> CancelResult:
        result = await self._run_service.request_cancel(run_id, requested_by)

        if result is CancelResult.CANCELLED:
            message = f"Cancelled by {requested_by} before start"
        else:
            message = f"Cancellation requested by {requested_by}"
        await self._log_service.write(
            run_id,
            JobLogLevel.WARNING,
            message,
            stage="cancellation",
            context={"requested_by": requested_by, "result": result.value},
        )

        _cancellation_logger.info(
            "job_run_cancel_request_handled",
            extra={
                "run_id": run_id,
                "requested_by": requested_by,
                "result": result.value,
            },
        )
        return result


__all__ = ["CancellationCoordinator"]
