"""Execution context handed to job handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from job_coordinator.errors import JobCancelledError
from job_coordinator.services.job_logger import JobLogger
from job_coordinator.services.job_runs import JobRunService, RunProgress


@dataclass(slots=True)
class JobContext:
    """Run identity, parameters and cooperative-cancellation hooks for a handler.

    Plain (non-async) handlers execute in a worker thread, so they use the
    identity and ``params`` fields only; the hooks below are coroutines.
    """

    run_id: int
    job_name: str
    worker_id: str
    run_service: JobRunService
    logger: JobLogger
    params: dict[str, Any] = field(default_factory=dict)

    async def cancel_requested(self) -> bool:
        return await self.run_service.is_cancel_requested(self.run_id)

    async def raise_if_cancelled(self) -> None:
        """Raise :class:`JobCancelledError` once cancellation has been requested.

        Handlers call this between units of work; nothing interrupts a handler
        that never checks.
        """

        if await self.cancel_requested():
            await self.logger.warning("Cancellation requested; stopping")
            raise JobCancelledError(self.run_id)

    async def heartbeat(self, progress: RunProgress | None = None) -> bool:
        return await self.run_service.heartbeat(
            self.run_id, self.worker_id, progress=progress
        )


__all__ = ["JobContext"]
