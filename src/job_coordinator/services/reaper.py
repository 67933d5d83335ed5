"""Fail running jobs whose worker stopped heartbeating."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from job_coordinator.models import JobLogLevel, JobRun, JobRunStatus
from job_coordinator.services.job_logger import JobLogService
from job_coordinator.utils.clock import NowFactory, elapsed_ms, ms_before, utc_now

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

DEFAULT_STALLED_THRESHOLD_MS = 300_000
STALLED_RUN_ERROR = "stalled: worker not running or crashed"

_reaper_logger = logging.getLogger("job_coordinator.reaper")


@dataclass(slots=True, frozen=True)
class SweepResult:
    """Runs moved to ``FAILED`` by one sweep."""

    reaped_run_ids: tuple[int, ...]
    threshold_ms: int

    @property
    def reaped_count(self) -> int:
        return len(self.reaped_run_ids)


class StalledRunReaper:
    """Detect and fail ``RUNNING`` runs with stale or missing heartbeats."""

    def __init__(
        self,
        *,
        session_factory: SessionScopeFactory | None = None,
        now_factory: NowFactory | None = None,
        log_service: JobLogService | None = None,
    ) -> None:
        if session_factory is None:
            from job_coordinator.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory
        self._now_factory = now_factory or utc_now
        self._log_service = log_service or JobLogService(
            session_factory=session_factory, now_factory=self._now_factory
        )

    async def sweep(
        self, threshold_ms: int = DEFAULT_STALLED_THRESHOLD_MS
    ) -> SweepResult:
        """Fail every run whose last heartbeat is older than ``threshold_ms``.

        Each row is re-checked in its own guarded update, so a heartbeat that
        lands between the scan and the update keeps the run alive.
        """

        if threshold_ms <= 0:
            raise ValueError("threshold_ms must be greater than zero")

        now = self._now_factory()
        cutoff = ms_before(now, threshold_ms)
        is_stale = or_(
            JobRun.last_heartbeat_at.is_(None),
            JobRun.last_heartbeat_at < cutoff,
        )

        reaped: list[int] = []
        async with self._session_factory() as session:
            candidates = (
                await session.execute(
                    select(JobRun.id, JobRun.job_name, JobRun.started_at)
                    .where(JobRun.status == JobRunStatus.RUNNING, is_stale)
                    .order_by(JobRun.id.asc())
                )
            ).all()

            for run_id, job_name, started_at in candidates:
                result = await session.execute(
                    update(JobRun)
                    .where(
                        JobRun.id == run_id,
                        JobRun.status == JobRunStatus.RUNNING,
                        is_stale,
                    )
                    .values(
                        status=JobRunStatus.FAILED,
                        finished_at=now,
                        duration_ms=elapsed_ms(started_at, now),
                        error=STALLED_RUN_ERROR,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    continue

                await self._log_service.append(
                    session=session,
                    job_run_id=run_id,
                    level=JobLogLevel.ERROR,
                    message=STALLED_RUN_ERROR,
                    stage="reaper",
                    context={"threshold_ms": threshold_ms},
                    created_at=now,
                )
                reaped.append(run_id)
                _reaper_logger.warning(
                    "stalled_job_run_reaped",
                    extra={"run_id": run_id, "job_name": job_name},
                )

        if reaped:
            _reaper_logger.info(
                "stalled_run_sweep_completed",
                extra={"reaped_count": len(reaped), "threshold_ms": threshold_ms},
            )
        return SweepResult(reaped_run_ids=tuple(reaped), threshold_ms=threshold_ms)

    async def handle_startup_sweep(
        self, threshold_ms: int = DEFAULT_STALLED_THRESHOLD_MS
    ) -> SweepResult:
        """Sweep once at boot so runs orphaned by a previous crash are closed."""

        result = await self.sweep(threshold_ms)
        if result.reaped_count:
            _reaper_logger.warning(
                "startup_stalled_runs_detected",
                extra={
                    "count": result.reaped_count,
                    "run_ids": list(result.reaped_run_ids),
                },
            )
        else:
            _reaper_logger.info("startup_stalled_runs_not_found")
        return result


__all__ = [
    "DEFAULT_STALLED_THRESHOLD_MS",
    "STALLED_RUN_ERROR",
    "StalledRunReaper",
    "SweepResult",
]
