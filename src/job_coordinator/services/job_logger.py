"""Append-only job log writer and per-run progress logger."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from job_coordinator.models import JobLog, JobLogLevel, JobRun
from job_coordinator.services.job_runs import JobRunService, RunProgress
from job_coordinator.utils.clock import NowFactory, utc_now

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

DEFAULT_LOG_PAGE_SIZE = 200
MAX_LOG_PAGE_SIZE = 1000
PROGRESS_BROADCAST_EVERY = 100

_job_log_logger = logging.getLogger("job_coordinator.jobs.log")


class JobLogService:
    """Persist and read job log lines."""

    def __init__(
        self,
        *,
        session_factory: SessionScopeFactory | None = None,
        now_factory: NowFactory | None = None,
    ) -> None:
        if session_factory is None:
            from job_coordinator.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory
        self._now_factory = now_factory or utc_now

    async def append(
        self,
        *,
        session: AsyncSession,
        job_run_id: int,
        level: JobLogLevel,
        message: str,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> JobLog:
        """Add a log line inside the caller's transaction."""

        entry = JobLog(
            job_run_id=job_run_id,
            level=level,
            stage=stage,
            message=message,
            context=context,
            created_at=created_at or self._now_factory(),
        )
        session.add(entry)
        await session.flush()
        return entry

    async def write(
        self,
        job_run_id: int,
        level: JobLogLevel,
        message: str,
        *,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> JobLog:
        async with self._session_factory() as session:
            return await self.append(
                session=session,
                job_run_id=job_run_id,
                level=level,
                message=message,
                stage=stage,
                context=context,
            )

    async def list_logs(
        self,
        job_run_id: int,
        *,
        level: JobLogLevel | None = None,
        limit: int = DEFAULT_LOG_PAGE_SIZE,
    ) -> list[JobLog]:
        safe_limit = min(max(limit, 1), MAX_LOG_PAGE_SIZE)
        statement = select(JobLog).where(JobLog.job_run_id == job_run_id)
        if level is not None:
            statement = statement.where(JobLog.level == level)

        async with self._session_factory() as session:
            rows = await session.scalars(
                statement.order_by(JobLog.created_at.asc(), JobLog.id.asc()).limit(
                    safe_limit
                )
            )
            return list(rows.all())

    async def run_exists(self, job_run_id: int) -> bool:
        async with self._session_factory() as session:
            return await session.get(JobRun, job_run_id) is not None


class JobLogger:
    """Structured logging and progress tracking for one executing run.

    Progress goes through the owner-guarded run heartbeat, so a logger whose
    run was reaped or finished elsewhere stops writing progress silently.
    Log lines are always appended.
    """

    def __init__(
        self,
        *,
        job_run_id: int,
        job_name: str,
        worker_id: str,
        run_service: JobRunService,
        log_service: JobLogService,
        now_factory: NowFactory | None = None,
    ) -> None:
        self.job_run_id = job_run_id
        self.job_name = job_name
        self.worker_id = worker_id
        self._run_service = run_service
        self._log_service = log_service
        self._now_factory = now_factory or utc_now
        self._started_at = self._now_factory()
        self.current_stage: str | None = None
        self.progress_current = 0
        self.progress_total: int | None = None
        self.outcome_summary: dict[str, int] = {}

    @property
    def progress_percent(self) -> int | None:
        if not self.progress_total:
            return None
        return min(100, (self.progress_current * 100) // self.progress_total)

    async def set_stage(self, stage: str, message: str | None = None) -> None:
        self.current_stage = stage
        await self._run_service.heartbeat(
            self.job_run_id,
            self.worker_id,
            progress=RunProgress(
                current_stage=stage,
                progress_message=self.format_progress_message(),
            ),
        )
        await self.milestone(message or f"Starting: {stage}", {"stage": stage})

    async def set_total(self, total: int, entity_type: str | None = None) -> None:
        self.progress_total = total
        await self._run_service.heartbeat(
            self.job_run_id,
            self.worker_id,
            progress=RunProgress(progress_total=total, entities_total=total),
        )
        await self.info(
            f"Will process {total:,} {entity_type or 'entities'}",
            {"total": total, "entity_type": entity_type},
        )

    async def increment_progress(
        self, count: int = 1, message: str | None = None
    ) -> None:
        self.progress_current += count
        await self._write_progress(message)

    async def set_progress(self, current: int, message: str | None = None) -> None:
        self.progress_current = current
        await self._write_progress(message)

    def add_outcome(self, key: str, count: int) -> None:
        self.outcome_summary[key] = self.outcome_summary.get(key, 0) + count

    async def debug(self, message: str, context: dict[str, Any] | None = None) -> None:
        await self._log(JobLogLevel.DEBUG, message, context)

    async def info(self, message: str, context: dict[str, Any] | None = None) -> None:
        await self._log(JobLogLevel.INFO, message, context)

    async def milestone(
        self, message: str, context: dict[str, Any] | None = None
    ) -> None:
        await self._log(JobLogLevel.MILESTONE, message, context)

    async def warning(
        self, message: str, context: dict[str, Any] | None = None
    ) -> None:
        self.add_outcome("warnings", 1)
        await self._log(JobLogLevel.WARNING, message, context)

    async def error(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.add_outcome("errors", 1)
        await self._log(JobLogLevel.ERROR, message, context)

    def elapsed_ms(self) -> int:
        return max(
            0, int((self._now_factory() - self._started_at).total_seconds() * 1000)
        )

    def format_progress_message(self) -> str:
        if not self.current_stage:
            return "Processing..."
        if self.progress_total:
            return (
                f"{self.current_stage} "
                f"({self.progress_current:,} / {self.progress_total:,})"
            )
        return f"{self.current_stage} ({self.progress_current:,} processed)"

    def summary(self) -> dict[str, Any]:
        return {
            **self.outcome_summary,
            "processed": self.progress_current,
            "elapsed_ms": self.elapsed_ms(),
        }

    async def log_summary(self) -> dict[str, Any]:
        """Write the closing milestone and return the outcome summary."""

        elapsed = self.elapsed_ms()
        parts = [
            f"Completed in {format_duration(elapsed)}",
            f"Processed: {self.progress_current:,} entities",
        ]
        for key in ("updates", "inserts", "deletes", "skipped", "errors", "warnings"):
            value = self.outcome_summary.get(key)
            if value:
                parts.append(f"{key.capitalize()}: {value:,}")

        await self.milestone(
            " | ".join(parts),
            {
                "summary": dict(self.outcome_summary),
                "elapsed_ms": elapsed,
                "processed": self.progress_current,
            },
        )
        return self.summary()

    async def _write_progress(self, message: str | None) -> None:
        await self._run_service.heartbeat(
            self.job_run_id,
            self.worker_id,
            progress=RunProgress(
                progress_current=self.progress_current,
                progress_percent=self.progress_percent,
                progress_message=message or self.format_progress_message(),
                entities_processed=self.progress_current,
            ),
        )
        if self.progress_current % PROGRESS_BROADCAST_EVERY == 0:
            _job_log_logger.debug(
                "job_progress",
                extra={
                    "run_id": self.job_run_id,
                    "job_name": self.job_name,
                    "progress_current": self.progress_current,
                    "progress_percent": self.progress_percent,
                },
            )

    async def _log(
        self,
        level: JobLogLevel,
        message: str,
        context: dict[str, Any] | None,
    ) -> None:
        await self._log_service.write(
            self.job_run_id,
            level,
            message,
            stage=self.current_stage,
            context=context,
        )


def format_duration(milliseconds: int) -> str:
    seconds = milliseconds // 1000
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h {minutes % 60}m {seconds % 60}s"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


__all__ = ["JobLogService", "JobLogger", "format_duration"]
