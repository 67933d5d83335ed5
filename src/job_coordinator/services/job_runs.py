"""Job run lifecycle state machine backed by guarded conditional updates.

Every transition is an ``UPDATE ... WHERE status = <expected>``. When two
actors race for the same transition exactly one update matches a row; the
loser sees ``rowcount == 0`` and reports a no-op instead of overwriting.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, fields
from datetime import timedelta
from enum import Enum
from typing import Any, Literal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from job_coordinator.errors import (
    InvalidParametersError,
    InvalidRunStateError,
    RunNotFoundError,
)
from job_coordinator.jobs.registry import JobRegistry
from job_coordinator.models import (
    ACTIVE_RUN_STATUSES,
    JobRun,
    JobRunStatus,
    JobTrigger,
)
from job_coordinator.utils.clock import NowFactory, elapsed_ms, utc_now

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

DEFAULT_CLAIM_BATCH_SIZE = 50
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
STATS_WINDOW = timedelta(hours=24)

SORTABLE_RUN_COLUMNS: dict[str, Any] = {
    "id": JobRun.id,
    "job_name": JobRun.job_name,
    "status": JobRun.status,
    "queued_at": JobRun.queued_at,
    "started_at": JobRun.started_at,
    "finished_at": JobRun.finished_at,
    "duration_ms": JobRun.duration_ms,
}

_run_logger = logging.getLogger("job_coordinator.runs")


class CancelResult(str, Enum):
    """Outcome of a cancellation request."""

    CANCELLED = "cancelled"
    CANCELLATION_REQUESTED = "cancellation_requested"


@dataclass(slots=True, frozen=True)
class RunProgress:
    """Advisory progress fields written alongside a run heartbeat."""

    current_stage: str | None = None
    progress_current: int | None = None
    progress_total: int | None = None
    progress_percent: int | None = None
    progress_message: str | None = None
    entities_processed: int | None = None
    entities_total: int | None = None

    def as_values(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for progress_field in fields(self):
            value = getattr(self, progress_field.name)
            if value is not None:
                values[progress_field.name] = value
        return values


@dataclass(slots=True, frozen=True)
class RunOutcome:
    """Terminal status plus summary or error recorded by ``finish``."""

    status: JobRunStatus
    summary: dict[str, Any] | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if not JobRunStatus(self.status).is_terminal:
            raise ValueError(f"Outcome status must be terminal, got {self.status}")

    @classmethod
    def succeeded(cls, summary: dict[str, Any] | None = None) -> RunOutcome:
        return cls(status=JobRunStatus.SUCCEEDED, summary=summary)

    @classmethod
    def failed(cls, error: str, summary: dict[str, Any] | None = None) -> RunOutcome:
        return cls(status=JobRunStatus.FAILED, summary=summary, error=error)

    @classmethod
    def cancelled(
        cls, reason: str | None = None, summary: dict[str, Any] | None = None
    ) -> RunOutcome:
        payload = dict(summary or {})
        if reason is not None:
            payload["cancel_reason"] = reason
        return cls(status=JobRunStatus.CANCELLED, summary=payload or None)


@dataclass(slots=True, frozen=True)
class NewRun:
    """Request to create one queued run."""

    job_name: str
    params: object = None
    trigger: JobTrigger = JobTrigger.MANUAL
    scope: str | None = None
    triggered_by: str | None = None
    algorithm_version: str | None = None
    schedule_id: str | None = None


@dataclass(slots=True, frozen=True)
class RunPage:
    """One page of runs for list endpoints."""

    page: int
    page_size: int
    total_items: int
    total_pages: int
    items: list[JobRun]


@dataclass(slots=True, frozen=True)
class RunStats:
    """Aggregate run counters."""

    by_status: dict[str, int]
    total: int
    last_24h: int

    @property
    def active(self) -> int:
        return self.by_status.get(JobRunStatus.QUEUED.value, 0) + self.by_status.get(
            JobRunStatus.RUNNING.value, 0
        )


def validate_params(params: object) -> dict[str, Any]:
    """Return ``params`` as a plain dict or raise :class:`InvalidParametersError`."""

    if params is None:
        return {}
    if not isinstance(params, Mapping):
        raise InvalidParametersError(
            "params", f"must be a JSON object, got {type(params).__name__}"
        )
    for key in params:
        if not isinstance(key, str):
            raise InvalidParametersError(f"params[{key!r}]", "keys must be strings")
    try:
        json.dumps(params)
    except (TypeError, ValueError) as error:
        raise InvalidParametersError(
            "params", f"values must be JSON serializable ({error})"
        ) from error
    return dict(params)


class JobRunService:
    """Create, claim, heartbeat, finish and cancel job runs."""

    def __init__(
        self,
        *,
        registry: JobRegistry,
        session_factory: SessionScopeFactory | None = None,
        now_factory: NowFactory | None = None,
        claim_batch_size: int = DEFAULT_CLAIM_BATCH_SIZE,
    ) -> None:
        if claim_batch_size <= 0:
            raise ValueError("claim_batch_size must be greater than zero")

        if session_factory is None:
            from job_coordinator.database import session_scope

            session_factory = session_scope

        self._registry = registry
        self._session_factory = session_factory
        self._now_factory = now_factory or utc_now
        self._claim_batch_size = claim_batch_size

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    async def create(
        self,
        job_name: str,
        *,
        trigger: JobTrigger = JobTrigger.MANUAL,
        scope: str | None = None,
        params: object = None,
        triggered_by: str | None = None,
        algorithm_version: str | None = None,
        schedule_id: str | None = None,
    ) -> int:
        """Insert a ``QUEUED`` run and return its id."""

        run_ids = await self.create_many(
            [
                NewRun(
                    job_name=job_name,
                    params=params,
                    trigger=trigger,
                    scope=scope,
                    triggered_by=triggered_by,
                    algorithm_version=algorithm_version,
                    schedule_id=schedule_id,
                )
            ]
        )
        return run_ids[0]

    async def create_many(self, requests: Sequence[NewRun]) -> list[int]:
        """Insert several runs in one transaction, preserving request order."""

        now = self._now_factory()
        runs = [self._build_run(request, now) for request in requests]
        if not runs:
            return []

        async with self._session_factory() as session:
            session.add_all(runs)
            await session.flush()
            run_ids = [run.id for run in runs]

        _run_logger.info(
            "job_runs_created",
            extra={
                "run_ids": run_ids,
                "job_names": [run.job_name for run in runs],
                "trigger": runs[0].trigger.value,
            },
        )
        return run_ids

    async def claim(
        self,
        worker_id: str,
        *,
        require_dependencies: bool = False,
    ) -> JobRun | None:
        """Move the oldest eligible ``QUEUED`` run to ``RUNNING`` for ``worker_id``.

        Cancel-requested runs are never eligible. With ``require_dependencies``
        a run is skipped until each declared dependency has a ``SUCCEEDED`` run.
        """

        now = self._now_factory()
        async with self._session_factory() as session:
            candidates = (
                await session.execute(
                    select(JobRun.id, JobRun.job_name)
                    .where(
                        JobRun.status == JobRunStatus.QUEUED,
                        JobRun.cancel_requested_at.is_(None),
                    )
                    .order_by(JobRun.queued_at.asc(), JobRun.id.asc())
                    .limit(self._claim_batch_size)
                )
            ).all()

            for run_id, job_name in candidates:
                if require_dependencies and not await self._dependencies_satisfied(
                    session, job_name
                ):
                    continue

                result = await session.execute(
                    update(JobRun)
                    .where(
                        JobRun.id == run_id,
                        JobRun.status == JobRunStatus.QUEUED,
                        JobRun.cancel_requested_at.is_(None),
                    )
                    .values(
                        status=JobRunStatus.RUNNING,
                        started_at=now,
                        last_heartbeat_at=now,
                        worker_id=worker_id,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    _run_logger.debug(
                        "job_run_claim_race_lost",
                        extra={"run_id": run_id, "worker_id": worker_id},
                    )
                    continue

                claimed = await session.get(
                    JobRun, run_id, populate_existing=True
                )
                _run_logger.info(
                    "job_run_claimed",
                    extra={
                        "run_id": run_id,
                        "job_name": job_name,
                        "worker_id": worker_id,
                    },
                )
                return claimed

        return None

    async def heartbeat(
        self,
        run_id: int,
        worker_id: str,
        *,
        progress: RunProgress | None = None,
    ) -> bool:
        """Refresh liveness and progress if ``worker_id`` still owns a running run."""

        values: dict[str, Any] = {"last_heartbeat_at": self._now_factory()}
        if progress is not None:
            values.update(progress.as_values())

        async with self._session_factory() as session:
            result = await session.execute(
                update(JobRun)
                .where(
                    JobRun.id == run_id,
                    JobRun.status == JobRunStatus.RUNNING,
                    JobRun.worker_id == worker_id,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )

        applied = result.rowcount == 1
        if not applied:
            _run_logger.debug(
                "job_run_heartbeat_ignored",
                extra={"run_id": run_id, "worker_id": worker_id},
            )
        return applied

    async def finish(
        self,
        run_id: int,
        outcome: RunOutcome,
        *,
        worker_id: str | None = None,
    ) -> bool:
        """Record a terminal outcome for a running run.

        Returns ``False`` without changing anything when the run is already
        terminal, including when it was reaped or cancelled concurrently.
        """

        async with self._session_factory() as session:
            row = (
                await session.execute(
                    select(JobRun.status, JobRun.started_at).where(JobRun.id == run_id)
                )
            ).one_or_none()
            if row is None:
                raise RunNotFoundError(run_id)

            current_status = JobRunStatus(row.status)
            if current_status.is_terminal:
                _run_logger.info(
                    "job_run_finish_ignored",
                    extra={"run_id": run_id, "status": current_status.value},
                )
                return False
            if current_status == JobRunStatus.QUEUED:
                raise InvalidRunStateError(run_id, current_status.value, "finish")

            finished_at = self._now_factory()
            statement = update(JobRun).where(
                JobRun.id == run_id,
                JobRun.status == JobRunStatus.RUNNING,
            )
            if worker_id is not None:
                statement = statement.where(JobRun.worker_id == worker_id)

            result = await session.execute(
                statement.values(
                    status=outcome.status,
                    finished_at=finished_at,
                    duration_ms=elapsed_ms(row.started_at, finished_at),
                    outcome_summary=outcome.summary,
                    error=outcome.error,
                ).execution_options(synchronize_session=False)
            )

        applied = result.rowcount == 1
        _run_logger.info(
            "job_run_finished" if applied else "job_run_finish_ignored",
            extra={
                "run_id": run_id,
                "status": JobRunStatus(outcome.status).value,
                "worker_id": worker_id,
            },
        )
        return applied

    async def request_cancel(self, run_id: int, requested_by: str) -> CancelResult:
        """Cancel a queued run outright or flag a running one for cooperative stop."""

        now = self._now_factory()
        async with self._session_factory() as session:
            current_status = await self._require_status(session, run_id)
            if current_status.is_terminal:
                raise InvalidRunStateError(run_id, current_status.value, "cancel")

            if current_status == JobRunStatus.QUEUED:
                reason = f"cancelled by {requested_by} before start"
                result = await session.execute(
                    update(JobRun)
                    .where(
                        JobRun.id == run_id,
                        JobRun.status == JobRunStatus.QUEUED,
                    )
                    .values(
                        status=JobRunStatus.CANCELLED,
                        finished_at=now,
                        cancel_requested_at=now,
                        cancel_requested_by=requested_by,
                        outcome_summary={"cancel_reason": reason},
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    _run_logger.info(
                        "job_run_cancelled",
                        extra={"run_id": run_id, "requested_by": requested_by},
                    )
                    return CancelResult.CANCELLED

            result = await session.execute(
                update(JobRun)
                .where(
                    JobRun.id == run_id,
                    JobRun.status == JobRunStatus.RUNNING,
                    JobRun.cancel_requested_at.is_(None),
                )
                .values(cancel_requested_at=now, cancel_requested_by=requested_by)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                _run_logger.info(
                    "job_run_cancellation_requested",
                    extra={"run_id": run_id, "requested_by": requested_by},
                )
                return CancelResult.CANCELLATION_REQUESTED

            latest_status = await self._require_status(session, run_id)

        if latest_status == JobRunStatus.RUNNING:
            return CancelResult.CANCELLATION_REQUESTED
        raise InvalidRunStateError(run_id, latest_status.value, "cancel")

    async def is_cancel_requested(self, run_id: int) -> bool:
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    select(JobRun.cancel_requested_at).where(JobRun.id == run_id)
                )
            ).one_or_none()
        if row is None:
            raise RunNotFoundError(run_id)
        return row.cancel_requested_at is not None

    async def get_run(self, run_id: int) -> JobRun:
        async with self._session_factory() as session:
            run = await session.get(JobRun, run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def list_runs(
        self,
        *,
        job_name: str | None = None,
        status: JobRunStatus | None = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        sort_by: str = "queued_at",
        sort_order: Literal["asc", "desc"] = "desc",
    ) -> RunPage:
        sort_column = SORTABLE_RUN_COLUMNS.get(sort_by)
        if sort_column is None:
            raise InvalidParametersError(
                "sort_by", f"must be one of {', '.join(sorted(SORTABLE_RUN_COLUMNS))}"
            )
        if sort_order not in ("asc", "desc"):
            raise InvalidParametersError("sort_order", "must be 'asc' or 'desc'")

        safe_page = max(page, 1)
        safe_page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

        statement = select(JobRun)
        if job_name:
            statement = statement.where(JobRun.job_name == job_name.strip())
        if status is not None:
            statement = statement.where(JobRun.status == status)

        async with self._session_factory() as session:
            total_items = int(
                (
                    await session.scalar(
                        select(func.count()).select_from(statement.subquery())
                    )
                )
                or 0
            )
            total_pages = max(1, ((total_items - 1) // safe_page_size) + 1)
            bounded_page = min(safe_page, total_pages)

            ordering = sort_column.asc() if sort_order == "asc" else sort_column.desc()
            rows = (
                await session.scalars(
                    statement.order_by(ordering, JobRun.id.desc())
                    .offset((bounded_page - 1) * safe_page_size)
                    .limit(safe_page_size)
                )
            ).all()

        return RunPage(
            page=bounded_page,
            page_size=safe_page_size,
            total_items=total_items,
            total_pages=total_pages,
            items=list(rows),
        )

    async def list_active_runs(self) -> list[JobRun]:
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(JobRun)
                .where(JobRun.status.in_(ACTIVE_RUN_STATUSES))
                .order_by(JobRun.queued_at.asc(), JobRun.id.asc())
            )
            return list(rows.all())

    async def stats(self) -> RunStats:
        since = self._now_factory() - STATS_WINDOW
        async with self._session_factory() as session:
            status_rows = (
                await session.execute(
                    select(JobRun.status, func.count(JobRun.id)).group_by(
                        JobRun.status
                    )
                )
            ).all()
            last_24h = int(
                (
                    await session.scalar(
                        select(func.count(JobRun.id)).where(JobRun.queued_at >= since)
                    )
                )
                or 0
            )

        by_status = {status.value: 0 for status in JobRunStatus}
        for status, count in status_rows:
            by_status[JobRunStatus(status).value] = int(count)

        return RunStats(
            by_status=by_status,
            total=sum(by_status.values()),
            last_24h=last_24h,
        )

    def _build_run(self, request: NewRun, now: Any) -> JobRun:
        definition = self._registry.require(request.job_name)
        params = validate_params(request.params)
        return JobRun(
            job_name=definition.name,
            trigger=request.trigger,
            scope=request.scope,
            algorithm_version=request.algorithm_version,
            schedule_id=request.schedule_id,
            status=JobRunStatus.QUEUED,
            queued_at=now,
            triggered_by=request.triggered_by,
            metadata_json={**definition.default_params, **params},
        )

    async def _dependencies_satisfied(
        self, session: AsyncSession, job_name: str
    ) -> bool:
        definition = self._registry.get(job_name)
        if definition is None or not definition.dependencies:
            return True

        succeeded = set(
            (
                await session.scalars(
                    select(JobRun.job_name)
                    .where(
                        JobRun.job_name.in_(definition.dependencies),
                        JobRun.status == JobRunStatus.SUCCEEDED,
                    )
                    .distinct()
                )
            ).all()
        )
        return all(dependency in succeeded for dependency in definition.dependencies)

    @staticmethod
    async def _require_status(session: AsyncSession, run_id: int) -> JobRunStatus:
        status = await session.scalar(select(JobRun.status).where(JobRun.id == run_id))
        if status is None:
            raise RunNotFoundError(run_id)
        return JobRunStatus(status)


__all__ = [
    "CancelResult",
    "JobRunService",
    "NewRun",
    "RunOutcome",
    "RunPage",
    "RunProgress",
    "RunStats",
    "validate_params",
]
