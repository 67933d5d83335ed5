"""Engine, session scope and startup consistency checks for the run store."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sqlalchemy import Select, event, func, select, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from job_coordinator.config import get_settings
from job_coordinator.errors import StorageError
from job_coordinator.models import (
    TERMINAL_RUN_STATUSES,
    Base,
    JobLog,
    JobRun,
    JobRunStatus,
    WorkerInstance,
    WorkerStatus,
)

SQLITE_BUSY_TIMEOUT_SECONDS = 30

_store_logger = logging.getLogger("job_coordinator.database")


@dataclass(slots=True, frozen=True)
class StoreConsistencyReport:
    """Counts of rows that break run or worker bookkeeping rules."""

    integrity_ok: bool
    anomalies: dict[str, int] = field(default_factory=dict)

    @property
    def anomaly_count(self) -> int:
        return sum(self.anomalies.values())

    @property
    def is_consistent(self) -> bool:
        return self.integrity_ok and self.anomaly_count == 0


def is_sqlite_url(database_url: str) -> bool:
    return make_url(database_url).get_backend_name() == "sqlite"


def _prepare_sqlite_path(database_url: str) -> None:
    database = make_url(database_url).database
    if not database or database == ":memory:" or database.startswith("file:"):
        return

    path = Path(database)
    if not path.is_absolute():
        path = Path.cwd() / path
    path.parent.mkdir(parents=True, exist_ok=True)


def build_engine(database_url: str) -> AsyncEngine:
    """Create the async engine; SQLite gets WAL and a busy timeout."""

    if not is_sqlite_url(database_url):
        return create_async_engine(database_url, pool_pre_ping=True)

    _prepare_sqlite_path(database_url)
    sqlite_engine = create_async_engine(
        database_url,
        pool_pre_ping=True,
        connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
    )

    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def _enable_wal(dbapi_connection: Any, _: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    return sqlite_engine


engine = build_engine(get_settings().DATABASE_URL)
AsyncSessionFactory = async_sessionmaker(
    bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """One transaction per block: commit on exit, roll back on error.

    Operational driver failures (locked or unreachable database) surface as
    :class:`StorageError`; constraint violations propagate unchanged.
    """

    session = AsyncSessionFactory()
    try:
        yield session
        await session.commit()
    except (OperationalError, InterfaceError) as error:
        await session.rollback()
        _store_logger.warning(
            "database_unavailable",
            extra={"error_type": type(error.orig).__name__},
        )
        raise StorageError(f"{type(error.orig).__name__}: {error.orig}") from error
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def initialize_database(target: AsyncEngine | None = None) -> None:
    """Create missing tables and confirm SQLite is journaling in WAL mode."""

    if target is None:
        target = engine
    async with target.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
        if not is_sqlite_url(str(target.url)):
            return

        result = await connection.execute(text("PRAGMA journal_mode;"))
        journal_mode = result.scalar_one()
        if str(journal_mode).lower() != "wal":
            raise RuntimeError(f"SQLite journal_mode is {journal_mode}, expected wal")


def _anomaly_queries() -> dict[str, Select[tuple[int]]]:
    running_per_pool = (
        select(WorkerInstance.pool)
        .where(WorkerInstance.status == WorkerStatus.RUNNING)
        .group_by(WorkerInstance.pool)
        .having(func.count() > 1)
        .subquery()
    )
    return {
        "logs_without_run": select(func.count())
        .select_from(JobLog)
        .outerjoin(JobRun, JobRun.id == JobLog.job_run_id)
        .where(JobRun.id.is_(None)),
        "terminal_runs_without_finished_at": select(func.count())
        .select_from(JobRun)
        .where(JobRun.status.in_(TERMINAL_RUN_STATUSES), JobRun.finished_at.is_(None)),
        "running_runs_without_worker": select(func.count())
        .select_from(JobRun)
        .where(JobRun.status == JobRunStatus.RUNNING, JobRun.worker_id.is_(None)),
        "queued_runs_with_started_at": select(func.count())
        .select_from(JobRun)
        .where(
            JobRun.status == JobRunStatus.QUEUED,
            JobRun.started_at.is_not(None),
        ),
        "pools_with_multiple_running_workers": select(func.count()).select_from(
            running_per_pool
        ),
    }


async def _sqlite_integrity_ok(connection: AsyncConnection) -> bool:
    rows = (await connection.execute(text("PRAGMA integrity_check;"))).scalars().all()
    if rows == ["ok"]:
        return True
    _store_logger.error("database_integrity_check_failed", extra={"rows": rows})
    return False


async def check_store_consistency(
    target: AsyncEngine | None = None,
    *,
    fail_on_integrity_error: bool = True,
) -> StoreConsistencyReport:
    """Report rows left inconsistent by crashes or manual edits.

    Anomalies are logged, not repaired; stalled runs are the reaper's job.
    """

    if target is None:
        target = engine
    async with target.connect() as connection:
        integrity_ok = True
        if is_sqlite_url(str(target.url)):
            integrity_ok = await _sqlite_integrity_ok(connection)

        anomalies = {
            name: int((await connection.execute(query)).scalar_one())
            for name, query in _anomaly_queries().items()
        }

    report = StoreConsistencyReport(integrity_ok=integrity_ok, anomalies=anomalies)
    if report.anomaly_count:
        _store_logger.warning(
            "database_anomalies_detected",
            extra={"anomalies": anomalies, "anomaly_count": report.anomaly_count},
        )
    _store_logger.info(
        "database_consistency_check_completed",
        extra={"integrity_ok": integrity_ok, "consistent": report.is_consistent},
    )

    if fail_on_integrity_error and not integrity_ok:
        raise RuntimeError("SQLite integrity check failed; inspect the database file")
    return report


async def close_database() -> None:
    await engine.dispose()


__all__ = [
    "AsyncSessionFactory",
    "StoreConsistencyReport",
    "build_engine",
    "check_store_consistency",
    "close_database",
    "engine",
    "initialize_database",
    "is_sqlite_url",
    "session_scope",
]
