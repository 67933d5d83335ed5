"""Job run ORM model tracking one execution attempt of a named job."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    DateTime,
    Enum as SqlEnum,
    Index,
    Integer,
    JSON,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from job_coordinator.models.base import Base, BigIntegerPrimaryKey
from job_coordinator.utils.clock import elapsed_ms


class JobRunStatus(str, Enum):
    """Lifecycle state of a job run."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    SUCCEEDED = "SUCCEEDED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_RUN_STATUSES


TERMINAL_RUN_STATUSES = frozenset(
    {JobRunStatus.CANCELLED, JobRunStatus.FAILED, JobRunStatus.SUCCEEDED}
)
ACTIVE_RUN_STATUSES = frozenset({JobRunStatus.QUEUED, JobRunStatus.RUNNING})


class JobTrigger(str, Enum):
    """What caused a run to be enqueued."""

    MANUAL = "MANUAL"
    SCHEDULED = "SCHEDULED"
    SYSTEM = "SYSTEM"


class JobRun(Base):
    """One attempt to execute a registered job."""

    __tablename__ = "job_runs"
    __table_args__ = (
        Index("ix_job_runs_status_queued_at", "status", "queued_at"),
        Index("ix_job_runs_status_last_heartbeat_at", "status", "last_heartbeat_at"),
        Index("ix_job_runs_job_name_status", "job_name", "status"),
        Index("ix_job_runs_job_name_queued_at", "job_name", "queued_at"),
        Index("ix_job_runs_schedule_id", "schedule_id"),
    )

    id: Mapped[int] = mapped_column(
        BigIntegerPrimaryKey, primary_key=True, autoincrement=True
    )
    job_name: Mapped[str] = mapped_column(String(191), nullable=False)
    trigger: Mapped[JobTrigger] = mapped_column(
        SqlEnum(JobTrigger, name="job_trigger"),
        nullable=False,
        default=JobTrigger.MANUAL,
    )
    scope: Mapped[str | None] = mapped_column(String(191))
    algorithm_version: Mapped[str | None] = mapped_column(String(64))
    attempt: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default=text("1")
    )
    schedule_id: Mapped[str | None] = mapped_column(String(64))
    status: Mapped[JobRunStatus] = mapped_column(
        SqlEnum(JobRunStatus, name="job_run_status"),
        nullable=False,
        default=JobRunStatus.QUEUED,
        server_default=JobRunStatus.QUEUED.value,
    )
    queued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_ms: Mapped[int | None] = mapped_column(Integer)
    worker_id: Mapped[str | None] = mapped_column(String(64))
    last_heartbeat_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    cancel_requested_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    cancel_requested_by: Mapped[str | None] = mapped_column(String(191))
    current_stage: Mapped[str | None] = mapped_column(String(191))
    progress_current: Mapped[int | None] = mapped_column(Integer)
    progress_total: Mapped[int | None] = mapped_column(Integer)
    progress_percent: Mapped[int | None] = mapped_column(Integer)
    progress_message: Mapped[str | None] = mapped_column(String(512))
    entities_processed: Mapped[int | None] = mapped_column(Integer)
    entities_total: Mapped[int | None] = mapped_column(Integer)
    outcome_summary: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    error: Mapped[str | None] = mapped_column(Text)
    triggered_by: Mapped[str | None] = mapped_column(String(191))
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)

    @property
    def is_terminal(self) -> bool:
        return JobRunStatus(self.status).is_terminal

    @property
    def queue_delay_ms(self) -> int | None:
        """Time spent queued, up to claim or to cancellation before claim."""

        return elapsed_ms(self.queued_at, self.started_at or self.finished_at)

    @property
    def params(self) -> dict[str, Any]:
        return dict(self.metadata_json or {})


__all__ = [
    "ACTIVE_RUN_STATUSES",
    "JobRun",
    "JobRunStatus",
    "JobTrigger",
    "TERMINAL_RUN_STATUSES",
]
