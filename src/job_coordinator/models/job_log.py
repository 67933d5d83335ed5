"""Append-only structured log lines scoped to a job run."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from job_coordinator.models.base import Base, BigIntegerPrimaryKey


class JobLogLevel(str, Enum):
    """Severity of a job log line."""

    DEBUG = "debug"
    INFO = "info"
    MILESTONE = "milestone"
    WARNING = "warning"
    ERROR = "error"


class JobLog(Base):
    """One log line written while a run executes; never mutated."""

    __tablename__ = "job_logs"
    __table_args__ = (
        Index("ix_job_logs_job_run_id_created_at", "job_run_id", "created_at"),
        Index("ix_job_logs_level", "level"),
    )

    id: Mapped[int] = mapped_column(
        BigIntegerPrimaryKey, primary_key=True, autoincrement=True
    )
    job_run_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("job_runs.id"),
        nullable=False,
    )
    level: Mapped[JobLogLevel] = mapped_column(
        SqlEnum(
            JobLogLevel,
            name="job_log_level",
            values_callable=lambda levels: [level.value for level in levels],
        ),
        nullable=False,
    )
    stage: Mapped[str | None] = mapped_column(String(191))
    message: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


__all__ = ["JobLog", "JobLogLevel"]
