"""Worker process ORM model used for liveness queries."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SqlEnum, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from job_coordinator.models.base import Base


class WorkerStatus(str, Enum):
    """Lifecycle state of a worker process."""

    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


class WorkerInstance(Base):
    """One live or historical worker process within a named pool."""

    __tablename__ = "worker_instances"
    __table_args__ = (
        Index(
            "ix_worker_instances_pool_status_heartbeat",
            "pool",
            "status",
            "last_heartbeat_at",
        ),
        Index("ix_worker_instances_pool_started_at", "pool", "started_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    pool: Mapped[str] = mapped_column(String(64), nullable=False)
    hostname: Mapped[str] = mapped_column(String(255), nullable=False)
    pid: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[WorkerStatus] = mapped_column(
        SqlEnum(WorkerStatus, name="worker_status"),
        nullable=False,
        default=WorkerStatus.RUNNING,
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    stopped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_heartbeat_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    jobs_processed: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )


__all__ = ["WorkerInstance", "WorkerStatus"]
