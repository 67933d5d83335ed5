"""Per-pool worker lease used to enforce a single active worker."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from job_coordinator.models.base import Base


class WorkerLease(Base):
    """Exclusive, expiring claim on a worker pool held by one worker instance."""

    __tablename__ = "worker_leases"
    __table_args__ = (Index("ix_worker_leases_expires_at", "expires_at"),)

    pool: Mapped[str] = mapped_column(String(64), primary_key=True)
    holder_id: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    renewed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


__all__ = ["WorkerLease"]
