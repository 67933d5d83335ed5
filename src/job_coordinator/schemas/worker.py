"""Pydantic schemas for worker instances and the in-process worker."""

from __future__ import annotations

from datetime import datetime

from pydantic import ConfigDict

from job_coordinator.models import WorkerStatus
from job_coordinator.schemas.job_run import UtcTimestampsModel


class WorkerInstanceRead(UtcTimestampsModel):
    """Serialized worker instance."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    pool: str
    hostname: str
    pid: int
    status: WorkerStatus
    started_at: datetime
    stopped_at: datetime | None
    last_heartbeat_at: datetime
    jobs_processed: int


class WorkerStatusResponse(UtcTimestampsModel):
    """Local worker state plus pool-wide liveness."""

    pool: str
    local_running: bool
    worker_id: str | None
    current_run_id: int | None
    jobs_processed: int
    active_workers: int
    lease_holder_id: str | None
    instances: list[WorkerInstanceRead]


__all__ = ["WorkerInstanceRead", "WorkerStatusResponse"]
