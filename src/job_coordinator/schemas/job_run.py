"""Pydantic schemas for job runs, job logs and enqueue requests."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from job_coordinator.models import JobLogLevel, JobRunStatus, JobTrigger
from job_coordinator.utils.clock import ensure_utc


class UtcTimestampsModel(BaseModel):
    """Attach UTC to naive datetimes read back from SQLite."""

    @field_validator("*", mode="after")
    @classmethod
    def normalize_datetimes(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value


class JobRunRead(UtcTimestampsModel):
    """Serialized job run."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    job_name: str
    trigger: JobTrigger
    scope: str | None
    algorithm_version: str | None
    attempt: int
    schedule_id: str | None
    status: JobRunStatus
    queued_at: datetime
    started_at: datetime | None
    finished_at: datetime | None
    duration_ms: int | None
    queue_delay_ms: int | None
    worker_id: str | None
    last_heartbeat_at: datetime | None
    cancel_requested_at: datetime | None
    cancel_requested_by: str | None
    current_stage: str | None
    progress_current: int | None
    progress_total: int | None
    progress_percent: int | None
    progress_message: str | None
    entities_processed: int | None
    entities_total: int | None
    outcome_summary: dict[str, Any] | None
    error: str | None
    triggered_by: str | None
    params: dict[str, Any]


class JobRunPageResponse(BaseModel):
    """Paginated job run listing."""

    page: int
    page_size: int
    total_items: int
    total_pages: int
    items: list[JobRunRead]


class JobRunStatsResponse(BaseModel):
    """Aggregate run counters."""

    by_status: dict[str, int]
    total: int
    active: int
    last_24h: int


class JobLogRead(UtcTimestampsModel):
    """Serialized job log line."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    job_run_id: int
    level: JobLogLevel
    stage: str | None
    message: str
    context: dict[str, Any] | None
    created_at: datetime


class EnqueueRequest(BaseModel):
    """Optional body for enqueue endpoints."""

    # Validated by the run service so non-object params map to a domain error.
    params: Any = None
    triggered_by: str | None = Field(default=None, max_length=191)


class EnqueueResponse(BaseModel):
    """Accepted enqueue request."""

    status: Literal["accepted"] = "accepted"
    run_ids: list[int]


class CancelRequest(BaseModel):
    """Optional body for cancellation requests."""

    requested_by: str = Field(default="admin", min_length=1, max_length=191)


class CancelResponse(BaseModel):
    """Outcome of a cancellation request."""

    run_id: int
    status: Literal["cancelled", "cancellation_requested"]


class CleanupStalledResponse(BaseModel):
    """Runs failed by an on-demand stalled-run sweep."""

    reaped: int
    run_ids: list[int]
    threshold_ms: int


__all__ = [
    "CancelRequest",
    "CancelResponse",
    "CleanupStalledResponse",
    "EnqueueRequest",
    "EnqueueResponse",
    "JobLogRead",
    "JobRunPageResponse",
    "JobRunRead",
    "JobRunStatsResponse",
    "UtcTimestampsModel",
]
