"""Create job run and job log tables.

Revision ID: 0001_job_runs_and_logs
Revises:
Create Date: 2026-10-12 09:00:00

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

revision: str = "0001_job_runs_and_logs"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_RUN_STATUSES = ("QUEUED", "RUNNING", "CANCELLED", "FAILED", "SUCCEEDED")
_TRIGGERS = ("MANUAL", "SCHEDULED", "SYSTEM")
_LOG_LEVELS = ("debug", "info", "milestone", "warning", "error")

_id_type = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "job_runs",
        sa.Column("id", _id_type, primary_key=True, autoincrement=True),
        sa.Column("job_name", sa.String(length=191), nullable=False),
        sa.Column(
            "trigger",
            sa.Enum(*_TRIGGERS, name="job_trigger"),
            nullable=False,
        ),
        sa.Column("scope", sa.String(length=191), nullable=True),
        sa.Column("algorithm_version", sa.String(length=64), nullable=True),
        sa.Column(
            "attempt", sa.Integer(), nullable=False, server_default=sa.text("1")
        ),
        sa.Column("schedule_id", sa.String(length=64), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*_RUN_STATUSES, name="job_run_status"),
            nullable=False,
            server_default="QUEUED",
        ),
        sa.Column("queued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("worker_id", sa.String(length=64), nullable=True),
        sa.Column("last_heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_requested_by", sa.String(length=191), nullable=True),
        sa.Column("current_stage", sa.String(length=191), nullable=True),
        sa.Column("progress_current", sa.Integer(), nullable=True),
        sa.Column("progress_total", sa.Integer(), nullable=True),
        sa.Column("progress_percent", sa.Integer(), nullable=True),
        sa.Column("progress_message", sa.String(length=512), nullable=True),
        sa.Column("entities_processed", sa.Integer(), nullable=True),
        sa.Column("entities_total", sa.Integer(), nullable=True),
        sa.Column("outcome_summary", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("triggered_by", sa.String(length=191), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
    )
    op.create_index(
        "ix_job_runs_status_queued_at", "job_runs", ["status", "queued_at"]
    )
    op.create_index(
        "ix_job_runs_status_last_heartbeat_at",
        "job_runs",
        ["status", "last_heartbeat_at"],
    )
    op.create_index(
        "ix_job_runs_job_name_status", "job_runs", ["job_name", "status"]
    )
    op.create_index(
        "ix_job_runs_job_name_queued_at", "job_runs", ["job_name", "queued_at"]
    )
    op.create_index("ix_job_runs_schedule_id", "job_runs", ["schedule_id"])

    op.create_table(
        "job_logs",
        sa.Column("id", _id_type, primary_key=True, autoincrement=True),
        sa.Column(
            "job_run_id",
            sa.BigInteger(),
            sa.ForeignKey("job_runs.id"),
            nullable=False,
        ),
        sa.Column(
            "level",
            sa.Enum(*_LOG_LEVELS, name="job_log_level"),
            nullable=False,
        ),
        sa.Column("stage", sa.String(length=191), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("context", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_job_logs_job_run_id_created_at",
        "job_logs",
        ["job_run_id", "created_at"],
    )
    op.create_index("ix_job_logs_level", "job_logs", ["level"])


def downgrade() -> None:
    op.drop_index("ix_job_logs_level", table_name="job_logs")
    op.drop_index("ix_job_logs_job_run_id_created_at", table_name="job_logs")
    op.drop_table("job_logs")

    op.drop_index("ix_job_runs_schedule_id", table_name="job_runs")
    op.drop_index("ix_job_runs_job_name_queued_at", table_name="job_runs")
    op.drop_index("ix_job_runs_job_name_status", table_name="job_runs")
    op.drop_index("ix_job_runs_status_last_heartbeat_at", table_name="job_runs")
    op.drop_index("ix_job_runs_status_queued_at", table_name="job_runs")
    op.drop_table("job_runs")
