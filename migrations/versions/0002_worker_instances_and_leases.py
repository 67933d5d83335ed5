"""Create worker instance and worker lease tables.

Revision ID: 0002_worker_instances_and_leases
Revises: 0001_job_runs_and_logs
Create Date: 2026-10-13 14:30:00

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

revision: str = "0002_worker_instances_and_leases"
down_revision: str | None = "0001_job_runs_and_logs"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "worker_instances",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("pool", sa.String(length=64), nullable=False),
        sa.Column("hostname", sa.String(length=255), nullable=False),
        sa.Column("pid", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("RUNNING", "STOPPED", name="worker_status"),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("stopped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_heartbeat_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "jobs_processed",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
    )
    op.create_index(
        "ix_worker_instances_pool_status_heartbeat",
        "worker_instances",
        ["pool", "status", "last_heartbeat_at"],
    )
    op.create_index(
        "ix_worker_instances_pool_started_at",
        "worker_instances",
        ["pool", "started_at"],
    )

    op.create_table(
        "worker_leases",
        sa.Column("pool", sa.String(length=64), primary_key=True),
        sa.Column("holder_id", sa.String(length=64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("renewed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_worker_leases_expires_at", "worker_leases", ["expires_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_worker_leases_expires_at", table_name="worker_leases")
    op.drop_table("worker_leases")
    op.drop_index(
        "ix_worker_instances_pool_started_at", table_name="worker_instances"
    )
    op.drop_index(
        "ix_worker_instances_pool_status_heartbeat", table_name="worker_instances"
    )
    op.drop_table("worker_instances")
