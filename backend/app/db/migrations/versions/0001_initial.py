"""initial schema

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _snapshot_columns() -> list[sa.Column]:
    return [
        sa.Column("size_in_mb", sa.Integer(), nullable=True),
        sa.Column("dist_style", sa.String(length=32), nullable=True),
        sa.Column("dist_key", sa.String(length=128), nullable=True),
        sa.Column("sort_style", sa.String(length=32), nullable=True),
        sa.Column("sort_keys", sa.JSON(), nullable=False),
        sa.Column("has_col_encodings", sa.Boolean(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("columns_json", sa.JSON(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "table_archives",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("schema_name", sa.String(length=128), nullable=False),
        sa.Column("table_name", sa.String(length=128), nullable=False),
        sa.Column("archive_bucket", sa.String(length=256), nullable=False),
        sa.Column("archive_prefix", sa.String(length=1024), nullable=False),
        *_snapshot_columns(),
        sa.Column("created_at_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at_utc", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("schema_name", "table_name", name="uq_table_archives_table"),
    )
    op.create_index("ix_table_archives_schema_name", "table_archives", ["schema_name"])

    op.create_table(
        "table_reports",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("schema_name", sa.String(length=128), nullable=False),
        sa.Column("table_name", sa.String(length=128), nullable=False),
        *_snapshot_columns(),
        sa.Column("updated_at_utc", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("schema_name", "table_name", name="uq_table_reports_table"),
    )
    op.create_index("ix_table_reports_schema_name", "table_reports", ["schema_name"])

    op.create_table(
        "table_locks",
        sa.Column("schema_name", sa.String(length=128), primary_key=True),
        sa.Column("table_name", sa.String(length=128), primary_key=True),
        sa.Column("operation", sa.String(length=32), nullable=False),
        sa.Column("acquired_at_utc", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "audit_log",
        sa.Column("audit_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("schema_name", sa.String(length=128), nullable=False),
        sa.Column("table_name", sa.String(length=128), nullable=False),
        sa.Column("timestamp_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("details_json", sa.JSON(), nullable=False),
    )
    op.create_index("ix_audit_log_action", "audit_log", ["action"])

    op.create_table(
        "jobs",
        sa.Column("job_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("job_type", sa.String(length=64), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("requested_by", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("retries", sa.Integer(), nullable=False),
        sa.Column("max_retries", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("result_json", sa.JSON(), nullable=True),
        sa.Column("available_at_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at_utc", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_jobs_job_type", "jobs", ["job_type"])
    op.create_index("ix_jobs_status", "jobs", ["status"])


def downgrade() -> None:
    op.drop_index("ix_jobs_status", table_name="jobs")
    op.drop_index("ix_jobs_job_type", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index("ix_audit_log_action", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_table("table_locks")
    op.drop_index("ix_table_reports_schema_name", table_name="table_reports")
    op.drop_table("table_reports")
    op.drop_index("ix_table_archives_schema_name", table_name="table_archives")
    op.drop_table("table_archives")
