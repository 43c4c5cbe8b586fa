from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db.session import Base


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ArchiveRecord(Base):
    __tablename__ = "table_archives"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    schema_name: Mapped[str] = mapped_column(String(128), index=True)
    table_name: Mapped[str] = mapped_column(String(128))
    archive_bucket: Mapped[str] = mapped_column(String(256))
    archive_prefix: Mapped[str] = mapped_column(String(1024))
    size_in_mb: Mapped[int | None] = mapped_column(Integer, nullable=True)
    dist_style: Mapped[str | None] = mapped_column(String(32), nullable=True)
    dist_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    sort_style: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sort_keys: Mapped[list[str]] = mapped_column(JSON, default=list)
    has_col_encodings: Mapped[bool] = mapped_column(Boolean, default=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    columns_json: Mapped[list[dict[str, object]]] = mapped_column(JSON, default=list)
    created_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)

    __table_args__ = (UniqueConstraint("schema_name", "table_name", name="uq_table_archives_table"),)


class TableReport(Base):
    __tablename__ = "table_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    schema_name: Mapped[str] = mapped_column(String(128), index=True)
    table_name: Mapped[str] = mapped_column(String(128))
    size_in_mb: Mapped[int | None] = mapped_column(Integer, nullable=True)
    dist_style: Mapped[str | None] = mapped_column(String(32), nullable=True)
    dist_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    sort_style: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sort_keys: Mapped[list[str]] = mapped_column(JSON, default=list)
    has_col_encodings: Mapped[bool] = mapped_column(Boolean, default=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    columns_json: Mapped[list[dict[str, object]]] = mapped_column(JSON, default=list)
    updated_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)

    __table_args__ = (UniqueConstraint("schema_name", "table_name", name="uq_table_reports_table"),)


class TableLock(Base):
    __tablename__ = "table_locks"

    schema_name: Mapped[str] = mapped_column(String(128), primary_key=True)
    table_name: Mapped[str] = mapped_column(String(128), primary_key=True)
    operation: Mapped[str] = mapped_column(String(32))
    acquired_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)


class AuditLog(Base):
    __tablename__ = "audit_log"

    audit_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(128), default="system")
    action: Mapped[str] = mapped_column(String(128), index=True)
    schema_name: Mapped[str] = mapped_column(String(128))
    table_name: Mapped[str] = mapped_column(String(128))
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    details_json: Mapped[dict[str, object]] = mapped_column(JSON, default=dict)


class Job(Base):
    __tablename__ = "jobs"

    job_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_type: Mapped[str] = mapped_column(String(64), index=True)
    payload_json: Mapped[dict[str, object]] = mapped_column(JSON, default=dict)
    requested_by: Mapped[str] = mapped_column(String(128), default="anonymous")
    status: Mapped[str] = mapped_column(String(32), default="pending", index=True)
    retries: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_json: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    available_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    created_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
