from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db.models import ArchiveRecord, TableReport
from backend.app.schemas.tables import S3Location, TableRef, TableSnapshot
from backend.app.services import catalog
from backend.app.services.warehouse import WarehouseConnection


logger = structlog.get_logger()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _apply_snapshot(row: ArchiveRecord | TableReport, snapshot: TableSnapshot) -> None:
    row.size_in_mb = snapshot.size_in_mb
    row.dist_style = snapshot.dist_style
    row.dist_key = snapshot.dist_key
    row.sort_style = snapshot.sort_style
    row.sort_keys = list(snapshot.sort_keys)
    row.has_col_encodings = snapshot.has_col_encodings
    row.comment = snapshot.comment
    row.columns_json = list(snapshot.columns)


def snapshot_from_row(row: ArchiveRecord | TableReport) -> TableSnapshot:
    return TableSnapshot(
        size_in_mb=row.size_in_mb,
        dist_style=row.dist_style,
        dist_key=row.dist_key,
        sort_style=row.sort_style,
        sort_keys=list(row.sort_keys or []),
        has_col_encodings=bool(row.has_col_encodings),
        comment=row.comment,
        columns=list(row.columns_json or []),
    )


class ArchiveMetadataStore:
    """One ArchiveRecord per (schema_name, table_name)."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def get(self, table: TableRef) -> ArchiveRecord | None:
        stmt = select(ArchiveRecord).where(
            ArchiveRecord.schema_name == table.schema_name,
            ArchiveRecord.table_name == table.table_name,
        )
        return self._db.execute(stmt).scalar_one_or_none()

    def list(self, schema_name: str | None = None) -> list[ArchiveRecord]:
        stmt = select(ArchiveRecord).order_by(ArchiveRecord.schema_name, ArchiveRecord.table_name)
        if schema_name:
            stmt = stmt.where(ArchiveRecord.schema_name == schema_name)
        return list(self._db.execute(stmt).scalars())

    def upsert(self, table: TableRef, location: S3Location, snapshot: TableSnapshot) -> ArchiveRecord:
        record = self.get(table)
        if record is None:
            record = ArchiveRecord(schema_name=table.schema_name, table_name=table.table_name)
            self._db.add(record)
        record.archive_bucket = location.bucket
        record.archive_prefix = location.prefix
        record.updated_at_utc = _now()
        _apply_snapshot(record, snapshot)
        self._db.commit()
        self._db.refresh(record)
        return record

    def delete(self, table: TableRef) -> bool:
        record = self.get(table)
        if record is None:
            return False
        self._db.delete(record)
        self._db.commit()
        return True


class TableMetadataRefresher:
    """Recomputes the queryable structural snapshot of one table."""

    def __init__(self, db: Session, conn: WarehouseConnection) -> None:
        self._db = db
        self._conn = conn

    def get_report(self, table: TableRef) -> TableReport | None:
        stmt = select(TableReport).where(
            TableReport.schema_name == table.schema_name,
            TableReport.table_name == table.table_name,
        )
        return self._db.execute(stmt).scalar_one_or_none()

    def compute(self, table: TableRef) -> TableSnapshot | None:
        column_rows = catalog.columns(self._conn, table)
        if not column_rows:
            return None
        keys = catalog.sort_and_dist_keys(column_rows)
        encodings = [row.get("encoding") for row in column_rows]
        return TableSnapshot(
            size_in_mb=catalog.table_size(self._conn, table),
            dist_style=catalog.dist_style(self._conn, table),
            dist_key=keys["dist_key"],
            sort_style=keys["sort_style"],
            sort_keys=keys["sort_keys"],
            has_col_encodings=any(enc and enc != "none" for enc in encodings),
            comment=catalog.table_comment(self._conn, table),
            columns=[
                {
                    "position": int(row["position"]),
                    "name": row["name"],
                    "data_type": row["data_type"],
                    "not_null": bool(row["not_null"]),
                    "encoding": row.get("encoding"),
                }
                for row in column_rows
            ],
        )

    def refresh(self, table: TableRef) -> TableSnapshot | None:
        snapshot = self.compute(table)
        report = self.get_report(table)
        if snapshot is None:
            if report is not None:
                self._db.delete(report)
                self._db.commit()
                logger.info("table_report_removed", table=str(table))
            return None

        if report is None:
            report = TableReport(schema_name=table.schema_name, table_name=table.table_name)
            self._db.add(report)
        _apply_snapshot(report, snapshot)
        report.updated_at_utc = _now()
        self._db.commit()
        logger.info("table_report_refreshed", table=str(table), size_in_mb=snapshot.size_in_mb)
        return snapshot
