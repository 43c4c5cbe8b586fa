from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.db.models import TableLock
from backend.app.errors import ConcurrentOperationError
from backend.app.schemas.tables import TableRef


logger = structlog.get_logger()


def find_lock(db: Session, table: TableRef) -> TableLock | None:
    stmt = select(TableLock).where(
        TableLock.schema_name == table.schema_name,
        TableLock.table_name == table.table_name,
    )
    return db.execute(stmt).scalar_one_or_none()


def acquire_lock(db: Session, table: TableRef, operation: str) -> None:
    holder = find_lock(db, table)
    if holder is not None:
        raise ConcurrentOperationError(
            f"Another operation is already running for {table}!",
            {"operation": holder.operation},
        )
    db.add(TableLock(schema_name=table.schema_name, table_name=table.table_name, operation=operation))
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        holder = find_lock(db, table)
        raise ConcurrentOperationError(
            f"Another operation is already running for {table}!",
            {"operation": holder.operation if holder else None},
        ) from exc


def release_lock(db: Session, table: TableRef) -> None:
    db.execute(
        delete(TableLock).where(
            TableLock.schema_name == table.schema_name,
            TableLock.table_name == table.table_name,
        )
    )
    db.commit()


@contextmanager
def table_lock(db: Session, table: TableRef, operation: str) -> Iterator[None]:
    """Hold the advisory lock for ``table`` while one archive/restore runs.

    A lock row left behind by a crashed run blocks the table until it is
    removed by hand, after the run has been audited.
    """
    acquire_lock(db, table, operation)
    try:
        yield
    finally:
        db.rollback()
        release_lock(db, table)
        logger.debug("table_lock_released", table=str(table), operation=operation)
