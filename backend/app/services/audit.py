from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db.models import AuditLog
from backend.app.schemas.tables import TableRef


def record_audit(
    db: Session,
    action: str,
    table: TableRef,
    actor_id: str = "system",
    details: dict[str, object] | None = None,
) -> AuditLog:
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        schema_name=table.schema_name,
        table_name=table.table_name,
        details_json=details or {},
    )
    db.add(entry)
    db.commit()
    return entry


def audit_trail(db: Session, table: TableRef) -> list[AuditLog]:
    stmt = (
        select(AuditLog)
        .where(AuditLog.schema_name == table.schema_name, AuditLog.table_name == table.table_name)
        .order_by(AuditLog.audit_id.asc())
    )
    return list(db.execute(stmt).scalars())
