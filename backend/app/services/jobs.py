from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from backend.app.db.models import Job


logger = structlog.get_logger()

JOB_TYPES = ("table_archive", "table_restore")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def enqueue_job(
    db: Session,
    job_type: str,
    payload: dict[str, Any],
    requested_by: str = "anonymous",
    max_retries: int = 3,
) -> Job:
    if job_type not in JOB_TYPES:
        raise ValueError(f"Unsupported job type: {job_type}")
    job = Job(job_type=job_type, payload_json=payload, requested_by=requested_by, max_retries=max_retries)
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("job_enqueued", job_id=job.job_id, job_type=job_type, requested_by=requested_by)
    return job


def get_job(db: Session, job_id: int) -> Job | None:
    return db.get(Job, job_id)


def fetch_next_job(db: Session, job_type: str | None = None) -> Job | None:
    stmt = select(Job).where(
        and_(
            Job.status == "pending",
            Job.available_at_utc <= _now(),
        )
    )
    if job_type:
        stmt = stmt.where(Job.job_type == job_type)
    stmt = stmt.order_by(Job.created_at_utc.asc(), Job.job_id.asc()).limit(1)
    job = db.execute(stmt).scalar_one_or_none()
    if job is None:
        return None
    job.status = "running"
    job.updated_at_utc = _now()
    db.commit()
    db.refresh(job)
    return job


def mark_job_success(db: Session, job: Job, result: dict[str, Any] | None = None) -> None:
    job.status = "completed"
    job.result_json = result
    job.last_error = None
    job.updated_at_utc = _now()
    db.commit()


def mark_job_failure(db: Session, job: Job, error: str, retryable: bool = True) -> bool:
    """Record a failed attempt; returns True when the job will not run again."""
    job.retries += 1
    job.last_error = error
    job.updated_at_utc = _now()
    if not retryable or job.retries >= job.max_retries:
        job.status = "failed"
    else:
        backoff = 2 ** min(job.retries, 6)
        job.status = "pending"
        job.available_at_utc = _now() + timedelta(seconds=backoff)
    db.commit()
    return job.status == "failed"
