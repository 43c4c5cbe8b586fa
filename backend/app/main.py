from __future__ import annotations

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from backend.app.config import settings
from backend.app.db import models  # noqa: F401
from backend.app.db.models import ArchiveRecord, Job
from backend.app.db.session import Base, engine, get_db
from backend.app.errors import NotFoundError, TableVaultError
from backend.app.modules.metadata.service import ArchiveMetadataStore
from backend.app.modules.security.auth import AuthContext, require_auth
from backend.app.schemas.api import (
    ArchiveRecordResponse,
    ArchiveRequest,
    EnqueueJobResponse,
    JobResponse,
    ListArchivesResponse,
    RestoreRequest,
)
from backend.app.schemas.tables import TableRef
from backend.app.services.jobs import enqueue_job, get_job
from backend.app.services.responses import (
    error_envelope,
    http_status_for,
    request_id,
    success_envelope,
    table_vault_error_envelope,
)


app = FastAPI(title=settings.api_title, version=settings.api_version)


@app.on_event("startup")
def startup() -> None:
    Base.metadata.create_all(bind=engine)


@app.exception_handler(TableVaultError)
async def table_vault_error_handler(request: Request, exc: TableVaultError):
    req_id = request_id(request)
    return JSONResponse(
        content=jsonable_encoder(table_vault_error_envelope(req_id, exc)),
        status_code=http_status_for(exc),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    req_id = request_id(request)
    detail = exc.detail if isinstance(exc.detail, dict) else {"code": "INTERNAL_ERROR", "message": str(exc.detail)}
    envelope = error_envelope(
        req_id,
        detail.get("code", "INTERNAL_ERROR"),
        detail.get("message", "Unhandled HTTP exception"),
        details=detail.get("details", {}),
        retryable=detail.get("retryable", False),
    )
    return JSONResponse(content=jsonable_encoder(envelope), status_code=exc.status_code)


def record_to_response(record: ArchiveRecord) -> ArchiveRecordResponse:
    return ArchiveRecordResponse(
        schema_name=record.schema_name,
        table_name=record.table_name,
        archive_bucket=record.archive_bucket,
        archive_prefix=record.archive_prefix,
        size_in_mb=record.size_in_mb,
        dist_style=record.dist_style,
        dist_key=record.dist_key,
        sort_style=record.sort_style,
        sort_keys=list(record.sort_keys or []),
        has_col_encodings=bool(record.has_col_encodings),
        comment=record.comment,
        columns=list(record.columns_json or []),
        created_at_utc=record.created_at_utc,
        updated_at_utc=record.updated_at_utc,
    )


def job_to_response(job: Job) -> JobResponse:
    # payloads hold the requester's S3 keys; only the table is echoed back
    target = (job.payload_json or {}).get("db") or {}
    table = f"{target['schema_name']}.{target['table_name']}" if target else None
    return JobResponse(
        job_id=job.job_id,
        job_type=job.job_type,
        status=job.status,
        requested_by=job.requested_by,
        retries=job.retries,
        max_retries=job.max_retries,
        last_error=job.last_error,
        result=job.result_json,
        table=table,
        created_at_utc=job.created_at_utc,
        updated_at_utc=job.updated_at_utc,
    )


def _validate_target(request: ArchiveRequest | RestoreRequest) -> None:
    request.db.to_ref().validate()
    request.s3.to_location().validate()
    request.s3.to_credentials().validate()


@app.get("/health/live")
def health_live() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health/ready")
def health_ready(db: Session = Depends(get_db)) -> dict[str, str]:
    db.execute(text("select 1"))
    return {"status": "ready"}


@app.post("/api/v1/archives")
def api_enqueue_archive(
    request: ArchiveRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    _validate_target(request)
    job = enqueue_job(
        db,
        "table_archive",
        request.model_dump(mode="json"),
        requested_by=auth.actor_id,
        max_retries=settings.job_max_retries,
    )
    payload = EnqueueJobResponse(job_id=job.job_id, job_type=job.job_type, status=job.status)
    return success_envelope(request_id(http_request), payload.model_dump(mode="json"))


@app.post("/api/v1/restores")
def api_enqueue_restore(
    request: RestoreRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    _validate_target(request)
    job = enqueue_job(
        db,
        "table_restore",
        request.model_dump(mode="json", by_alias=True),
        requested_by=auth.actor_id,
        max_retries=settings.job_max_retries,
    )
    payload = EnqueueJobResponse(job_id=job.job_id, job_type=job.job_type, status=job.status)
    return success_envelope(request_id(http_request), payload.model_dump(mode="json"))


@app.get("/api/v1/jobs/{job_id}")
def api_get_job(
    job_id: int,
    http_request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    _ = auth
    job = get_job(db, job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} does not exist!", {"job_id": job_id})
    return success_envelope(request_id(http_request), job_to_response(job).model_dump(mode="json"))


@app.get("/api/v1/archives")
def api_list_archives(
    http_request: Request,
    schema_name: str | None = Query(default=None),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    _ = auth
    records = ArchiveMetadataStore(db).list(schema_name=schema_name)
    payload = ListArchivesResponse(items=[record_to_response(record) for record in records])
    return success_envelope(request_id(http_request), payload.model_dump(mode="json"))


@app.get("/api/v1/archives/{schema_name}/{table_name}")
def api_get_archive(
    schema_name: str,
    table_name: str,
    http_request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    _ = auth
    table = TableRef(schema_name, table_name)
    record = ArchiveMetadataStore(db).get(table)
    if record is None:
        raise NotFoundError(f"No archive exists for {table}!", {"table": str(table)})
    return success_envelope(request_id(http_request), record_to_response(record).model_dump(mode="json"))
