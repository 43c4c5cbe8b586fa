from __future__ import annotations

import time
from typing import Any

import pydantic
import structlog
from sqlalchemy.orm import Session

from backend.app.config import Settings, settings
from backend.app.db.models import Job
from backend.app.db.session import SessionLocal
from backend.app.errors import TransportError, ValidationError, is_retryable
from backend.app.modules.archive.service import ArchiveOptions, ArchiveOrchestrator
from backend.app.modules.restore.service import RestoreOptions, RestoreOrchestrator
from backend.app.schemas.api import ArchiveRequest, RestoreRequest
from backend.app.schemas.tables import OrchestratorConfig
from backend.app.services.jobs import fetch_next_job, mark_job_failure, mark_job_success
from backend.app.services.notifications import Notifier
from backend.app.services.object_store import ObjectStore, build_object_store
from backend.app.services.warehouse import WarehouseConnection, WarehouseExecutor


logger = structlog.get_logger()


def build_config(config_settings: Settings) -> OrchestratorConfig:
    return OrchestratorConfig(
        default_access_key_id=config_settings.aws_access_key_id,
        iam_role=config_settings.redshift_iam_role,
        skip_permission_check=config_settings.skip_permission_check,
    )


def build_executor(config_settings: Settings) -> WarehouseExecutor:
    if not config_settings.warehouse_url:
        raise TransportError("WAREHOUSE_URL is not configured")
    return WarehouseExecutor(config_settings.warehouse_url, config_settings.warehouse_connect_timeout)


def _parse(model: type[pydantic.BaseModel], payload: dict[str, Any]) -> Any:
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid job payload: {exc.error_count()} error(s)", {"errors": exc.errors()}) from exc


def run_job(
    db: Session,
    job: Job,
    conn: WarehouseConnection,
    store: ObjectStore,
    config: OrchestratorConfig,
) -> dict[str, Any]:
    if job.job_type == "table_archive":
        request: ArchiveRequest = _parse(ArchiveRequest, job.payload_json)
        options = ArchiveOptions(
            skip_drop=request.skip_drop,
            unload=request.unload.to_options(),
            schema_overrides=request.schema_overrides.to_overrides(),
            requested_by=job.requested_by,
        )
        orchestrator = ArchiveOrchestrator(db, conn, store, config)
        archived = orchestrator.archive(
            request.db.to_ref(), request.s3.to_location(), request.s3.to_credentials(), options
        )
        return archived.to_dict()
    if job.job_type == "table_restore":
        restore_request: RestoreRequest = _parse(RestoreRequest, job.payload_json)
        restore_options = RestoreOptions(copy=restore_request.copy_options.to_options(), requested_by=job.requested_by)
        restorer = RestoreOrchestrator(db, conn, store, config)
        restored = restorer.restore(
            restore_request.db.to_ref(),
            restore_request.s3.to_location(),
            restore_request.s3.to_credentials(),
            restore_options,
        )
        return restored.to_dict()
    raise ValidationError(f"Unsupported job type: {job.job_type}")


def _table_label(payload: dict[str, Any]) -> str:
    target = payload.get("db") or {}
    return f"{target.get('schema_name', '')}.{target.get('table_name', '')}"


def process_one(
    executor: WarehouseExecutor | None = None,
    store: ObjectStore | None = None,
    notifier: Notifier | None = None,
    config: OrchestratorConfig | None = None,
) -> bool:
    with SessionLocal() as db:
        job = fetch_next_job(db)
        if job is None:
            return False

        log = logger.bind(job_id=job.job_id, job_type=job.job_type)
        notifier = notifier or Notifier.from_settings(settings)
        payload = dict(job.payload_json or {})
        email = payload.get("email")
        nomailer = bool((payload.get("mail") or {}).get("nomailer"))
        table = _table_label(payload)

        try:
            executor = executor or build_executor(settings)
            store = store or build_object_store(settings)
            with executor.dedicated_connection() as conn:
                result = run_job(db, job, conn, store, config or build_config(settings))
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            final = mark_job_failure(db, job, str(exc), retryable=is_retryable(exc))
            log.error("job_failed", error=str(exc), final=final, retries=job.retries)
            if final and job.job_type in ("table_archive", "table_restore"):
                notifier.notify_failure(job.job_type, table, exc, email, nomailer=nomailer)
            return True

        mark_job_success(db, job, result)
        log.info("job_completed", warnings=len(result.get("warnings", [])))
        notifier.notify_success(job.job_type, table, email, nomailer=nomailer)
        return True


def run_forever() -> None:
    interval = max(settings.worker_poll_interval_ms, 100) / 1000.0
    while True:
        handled = process_one()
        if not handled:
            time.sleep(interval)


if __name__ == "__main__":
    run_forever()
