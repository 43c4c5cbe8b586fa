"""Archive a warehouse table into the object store and drop it.

The run writes, in order: DDL artifact (plus foreign-key and comment
recreation statements), permission artifact, UNLOADed data with its
manifest, then the ArchiveRecord, and only then drops the table. A failure
before the drop leaves the table untouched and the run can be retried; a
failure after the metadata commit leaves complete artifacts behind.
"""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field

import structlog
from sqlalchemy.orm import Session

from backend.app.errors import (
    CleanupWarning,
    DependencyError,
    PermissionDeniedError,
    SchemaExportError,
    TransportError,
    ValidationError,
)
from backend.app.modules.constraints.service import ConstraintPlan, ConstraintResolver
from backend.app.modules.export.service import PermissionExporter, SchemaExporter
from backend.app.modules.metadata.service import ArchiveMetadataStore, TableMetadataRefresher
from backend.app.schemas.tables import (
    AwsCredentials,
    OrchestratorConfig,
    S3Location,
    SchemaOverrides,
    TableRef,
    TableSnapshot,
)
from backend.app.services import catalog
from backend.app.services.audit import record_audit
from backend.app.services.bulk_transfer import UnloadOptions, s3_url, unload_statement
from backend.app.services.locks import table_lock
from backend.app.services.object_store import ObjectStore
from backend.app.services.sql_safety import credentials_clause, quote_literal
from backend.app.services.warehouse import WarehouseConnection


logger = structlog.get_logger()

CREATE_TABLE_PATTERN = re.compile(r"CREATE TABLE", re.IGNORECASE)


@dataclass(frozen=True)
class ArchiveOptions:
    skip_drop: bool = False
    unload: UnloadOptions = field(default_factory=UnloadOptions)
    schema_overrides: SchemaOverrides = field(default_factory=SchemaOverrides)
    requested_by: str = "system"


@dataclass
class ArchiveResult:
    ddl_file: str
    manifest_file: str
    permissions_file: str
    warnings: list[CleanupWarning] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "ddl_file": self.ddl_file,
            "manifest_file": self.manifest_file,
            "permissions_file": self.permissions_file,
            "warnings": [str(warning) for warning in self.warnings],
        }


class ArchiveOrchestrator:
    def __init__(
        self,
        db: Session,
        conn: WarehouseConnection,
        store: ObjectStore,
        config: OrchestratorConfig | None = None,
    ) -> None:
        self._db = db
        self._conn = conn
        self._store = store
        self._config = config or OrchestratorConfig()
        self.metadata = ArchiveMetadataStore(db)
        self.refresher = TableMetadataRefresher(db, conn)
        self.schema_exporter = SchemaExporter(conn, store)
        self.permission_exporter = PermissionExporter(conn, store)
        self.constraint_resolver = ConstraintResolver(conn)

    def archive(
        self,
        table: TableRef,
        destination: S3Location,
        credentials: AwsCredentials,
        options: ArchiveOptions | None = None,
    ) -> ArchiveResult:
        table.validate()
        destination.validate()
        credentials.validate()
        options = options or ArchiveOptions()

        log = logger.bind(table=str(table), bucket=destination.bucket, prefix=destination.prefix)
        with table_lock(self._db, table, "archive"):
            log.info("archive_started", skip_drop=options.skip_drop)
            result = self._run(table, destination, credentials, options, log)
            log.info("archive_completed", warnings=len(result.warnings))
        return result

    def _run(
        self,
        table: TableRef,
        destination: S3Location,
        credentials: AwsCredentials,
        options: ArchiveOptions,
        log: structlog.BoundLogger,
    ) -> ArchiveResult:
        self._check_table_access(table, options.skip_drop)
        if not options.skip_drop:
            self._check_dependent_views(table)

        snapshot = self.refresher.refresh(table) or TableSnapshot()

        ddl = self._export_schema(table, destination, options.schema_overrides)
        plan = self.constraint_resolver.resolve(table)
        self._append_recreation_statements(table, destination, ddl, plan, snapshot)
        log.info("constraints_resolved", referencing_constraints=len(plan.drop_statements))

        self.permission_exporter.export(table, destination.bucket, destination.permissions_key)
        self._unload(table, destination, credentials, options.unload)

        previous = self.metadata.get(table)
        previous_location = (
            S3Location(previous.archive_bucket, previous.archive_prefix) if previous is not None else None
        )
        self.metadata.upsert(table, destination, snapshot)
        log.info("archive_record_committed")

        warnings: list[CleanupWarning] = []
        if previous_location is not None and previous_location != destination:
            warning = self._delete_stale_archive(previous_location, destination)
            if warning is not None:
                warnings.append(warning)

        if not options.skip_drop:
            self._conn.run_in_transaction([*plan.drop_statements, f"DROP TABLE {table.quoted}"])
            log.info("table_dropped")
            try:
                self.refresher.refresh(table)
            except TransportError as exc:
                warnings.append(CleanupWarning(f"Failed to refresh table report for {table}: {exc}"))
                log.warning("table_report_refresh_failed", error=str(exc))

        record_audit(
            self._db,
            "table_archived",
            table,
            actor_id=options.requested_by,
            details={"bucket": destination.bucket, "prefix": destination.prefix, "dropped": not options.skip_drop},
        )
        return ArchiveResult(
            ddl_file=s3_url(destination.bucket, destination.ddl_key),
            manifest_file=s3_url(destination.bucket, destination.manifest_key),
            permissions_file=s3_url(destination.bucket, destination.permissions_key),
            warnings=warnings,
        )

    def _check_table_access(self, table: TableRef, skip_drop: bool) -> None:
        access = catalog.table_access(self._conn, table)
        if access is None:
            raise ValidationError(f"Table {table} does not exist!", {"table": str(table)})
        if skip_drop or self._config.skip_permission_check:
            return
        if not (catalog.truthy(access.get("is_owner")) or catalog.truthy(access.get("is_superuser"))):
            raise PermissionDeniedError(
                f"Only the owner of {table} or a superuser can archive it!",
                {"owner": access.get("owner")},
            )

    def _check_dependent_views(self, table: TableRef) -> None:
        views = catalog.dependent_views(self._conn, table)
        if views:
            raise DependencyError(
                f"Table {table} has dependent views: {', '.join(views)}",
                {"views": views},
            )

    def _export_schema(self, table: TableRef, destination: S3Location, overrides: SchemaOverrides) -> str:
        # referenced tables stay out of the artifact: restore creates exactly one table
        overrides = dataclasses.replace(overrides, skip_dependencies=True)
        self.schema_exporter.export(table, destination.bucket, destination.ddl_key, overrides)
        if not self._store.exists(destination.bucket, destination.ddl_key):
            raise SchemaExportError("Failed to export DDL!", {"key": destination.ddl_key})
        ddl = self._store.get_text(destination.bucket, destination.ddl_key)
        occurrences = len(CREATE_TABLE_PATTERN.findall(ddl))
        if occurrences != 1:
            raise SchemaExportError(
                f"Schema export for {table} must contain exactly one CREATE TABLE statement, found {occurrences}!",
                {"occurrences": occurrences},
            )
        return ddl

    def _append_recreation_statements(
        self,
        table: TableRef,
        destination: S3Location,
        ddl: str,
        plan: ConstraintPlan,
        snapshot: TableSnapshot,
    ) -> None:
        updated = ddl
        if plan.add_statements:
            updated = updated.rstrip("\n") + "\n" + plan.add_fragment()
        if snapshot.comment:
            updated = updated.rstrip("\n") + f"\nCOMMENT ON TABLE {table.quoted} IS {quote_literal(snapshot.comment)};\n"
        if updated != ddl:
            self._store.put_text(destination.bucket, destination.ddl_key, updated)

    def _unload(
        self,
        table: TableRef,
        destination: S3Location,
        credentials: AwsCredentials,
        options: UnloadOptions,
    ) -> None:
        clause = credentials_clause(
            credentials.access_key_id,
            credentials.secret_access_key,
            iam_role=self._config.iam_role,
            default_access_key_id=self._config.default_access_key_id,
        )
        statement = unload_statement(
            f"SELECT * FROM {table.quoted}",
            destination.bucket,
            destination.prefix,
            clause,
            options,
        )
        self._conn.run_in_transaction([statement])
        if not self._store.exists(destination.bucket, destination.manifest_key):
            raise TransportError(
                f"UNLOAD did not produce {destination.bucket}/{destination.manifest_key}!",
                {"key": destination.manifest_key},
            )

    def _delete_stale_archive(self, previous: S3Location, current: S3Location) -> CleanupWarning | None:
        # the new archive only needs protecting when it sits under the old prefix
        nested = previous.bucket == current.bucket and current.prefix.startswith(previous.prefix)
        keep = current.prefix if nested else None
        try:
            deleted = self._store.delete_prefix(previous.bucket, previous.prefix, keep_prefix=keep)
        except (TransportError, OSError) as exc:
            logger.warning(
                "stale_archive_cleanup_failed",
                bucket=previous.bucket,
                prefix=previous.prefix,
                error=str(exc),
            )
            return CleanupWarning(f"Failed to delete stale archive {previous.bucket}/{previous.prefix}: {exc}")
        logger.info("stale_archive_deleted", bucket=previous.bucket, prefix=previous.prefix, objects=deleted)
        return None
