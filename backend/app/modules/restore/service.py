"""Recreate an archived table from its DDL, permission and data artifacts.

Nothing touches the warehouse until all three artifacts exist and parse.
The CREATE TABLE, LOCK, permission replay and COPY then run as one
warehouse transaction; the ArchiveRecord and the artifacts are removed only
after that transaction commits.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

import structlog
from sqlalchemy.orm import Session

from backend.app.errors import ArtifactCorruptError, ArtifactMissingError, CleanupWarning, TransportError
from backend.app.modules.metadata.service import ArchiveMetadataStore, TableMetadataRefresher
from backend.app.schemas.tables import AwsCredentials, OrchestratorConfig, S3Location, TableRef
from backend.app.services.audit import record_audit
from backend.app.services.bulk_transfer import CopyOptions, copy_statement
from backend.app.services.locks import table_lock
from backend.app.services.object_store import ObjectStore
from backend.app.services.sql_safety import credentials_clause, split_statements
from backend.app.services.warehouse import WarehouseConnection


logger = structlog.get_logger()

CREATE_TABLE_PATTERN = re.compile(r"^\s*CREATE\s+TABLE\b", re.IGNORECASE)
_IDENT = r'"(?:[^"]|"")+"'


@dataclass(frozen=True)
class RestoreOptions:
    copy: CopyOptions = field(default_factory=CopyOptions)
    requested_by: str = "system"


@dataclass
class RestoreResult:
    schema: str
    table: str
    warnings: list[CleanupWarning] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "schema": self.schema,
            "table": self.table,
            "warnings": [str(warning) for warning in self.warnings],
        }


def _trailing_ddl_patterns(table: TableRef) -> list[re.Pattern[str]]:
    quoted = re.escape(table.quoted)
    return [
        re.compile(
            rf"(?i:ALTER\s+TABLE)\s+{_IDENT}\.{_IDENT}\s+(?i:ADD\s+CONSTRAINT)\s+{_IDENT}\s+"
            rf"(?i:FOREIGN\s+KEY)\s*\(.+\)\s*(?i:REFERENCES)\s+{quoted}\s*\(.+\)",
            re.DOTALL,
        ),
        re.compile(
            rf"(?i:COMMENT\s+ON\s+(?:TABLE|COLUMN))\s+{quoted}(?:\.{_IDENT})?\s+(?i:IS)\s+(?:'.*'|(?i:NULL))",
            re.DOTALL,
        ),
    ]


def _permission_patterns(table: TableRef) -> list[re.Pattern[str]]:
    quoted = re.escape(table.quoted)
    return [
        re.compile(rf"(?i:ALTER\s+TABLE)\s+{quoted}\s+(?i:OWNER\s+TO)\s+\S+", re.DOTALL),
        re.compile(rf"(?i:GRANT)\s+.+?\s+(?i:ON)\s+(?:(?i:TABLE)\s+)?{quoted}\s+(?i:TO)\s+.+", re.DOTALL),
        re.compile(rf"(?i:REVOKE)\s+.+?\s+(?i:ON)\s+(?:(?i:TABLE)\s+)?{quoted}\s+(?i:FROM)\s+.+", re.DOTALL),
    ]


class RestoreOrchestrator:
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

    def restore(
        self,
        table: TableRef,
        source: S3Location,
        credentials: AwsCredentials,
        options: RestoreOptions | None = None,
    ) -> RestoreResult:
        table.validate()
        source.validate()
        credentials.validate()
        options = options or RestoreOptions()

        log = logger.bind(table=str(table), bucket=source.bucket, prefix=source.prefix)
        with table_lock(self._db, table, "restore"):
            log.info("restore_started")
            result = self._run(table, source, credentials, options, log)
            log.info("restore_completed", warnings=len(result.warnings))
        return result

    def _run(
        self,
        table: TableRef,
        source: S3Location,
        credentials: AwsCredentials,
        options: RestoreOptions,
        log: structlog.BoundLogger,
    ) -> RestoreResult:
        self._require_exists(source.bucket, source.manifest_key, "manifest_file")
        ddl_statements = self.read_ddl(table, source)
        permission_statements = self.read_permissions(table, source)

        clause = credentials_clause(
            credentials.access_key_id,
            credentials.secret_access_key,
            iam_role=self._config.iam_role,
            default_access_key_id=self._config.default_access_key_id,
        )
        create_statement, *recreation_statements = ddl_statements
        batch = [
            create_statement,
            f"LOCK {table.quoted}",
            *recreation_statements,
            *permission_statements,
            copy_statement(table.quoted, source.bucket, source.manifest_key, clause, options.copy),
        ]
        self._conn.run_in_transaction(batch)
        log.info("restore_committed", statements=len(batch))

        warnings: list[CleanupWarning] = []
        if self.metadata.delete(table):
            log.info("archive_record_deleted")
        warning = self._delete_artifacts(source)
        if warning is not None:
            warnings.append(warning)

        try:
            self.refresher.refresh(table)
        except TransportError as exc:
            warnings.append(CleanupWarning(f"Failed to refresh table report for {table}: {exc}"))
            log.warning("table_report_refresh_failed", error=str(exc))

        record_audit(
            self._db,
            "table_restored",
            table,
            actor_id=options.requested_by,
            details={"bucket": source.bucket, "prefix": source.prefix},
        )
        return RestoreResult(schema=table.schema_name, table=table.table_name, warnings=warnings)

    def read_ddl(self, table: TableRef, source: S3Location) -> list[str]:
        """Return the CREATE TABLE statement followed by its recreation statements.

        The artifact must hold exactly one CREATE TABLE, first, for exactly
        ``table``; anything after it must re-add a foreign key pointing at
        ``table`` or set a comment on it.
        """
        key = source.ddl_key
        script = self._require_artifact(source.bucket, key, "ddl_file")
        invalid = ArtifactCorruptError(
            f"S3 ddl_file {source.bucket}/{key} must contain a single valid CREATE TABLE statement!",
            {"bucket": source.bucket, "key": key},
        )
        try:
            statements = split_statements(script)
        except ValueError as exc:
            raise invalid from exc

        creates = [statement for statement in statements if CREATE_TABLE_PATTERN.match(statement)]
        if len(creates) != 1 or statements[0] is not creates[0]:
            raise invalid
        create = re.compile(rf"(?i:CREATE\s+TABLE)\s+{re.escape(table.quoted)}\s*\(")
        if not create.match(creates[0]):
            raise invalid

        trailing = _trailing_ddl_patterns(table)
        for statement in statements[1:]:
            if not any(pattern.fullmatch(statement) for pattern in trailing):
                raise invalid
        return statements

    def read_permissions(self, table: TableRef, source: S3Location) -> list[str]:
        key = source.permissions_key
        script = self._require_artifact(source.bucket, key, "perms_file")
        invalid = ArtifactCorruptError(
            f"S3 perms_file {source.bucket}/{key} must only contain grants for {table}!",
            {"bucket": source.bucket, "key": key},
        )
        try:
            statements = split_statements(script)
        except ValueError as exc:
            raise invalid from exc

        patterns = _permission_patterns(table)
        for statement in statements:
            if not any(pattern.fullmatch(statement) for pattern in patterns):
                raise invalid
        return statements

    def _require_exists(self, bucket: str, key: str, label: str) -> None:
        if not self._store.exists(bucket, key):
            raise ArtifactMissingError(
                f"S3 {label} {bucket}/{key} does not exist!",
                {"bucket": bucket, "key": key},
            )

    def _require_artifact(self, bucket: str, key: str, label: str) -> str:
        self._require_exists(bucket, key, label)
        return self._store.get_text(bucket, key)

    def _delete_artifacts(self, source: S3Location) -> CleanupWarning | None:
        try:
            deleted = self._store.delete_prefix(source.bucket, source.prefix)
        except (TransportError, OSError) as exc:
            logger.warning(
                "archive_artifact_cleanup_failed",
                bucket=source.bucket,
                prefix=source.prefix,
                error=str(exc),
            )
            return CleanupWarning(f"Failed to delete archive {source.bucket}/{source.prefix}: {exc}")
        logger.info("archive_artifacts_deleted", bucket=source.bucket, prefix=source.prefix, objects=deleted)
        return None
