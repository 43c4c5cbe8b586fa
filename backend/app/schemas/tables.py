from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from backend.app.errors import ValidationError
from backend.app.services.sql_safety import full_table_name


def require_non_empty(value: str | None, label: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"Empty {label}!", {"field": label})
    return value


@dataclass(frozen=True)
class TableRef:
    schema_name: str
    table_name: str

    def validate(self) -> "TableRef":
        require_non_empty(self.schema_name, "schema name")
        require_non_empty(self.table_name, "table name")
        return self

    @property
    def quoted(self) -> str:
        return full_table_name(self.schema_name, self.table_name)

    def __str__(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


@dataclass(frozen=True)
class S3Location:
    bucket: str
    prefix: str

    def validate(self) -> "S3Location":
        require_non_empty(self.bucket, "bucket name")
        require_non_empty(self.prefix, "prefix name")
        return self

    @property
    def ddl_key(self) -> str:
        return f"{self.prefix}ddl"

    @property
    def permissions_key(self) -> str:
        return f"{self.prefix}permissions.sql"

    @property
    def manifest_key(self) -> str:
        return f"{self.prefix}manifest"


@dataclass(frozen=True)
class AwsCredentials:
    access_key_id: str
    secret_access_key: str = field(repr=False)

    def validate(self) -> "AwsCredentials":
        require_non_empty(self.access_key_id, "access key")
        require_non_empty(self.secret_access_key, "secret key")
        return self


@dataclass
class TableSnapshot:
    """Structural snapshot of a warehouse table, as stored with its archive."""

    size_in_mb: int | None = None
    dist_style: str | None = None
    dist_key: str | None = None
    sort_style: str | None = None
    sort_keys: list[str] = field(default_factory=list)
    has_col_encodings: bool = False
    comment: str | None = None
    columns: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class SchemaOverrides:
    skip_dependencies: bool = False
    no_column_encoding: bool = False
    diststyle_override: str | None = None
    distkey_override: str | None = None
    sortstyle_override: str | None = None
    sortkeys_override: tuple[str, ...] | None = None


@dataclass(frozen=True)
class OrchestratorConfig:
    """Environment-level settings handed to each archive/restore run."""

    default_access_key_id: str = ""
    iam_role: str = ""
    skip_permission_check: bool = False
