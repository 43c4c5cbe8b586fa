from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from backend.app.schemas.tables import AwsCredentials, S3Location, SchemaOverrides, TableRef
from backend.app.services.bulk_transfer import CopyOptions, UnloadOptions


T = TypeVar("T")


class ErrorPayload(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    retryable: bool = False


class ResponseEnvelope(BaseModel, Generic[T]):
    request_id: str
    status: str
    data: T | None = None
    error: ErrorPayload | None = None


class TableTarget(BaseModel):
    schema_name: str
    table_name: str

    def to_ref(self) -> TableRef:
        return TableRef(self.schema_name, self.table_name)


class S3Target(BaseModel):
    bucket: str
    prefix: str
    access_key_id: str
    secret_access_key: str = Field(repr=False)

    def to_location(self) -> S3Location:
        return S3Location(self.bucket, self.prefix)

    def to_credentials(self) -> AwsCredentials:
        return AwsCredentials(self.access_key_id, self.secret_access_key)


class UnloadOptionsModel(BaseModel):
    allowoverwrite: bool = False
    gzip: bool = False
    addquotes: bool = False
    escape: bool = False
    null_as: str | None = None

    def to_options(self) -> UnloadOptions:
        return UnloadOptions(**self.model_dump())


class CopyOptionsModel(BaseModel):
    gzip: bool = False
    removequotes: bool = False
    escape: bool = False
    null_as: str | None = None

    def to_options(self) -> CopyOptions:
        return CopyOptions(**self.model_dump())


class SchemaOverridesModel(BaseModel):
    skip_dependencies: bool = False
    no_column_encoding: bool = False
    diststyle_override: str | None = None
    distkey_override: str | None = None
    sortstyle_override: str | None = None
    sortkeys_override: list[str] | None = None

    def to_overrides(self) -> SchemaOverrides:
        values = self.model_dump()
        if values["sortkeys_override"] is not None:
            values["sortkeys_override"] = tuple(values["sortkeys_override"])
        return SchemaOverrides(**values)


class MailOptions(BaseModel):
    nomailer: bool = False


class ArchiveRequest(BaseModel):
    db: TableTarget
    s3: S3Target
    skip_drop: bool = False
    unload: UnloadOptionsModel = Field(default_factory=UnloadOptionsModel)
    schema_overrides: SchemaOverridesModel = Field(default_factory=SchemaOverridesModel)
    email: str | None = None
    mail: MailOptions = Field(default_factory=MailOptions)


class RestoreRequest(BaseModel):
    db: TableTarget
    s3: S3Target
    copy_options: CopyOptionsModel = Field(default_factory=CopyOptionsModel, alias="copy")
    email: str | None = None
    mail: MailOptions = Field(default_factory=MailOptions)

    model_config = {"populate_by_name": True}


class EnqueueJobResponse(BaseModel):
    job_id: int
    job_type: str
    status: str


class JobResponse(BaseModel):
    job_id: int
    job_type: str
    status: str
    requested_by: str
    retries: int
    max_retries: int
    last_error: str | None = None
    result: dict[str, Any] | None = None
    table: str | None = None
    created_at_utc: datetime
    updated_at_utc: datetime


class ColumnView(BaseModel):
    position: int
    name: str
    data_type: str
    not_null: bool
    encoding: str | None = None


class ArchiveRecordResponse(BaseModel):
    schema_name: str
    table_name: str
    archive_bucket: str
    archive_prefix: str
    size_in_mb: int | None = None
    dist_style: str | None = None
    dist_key: str | None = None
    sort_style: str | None = None
    sort_keys: list[str] = Field(default_factory=list)
    has_col_encodings: bool = False
    comment: str | None = None
    columns: list[ColumnView] = Field(default_factory=list)
    created_at_utc: datetime
    updated_at_utc: datetime


class ListArchivesResponse(BaseModel):
    items: list[ArchiveRecordResponse]
