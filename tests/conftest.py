from __future__ import annotations

import json
import os
import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

import pytest
from fastapi.testclient import TestClient

# Keep tests on local sqlite by default.
os.environ.setdefault("DATABASE_URL", "sqlite:///./table_vault_test.db")
os.environ.setdefault("AUTH_ENABLED", "false")

from backend.app.db.session import Base, SessionLocal, engine  # noqa: E402
from backend.app.errors import TransactionError, TransportError  # noqa: E402
from backend.app.main import app  # noqa: E402
from backend.app.services import catalog  # noqa: E402
from backend.app.services.object_store import LocalObjectStore  # noqa: E402


_NAME = r'"((?:[^"]|"")+)"\."((?:[^"]|"")+)"'
UNLOAD_TARGET = re.compile(r"^UNLOAD \(.*\)\nTO 's3://([^/']+)/([^']*)'", re.DOTALL)
UNLOAD_SOURCE = re.compile(rf"SELECT \* FROM {_NAME}")
DROP_TABLE = re.compile(rf"^DROP TABLE {_NAME}$")
CREATE_TABLE = re.compile(rf"^CREATE TABLE {_NAME}\(")


def _unquote(name: str) -> str:
    return name.replace('""', '"')


@dataclass
class FakeTable:
    columns: list[dict[str, Any]]
    dist_style: int = 0
    constraints: list[dict[str, Any]] = field(default_factory=list)
    size_in_mb: int = 12
    comment: str | None = None
    owner: str = "etl"
    acl: str | None = None
    is_owner: bool = True
    is_superuser: bool = False
    views: list[tuple[str, str]] = field(default_factory=list)
    rows: list[str] = field(default_factory=lambda: ["1|alpha", "2|beta"])


class FakeWarehouse:
    """Scripted warehouse connection backed by an in-memory catalog.

    UNLOAD writes a manifest and one part file into the object store, DROP
    and CREATE move tables in and out of the catalog, and any batch
    containing a statement matching ``fail_batch_on`` rolls back whole.
    """

    def __init__(self, store: LocalObjectStore) -> None:
        self.store = store
        self.tables: dict[tuple[str, str], FakeTable] = {}
        self.dropped: dict[tuple[str, str], FakeTable] = {}
        self.foreign_keys: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.batches: list[list[str]] = []
        self.queries: list[str] = []
        self.fail_batch_on: str | None = None
        self.fail_reads = False

    @staticmethod
    def column(
        position: int,
        name: str,
        data_type: str = "integer",
        not_null: bool = False,
        default_expr: str | None = None,
        encoding: str = "none",
        is_distkey: bool = False,
        sortkey_ord: int = 0,
    ) -> dict[str, Any]:
        return {
            "position": position,
            "name": name,
            "data_type": data_type,
            "not_null": not_null,
            "default_expr": default_expr,
            "encoding": encoding,
            "is_distkey": is_distkey,
            "sortkey_ord": sortkey_ord,
        }

    def add_table(self, schema_name: str, table_name: str, **kwargs: Any) -> FakeTable:
        kwargs.setdefault("columns", [self.column(1, "id"), self.column(2, "name", "character varying(32)")])
        table = FakeTable(**kwargs)
        self.tables[(schema_name, table_name)] = table
        return table

    def add_foreign_key(
        self,
        target: tuple[str, str],
        referencing: tuple[str, str],
        constraint_name: str,
        columns: str | tuple[str, ...],
        ref_columns: str | tuple[str, ...],
    ) -> None:
        """Catalog rows for one foreign key, one row per key column."""
        columns = (columns,) if isinstance(columns, str) else columns
        ref_columns = (ref_columns,) if isinstance(ref_columns, str) else ref_columns
        for position, (column, ref_column) in enumerate(zip(columns, ref_columns), start=1):
            self.foreign_keys.setdefault(target, []).append(
                {
                    "schema_name": referencing[0],
                    "table_name": referencing[1],
                    "constraint_name": constraint_name,
                    "key_position": position,
                    "constraint_columnname": column,
                    "ref_columnname": ref_column,
                    "ref_namespace": target[0],
                    "ref_tablename": target[1],
                }
            )

    @property
    def statements(self) -> list[str]:
        return [statement for batch in self.batches for statement in batch]

    def fetch_all(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        if self.fail_reads:
            raise TransportError("Warehouse query failed: connection reset")
        self.queries.append(sql)
        params = params or {}
        key = (params["schema_name"], params["table_name"])
        table = self.tables.get(key)

        if sql == catalog.FOREIGN_KEYS_SQL:
            return list(self.foreign_keys.get(key, []))
        if table is None:
            return []
        if sql == catalog.TABLE_ACCESS_SQL:
            return [
                {
                    "schema_name": key[0],
                    "table_name": key[1],
                    "owner": table.owner,
                    "is_owner": table.is_owner,
                    "is_superuser": table.is_superuser,
                }
            ]
        if sql == catalog.DEPENDENT_VIEWS_SQL:
            return [{"view_schema": schema, "view_name": view} for schema, view in table.views]
        if sql == catalog.COLUMNS_SQL:
            return [dict(row) for row in table.columns]
        if sql == catalog.DIST_STYLE_SQL:
            return [{"dist_style": table.dist_style}]
        if sql == catalog.TABLE_CONSTRAINTS_SQL:
            return [dict(row) for row in table.constraints]
        if sql == catalog.TABLE_SIZE_SQL:
            return [{"size_in_mb": table.size_in_mb}]
        if sql == catalog.TABLE_COMMENT_SQL:
            return [{"comment": table.comment}]
        if sql == catalog.TABLE_ACL_SQL:
            return [{"owner": table.owner, "acl": table.acl}]
        raise AssertionError(f"Unexpected catalog query: {sql}")

    def run_in_transaction(self, statements: list[str]) -> None:
        batch = list(statements)
        self.batches.append(batch)
        if self.fail_batch_on and any(self.fail_batch_on in statement for statement in batch):
            raise TransactionError("Warehouse transaction rolled back: simulated failure")
        for statement in batch:
            self._apply(statement)

    def _apply(self, statement: str) -> None:
        unload = UNLOAD_TARGET.match(statement)
        if unload:
            bucket, prefix = unload.groups()
            part_key = f"{prefix}0000_part_00"
            source = UNLOAD_SOURCE.search(statement)
            table = self.tables.get((_unquote(source.group(1)), _unquote(source.group(2)))) if source else None
            rows = table.rows if table else []
            self.store.put_text(bucket, part_key, "\n".join(rows))
            manifest = {"entries": [{"url": f"s3://{bucket}/{part_key}"}]}
            self.store.put_text(bucket, f"{prefix}manifest", json.dumps(manifest))
            return
        dropped = DROP_TABLE.match(statement)
        if dropped:
            key = (_unquote(dropped.group(1)), _unquote(dropped.group(2)))
            self.dropped[key] = self.tables.pop(key)
            return
        created = CREATE_TABLE.match(statement)
        if created:
            key = (_unquote(created.group(1)), _unquote(created.group(2)))
            if key in self.tables:
                raise TransactionError(f'Warehouse transaction rolled back: relation "{key[1]}" already exists')
            self.tables[key] = self.dropped.pop(key, None) or FakeTable(columns=[self.column(1, "id")])


class FakeExecutor:
    def __init__(self, warehouse: FakeWarehouse) -> None:
        self.warehouse = warehouse
        self.opened = 0
        self.closed = 0

    @contextmanager
    def dedicated_connection(self) -> Iterator[FakeWarehouse]:
        self.opened += 1
        try:
            yield self.warehouse
        finally:
            self.closed += 1


@pytest.fixture(autouse=True)
def reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def db() -> Iterator[Any]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(tmp_path) -> LocalObjectStore:
    return LocalObjectStore(str(tmp_path / "objects"))


@pytest.fixture
def warehouse(store: LocalObjectStore) -> FakeWarehouse:
    return FakeWarehouse(store)


@pytest.fixture
def executor(warehouse: FakeWarehouse) -> FakeExecutor:
    return FakeExecutor(warehouse)
