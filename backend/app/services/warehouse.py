from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Protocol

import structlog
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from backend.app.errors import TransactionError, TransportError


logger = structlog.get_logger()


class WarehouseConnection(Protocol):
    def fetch_all(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]: ...

    def run_in_transaction(self, statements: Sequence[str]) -> None: ...


def _engine_error_text(exc: SQLAlchemyError) -> str:
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return str(exc.orig).strip()
    return str(exc)


class SqlAlchemyWarehouseConnection:
    """One dedicated warehouse connection, held for a whole archive/restore run."""

    def __init__(self, connection: Connection) -> None:
        self._connection = connection

    def fetch_all(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            with self._connection.begin():
                result = self._connection.execute(text(sql), params or {})
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as exc:
            raise TransportError(f"Warehouse query failed: {_engine_error_text(exc)}") from exc

    def run_in_transaction(self, statements: Sequence[str]) -> None:
        # generated statements carry literal text, so they bypass bind-parameter parsing
        try:
            with self._connection.begin():
                for statement in statements:
                    self._connection.exec_driver_sql(statement)
        except SQLAlchemyError as exc:
            raise TransactionError(
                f"Warehouse transaction rolled back: {_engine_error_text(exc)}"
            ) from exc


class WarehouseExecutor:
    def __init__(self, url: str, connect_timeout: int | None = None) -> None:
        connect_args: dict[str, object] = {}
        if connect_timeout and url.startswith(("postgresql", "redshift")):
            connect_args["connect_timeout"] = connect_timeout
        self.engine = create_engine(url, poolclass=NullPool, future=True, connect_args=connect_args)

    @contextmanager
    def dedicated_connection(self) -> Iterator[SqlAlchemyWarehouseConnection]:
        try:
            connection = self.engine.connect()
        except SQLAlchemyError as exc:
            raise TransportError(f"Could not connect to warehouse: {_engine_error_text(exc)}") from exc
        try:
            yield SqlAlchemyWarehouseConnection(connection)
        finally:
            connection.close()
            logger.debug("warehouse_connection_released")
