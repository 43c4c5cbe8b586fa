"""Schema (DDL) and permission exporters.

``SchemaExporter`` renders a table's CREATE TABLE statement from the
warehouse catalog in a fixed layout::

    CREATE TABLE "s"."t"(
    \t"id" integer NOT NULL ENCODE raw,
    \tPRIMARY KEY ("id")
    )
    DISTSTYLE key
    DISTKEY ("id")
    COMPOUND SORTKEY ("id")
    ;

``PermissionExporter`` renders an ownership + GRANT replay script from the
table's owner and ACL.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from typing import Any

import structlog

from backend.app.errors import SchemaExportError
from backend.app.schemas.tables import SchemaOverrides, TableRef
from backend.app.services import catalog
from backend.app.services.object_store import ObjectStore
from backend.app.services.sql_safety import full_table_name, quote_ident
from backend.app.services.warehouse import WarehouseConnection


logger = structlog.get_logger()

IDENTITY_PATTERN = re.compile(r"""identity"?\(\s*\d+\s*,\s*\d+\s*,\s*'(-?\d+)\s*,\s*(-?\d+)'""", re.IGNORECASE)

PRIVILEGES = OrderedDict(
    [
        ("r", "SELECT"),
        ("a", "INSERT"),
        ("w", "UPDATE"),
        ("d", "DELETE"),
        ("R", "RULE"),
        ("x", "REFERENCES"),
        ("t", "TRIGGER"),
        ("D", "DROP"),
    ]
)


class SchemaExporter:
    def __init__(self, conn: WarehouseConnection, store: ObjectStore) -> None:
        self._conn = conn
        self._store = store

    def export(
        self,
        table: TableRef,
        bucket: str,
        key: str,
        overrides: SchemaOverrides | None = None,
    ) -> str:
        ddl = self.render(table, overrides or SchemaOverrides())
        self._store.put_text(bucket, key, ddl)
        logger.info("schema_exported", table=str(table), bucket=bucket, key=key)
        return ddl

    def render(self, table: TableRef, overrides: SchemaOverrides, _seen: set[TableRef] | None = None) -> str:
        seen = _seen if _seen is not None else set()
        seen.add(table)

        column_rows = catalog.columns(self._conn, table)
        if not column_rows:
            raise SchemaExportError(f"Table {table} does not exist!", {"table": str(table)})
        constraints = _group_constraints(catalog.table_constraints(self._conn, table))

        dependencies = ""
        if not overrides.skip_dependencies:
            for constraint in constraints.values():
                ref = constraint.get("ref_table")
                if constraint["type"] == "f" and ref is not None and ref not in seen:
                    dependencies += self.render(ref, overrides, seen)

        lines = [_column_definition(row, overrides.no_column_encoding) for row in column_rows]
        lines.extend(_constraint_definition(constraint) for constraint in constraints.values())
        body = ",\n".join(f"\t{line}" for line in lines)

        keys = catalog.sort_and_dist_keys(column_rows)
        dist_style = overrides.diststyle_override or catalog.dist_style(self._conn, table) or "even"
        dist_key = overrides.distkey_override or keys["dist_key"]
        if overrides.distkey_override and not overrides.diststyle_override:
            dist_style = "key"
        sort_keys = list(overrides.sortkeys_override) if overrides.sortkeys_override is not None else keys["sort_keys"]
        sort_style = overrides.sortstyle_override or keys["sort_style"] or "compound"

        ddl = f"CREATE TABLE {table.quoted}(\n{body}\n)\nDISTSTYLE {dist_style.lower()}"
        if dist_style.lower() == "key" and dist_key:
            ddl += f"\nDISTKEY ({quote_ident(dist_key)})"
        if sort_keys:
            ddl += f"\n{sort_style.upper()} SORTKEY ({', '.join(quote_ident(k) for k in sort_keys)})"
        return dependencies + ddl + "\n;"


def _column_definition(row: dict[str, Any], no_column_encoding: bool) -> str:
    parts = [quote_ident(row["name"]), row["data_type"], "NOT NULL" if catalog.truthy(row.get("not_null")) else "NULL"]
    default_expr = row.get("default_expr")
    if default_expr:
        identity = IDENTITY_PATTERN.search(default_expr)
        if identity:
            parts.append(f"IDENTITY({identity.group(1)},{identity.group(2)})")
        else:
            parts.append(f"DEFAULT {default_expr}")
    if not no_column_encoding:
        encoding = row.get("encoding") or "none"
        parts.append(f"ENCODE {'raw' if encoding == 'none' else encoding}")
    return " ".join(parts)


def _group_constraints(rows: list[dict[str, Any]]) -> "OrderedDict[str, dict[str, Any]]":
    grouped: OrderedDict[str, dict[str, Any]] = OrderedDict()
    for row in rows:
        grouped.setdefault(row["constraint_name"], {"type": row["constraint_type"], "pairs": []})
    # key columns pair up by position, not by column number
    for row in sorted(rows, key=lambda row: int(row.get("key_position") or 0)):
        grouped[row["constraint_name"]]["pairs"].append(row)

    for entry in grouped.values():
        pairs = entry.pop("pairs")
        entry["columns"] = [row["column_name"] for row in pairs]
        entry["ref_table"] = None
        entry["ref_columns"] = []
        if entry["type"] == "f":
            entry["ref_table"] = TableRef(pairs[0]["ref_namespace"], pairs[0]["ref_tablename"])
            entry["ref_columns"] = [row["ref_columnname"] for row in pairs]
    return grouped


def _constraint_definition(constraint: dict[str, Any]) -> str:
    columns = ", ".join(quote_ident(name) for name in constraint["columns"])
    if constraint["type"] == "p":
        return f"PRIMARY KEY ({columns})"
    if constraint["type"] == "u":
        return f"UNIQUE ({columns})"
    ref: TableRef = constraint["ref_table"]
    ref_columns = ", ".join(quote_ident(name) for name in constraint["ref_columns"])
    return f"FOREIGN KEY ({columns}) REFERENCES {ref.quoted} ({ref_columns})"


class PermissionExporter:
    def __init__(self, conn: WarehouseConnection, store: ObjectStore) -> None:
        self._conn = conn
        self._store = store

    def export(self, table: TableRef, bucket: str, key: str) -> str:
        script = self.render(table)
        self._store.put_text(bucket, key, script)
        logger.info("permissions_exported", table=str(table), bucket=bucket, key=key)
        return script

    def render(self, table: TableRef) -> str:
        row = catalog.table_acl(self._conn, table)
        if row is None:
            raise SchemaExportError(f"Table {table} does not exist!", {"table": str(table)})

        name = full_table_name(table.schema_name, table.table_name)
        statements = [f"ALTER TABLE {name} OWNER TO {quote_ident(row['owner'])}"]
        for grantee, is_group, privileges in parse_acl(row.get("acl")):
            if not privileges:
                continue
            if grantee is None:
                target = "PUBLIC"
            elif is_group:
                target = f"GROUP {quote_ident(grantee)}"
            else:
                target = quote_ident(grantee)
            statements.append(f"GRANT {', '.join(privileges)} ON {name} TO {target}")
        return "\n".join(f"{statement};" for statement in statements)


def parse_acl(acl: str | list[str] | None) -> list[tuple[str | None, bool, list[str]]]:
    """Parse ACL entries such as ``group analysts=arwd/owner``.

    Returns ``(grantee, is_group, privileges)`` tuples; ``grantee`` is
    ``None`` for PUBLIC. Grant-option markers (``*``) are ignored.
    """
    if not acl:
        return []
    if isinstance(acl, str):
        entries = [entry for entry in re.split(r"[\n,]", acl.strip().strip("{}")) if entry.strip()]
    else:
        entries = list(acl)

    parsed: list[tuple[str | None, bool, list[str]]] = []
    for entry in entries:
        entry = entry.strip().strip('"') if entry.strip().startswith('"group ') else entry.strip()
        grant_part = entry.rsplit("/", 1)[0]
        grantee_part, _, letters = grant_part.rpartition("=")
        is_group = grantee_part.startswith("group ")
        if is_group:
            grantee_part = grantee_part[len("group ") :]
        grantee = _unquote(grantee_part) or None
        privileges = [label for letter, label in PRIVILEGES.items() if letter in letters]
        parsed.append((grantee, is_group, privileges))
    return parsed


def _unquote(name: str) -> str:
    name = name.strip()
    if len(name) >= 2 and name.startswith('"') and name.endswith('"'):
        return name[1:-1].replace('""', '"')
    return name
