"""Warehouse catalog queries.

All filters are bound parameters. Schema and table names are compared
after ``trim`` because the warehouse stores catalog names padded.
Constraint queries return one row per key column, numbered by
``key_position`` so multi-column keys keep their column pairing.
"""

from __future__ import annotations

from typing import Any

from backend.app.errors import SchemaExportError
from backend.app.schemas.tables import TableRef
from backend.app.services.warehouse import WarehouseConnection


TABLE_ACCESS_SQL = """
SELECT trim(n.nspname) AS schema_name,
       trim(c.relname) AS table_name,
       trim(pg_get_userbyid(c.relowner)) AS owner,
       pg_get_userbyid(c.relowner) = current_user AS is_owner,
       (SELECT u.usesuper FROM pg_user u WHERE u.usename = current_user) AS is_superuser
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE c.relkind = 'r'
  AND trim(n.nspname) = :schema_name
  AND trim(c.relname) = :table_name
"""

DEPENDENT_VIEWS_SQL = """
SELECT DISTINCT trim(v_ns.nspname) AS view_schema,
       trim(v.relname) AS view_name
FROM pg_depend d
JOIN pg_rewrite r ON r.oid = d.objid
JOIN pg_class v ON v.oid = r.ev_class
JOIN pg_namespace v_ns ON v_ns.oid = v.relnamespace
JOIN pg_class t ON t.oid = d.refobjid
JOIN pg_namespace t_ns ON t_ns.oid = t.relnamespace
WHERE d.classid = 'pg_rewrite'::regclass
  AND v.oid <> t.oid
  AND trim(t_ns.nspname) = :schema_name
  AND trim(t.relname) = :table_name
ORDER BY 1, 2
"""

FOREIGN_KEYS_SQL = """
SELECT trim(n.nspname) AS schema_name,
       trim(c.relname) AS table_name,
       trim(con.conname) AS constraint_name,
       k.i AS key_position,
       trim(a.attname) AS constraint_columnname,
       trim(ref_a.attname) AS ref_columnname,
       trim(ref_n.nspname) AS ref_namespace,
       trim(ref_c.relname) AS ref_tablename
FROM pg_constraint con
JOIN pg_class c ON c.oid = con.conrelid
JOIN pg_namespace n ON n.oid = c.relnamespace
JOIN pg_class ref_c ON ref_c.oid = con.confrelid
JOIN pg_namespace ref_n ON ref_n.oid = ref_c.relnamespace
CROSS JOIN generate_series(1, 32) AS k(i)
LEFT JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = con.conkey[k.i]
LEFT JOIN pg_attribute ref_a ON ref_a.attrelid = con.confrelid AND ref_a.attnum = con.confkey[k.i]
WHERE con.contype = 'f'
  AND k.i <= array_upper(con.conkey, 1)
  AND trim(ref_n.nspname) = :schema_name
  AND trim(ref_c.relname) = :table_name
ORDER BY 1, 2, 3, 4
"""

COLUMNS_SQL = """
SELECT a.attnum AS position,
       trim(a.attname) AS name,
       format_type(a.atttypid, a.atttypmod) AS data_type,
       a.attnotnull AS not_null,
       pg_get_expr(ad.adbin, ad.adrelid) AS default_expr,
       format_encoding(a.attencodingtype::integer) AS encoding,
       a.attisdistkey AS is_distkey,
       a.attsortkeyord AS sortkey_ord
FROM pg_attribute a
JOIN pg_class c ON c.oid = a.attrelid
JOIN pg_namespace n ON n.oid = c.relnamespace
LEFT JOIN pg_attrdef ad ON ad.adrelid = a.attrelid AND ad.adnum = a.attnum
WHERE a.attnum > 0
  AND NOT a.attisdropped
  AND trim(n.nspname) = :schema_name
  AND trim(c.relname) = :table_name
ORDER BY a.attnum
"""

DIST_STYLE_SQL = """
SELECT c.reldiststyle AS dist_style
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE trim(n.nspname) = :schema_name
  AND trim(c.relname) = :table_name
"""

TABLE_CONSTRAINTS_SQL = """
SELECT trim(con.conname) AS constraint_name,
       con.contype AS constraint_type,
       k.i AS key_position,
       trim(a.attname) AS column_name,
       trim(ref_n.nspname) AS ref_namespace,
       trim(ref_c.relname) AS ref_tablename,
       trim(ref_a.attname) AS ref_columnname
FROM pg_constraint con
JOIN pg_class c ON c.oid = con.conrelid
JOIN pg_namespace n ON n.oid = c.relnamespace
CROSS JOIN generate_series(1, 32) AS k(i)
JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = con.conkey[k.i]
LEFT JOIN pg_class ref_c ON ref_c.oid = con.confrelid
LEFT JOIN pg_namespace ref_n ON ref_n.oid = ref_c.relnamespace
LEFT JOIN pg_attribute ref_a ON ref_a.attrelid = con.confrelid AND ref_a.attnum = con.confkey[k.i]
WHERE con.contype IN ('p', 'u', 'f')
  AND k.i <= array_upper(con.conkey, 1)
  AND trim(n.nspname) = :schema_name
  AND trim(c.relname) = :table_name
ORDER BY con.contype DESC, con.conname, k.i
"""

TABLE_SIZE_SQL = """
SELECT size AS size_in_mb
FROM svv_table_info
WHERE trim("schema") = :schema_name
  AND trim("table") = :table_name
"""

TABLE_COMMENT_SQL = """
SELECT obj_description(c.oid, 'pg_class') AS comment
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE trim(n.nspname) = :schema_name
  AND trim(c.relname) = :table_name
"""

TABLE_ACL_SQL = """
SELECT trim(pg_get_userbyid(c.relowner)) AS owner,
       array_to_string(c.relacl, '\n') AS acl
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE trim(n.nspname) = :schema_name
  AND trim(c.relname) = :table_name
"""

DIST_STYLES = {0: "even", 1: "key", 8: "all", 9: "auto", 10: "auto", 11: "auto", 12: "auto"}


def _params(table: TableRef) -> dict[str, Any]:
    return {"schema_name": table.schema_name, "table_name": table.table_name}


def _first(rows: list[dict[str, Any]]) -> dict[str, Any] | None:
    return rows[0] if rows else None


def table_access(conn: WarehouseConnection, table: TableRef) -> dict[str, Any] | None:
    return _first(conn.fetch_all(TABLE_ACCESS_SQL, _params(table)))


def dependent_views(conn: WarehouseConnection, table: TableRef) -> list[str]:
    rows = conn.fetch_all(DEPENDENT_VIEWS_SQL, _params(table))
    return [f"{row['view_schema']}.{row['view_name']}" for row in rows]


def foreign_key_rows(conn: WarehouseConnection, table: TableRef) -> list[dict[str, Any]]:
    return conn.fetch_all(FOREIGN_KEYS_SQL, _params(table))


def columns(conn: WarehouseConnection, table: TableRef) -> list[dict[str, Any]]:
    rows = conn.fetch_all(COLUMNS_SQL, _params(table))
    return sorted(rows, key=lambda row: int(row["position"]))


def dist_style(conn: WarehouseConnection, table: TableRef) -> str | None:
    row = _first(conn.fetch_all(DIST_STYLE_SQL, _params(table)))
    if row is None or row["dist_style"] is None:
        return None
    code = int(row["dist_style"])
    if code not in DIST_STYLES:
        raise SchemaExportError(
            f"Unsupported distribution style {code} for {table}!",
            {"table": str(table), "dist_style": code},
        )
    return DIST_STYLES[code]


def table_constraints(conn: WarehouseConnection, table: TableRef) -> list[dict[str, Any]]:
    return conn.fetch_all(TABLE_CONSTRAINTS_SQL, _params(table))


def table_size(conn: WarehouseConnection, table: TableRef) -> int | None:
    row = _first(conn.fetch_all(TABLE_SIZE_SQL, _params(table)))
    if row is None or row["size_in_mb"] is None:
        return None
    return int(row["size_in_mb"])


def table_comment(conn: WarehouseConnection, table: TableRef) -> str | None:
    row = _first(conn.fetch_all(TABLE_COMMENT_SQL, _params(table)))
    return None if row is None else row["comment"]


def table_acl(conn: WarehouseConnection, table: TableRef) -> dict[str, Any] | None:
    return _first(conn.fetch_all(TABLE_ACL_SQL, _params(table)))


def sort_and_dist_keys(column_rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Sort keys in key order plus the distribution key column, if any.

    Interleaved sort keys carry negative ordinals in the catalog.
    """
    sorted_cols = sorted(
        (row for row in column_rows if int(row.get("sortkey_ord") or 0) != 0),
        key=lambda row: abs(int(row["sortkey_ord"])),
    )
    interleaved = any(int(row["sortkey_ord"]) < 0 for row in sorted_cols)
    dist_key = next((row["name"] for row in column_rows if truthy(row.get("is_distkey"))), None)
    return {
        "sort_keys": [row["name"] for row in sorted_cols],
        "sort_style": None if not sorted_cols else ("interleaved" if interleaved else "compound"),
        "dist_key": dist_key,
    }


def truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in {"t", "true", "1"}
    return bool(value)
