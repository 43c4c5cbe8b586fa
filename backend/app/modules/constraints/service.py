from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field

from backend.app.errors import ConsistencyError
from backend.app.schemas.tables import TableRef
from backend.app.services import catalog
from backend.app.services.sql_safety import full_table_name, quote_ident
from backend.app.services.warehouse import WarehouseConnection


REQUIRED_EDGE_FIELDS = (
    "schema_name",
    "table_name",
    "constraint_name",
    "constraint_columnname",
    "ref_columnname",
)


@dataclass(frozen=True)
class ConstraintEdge:
    schema_name: str
    table_name: str
    constraint_name: str
    column_name: str
    ref_column_name: str
    position: int = 0


@dataclass
class ConstraintPlan:
    """Foreign keys pointing at a table, grouped by the referencing table."""

    target: TableRef
    edges_by_table: dict[str, list[ConstraintEdge]] = field(default_factory=dict)
    drop_statements: list[str] = field(default_factory=list)
    add_statements: list[str] = field(default_factory=list)

    @property
    def edges(self) -> list[ConstraintEdge]:
        return [edge for edges in self.edges_by_table.values() for edge in edges]

    def drop_fragment(self) -> str:
        return "".join(f"{statement};\n" for statement in self.drop_statements)

    def add_fragment(self) -> str:
        return "".join(f"{statement};\n" for statement in self.add_statements)


class ConstraintResolver:
    def __init__(self, conn: WarehouseConnection) -> None:
        self._conn = conn

    def resolve(self, target: TableRef) -> ConstraintPlan:
        plan = ConstraintPlan(target=target)
        grouped: OrderedDict[tuple[str, str, str], list[ConstraintEdge]] = OrderedDict()

        for row in catalog.foreign_key_rows(self._conn, target):
            missing = [name for name in REQUIRED_EDGE_FIELDS if not row.get(name)]
            if missing:
                raise ConsistencyError(
                    "Missing constraint info",
                    {"missing_fields": missing, "constraint_name": row.get("constraint_name")},
                )
            edge = ConstraintEdge(
                schema_name=row["schema_name"],
                table_name=row["table_name"],
                constraint_name=row["constraint_name"],
                column_name=row["constraint_columnname"],
                ref_column_name=row["ref_columnname"],
                position=int(row.get("key_position") or 0),
            )
            # the table's own self-references are dropped and recreated with its DDL
            if (edge.schema_name, edge.table_name) == (target.schema_name, target.table_name):
                continue
            key = (edge.schema_name, edge.table_name, edge.constraint_name)
            grouped.setdefault(key, []).append(edge)

        for (schema_name, table_name, constraint_name), edges in grouped.items():
            edges.sort(key=lambda edge: edge.position)
            referencing = f"{schema_name}.{table_name}"
            plan.edges_by_table.setdefault(referencing, []).extend(edges)
            plan.drop_statements.append(_drop_constraint(schema_name, table_name, constraint_name))
            plan.add_statements.append(_add_constraint(target, schema_name, table_name, constraint_name, edges))
        return plan


def _drop_constraint(schema_name: str, table_name: str, constraint_name: str) -> str:
    return f"ALTER TABLE {full_table_name(schema_name, table_name)} DROP CONSTRAINT {quote_ident(constraint_name)}"


def _add_constraint(
    target: TableRef,
    schema_name: str,
    table_name: str,
    constraint_name: str,
    edges: list[ConstraintEdge],
) -> str:
    columns = ", ".join(quote_ident(edge.column_name) for edge in edges)
    ref_columns = ", ".join(quote_ident(edge.ref_column_name) for edge in edges)
    return (
        f"ALTER TABLE {full_table_name(schema_name, table_name)} "
        f"ADD CONSTRAINT {quote_ident(constraint_name)} "
        f"FOREIGN KEY ({columns}) REFERENCES {target.quoted} ({ref_columns})"
    )
