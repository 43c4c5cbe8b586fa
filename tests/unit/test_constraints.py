import pytest

from backend.app.errors import ConsistencyError
from backend.app.modules.constraints.service import ConstraintResolver
from backend.app.schemas.tables import TableRef
from backend.app.services import catalog


def test_resolver_builds_drop_and_add_statements(warehouse) -> None:
    warehouse.add_foreign_key(("s", "t"), ("s", "orders"), "orders_t_fk", "t_id", "id")
    warehouse.add_foreign_key(("s", "t"), ("other", "items"), "items_t_fk", "t_id", "id")

    plan = ConstraintResolver(warehouse).resolve(TableRef("s", "t"))

    assert plan.drop_statements == [
        'ALTER TABLE "s"."orders" DROP CONSTRAINT "orders_t_fk"',
        'ALTER TABLE "other"."items" DROP CONSTRAINT "items_t_fk"',
    ]
    assert plan.add_statements[0] == (
        'ALTER TABLE "s"."orders" ADD CONSTRAINT "orders_t_fk" FOREIGN KEY ("t_id") REFERENCES "s"."t" ("id")'
    )
    assert set(plan.edges_by_table) == {"s.orders", "other.items"}
    assert plan.add_fragment().count(";\n") == 2


def test_resolver_groups_multi_column_constraints(warehouse) -> None:
    warehouse.add_foreign_key(("s", "t"), ("s", "lines"), "lines_fk", ("a", "b"), ("x", "y"))

    plan = ConstraintResolver(warehouse).resolve(TableRef("s", "t"))

    assert len(plan.drop_statements) == 1
    assert plan.add_statements == [
        'ALTER TABLE "s"."lines" ADD CONSTRAINT "lines_fk" FOREIGN KEY ("a", "b") REFERENCES "s"."t" ("x", "y")'
    ]


def test_resolver_pairs_columns_by_key_position(warehouse) -> None:
    warehouse.add_foreign_key(("s", "t"), ("s", "lines"), "lines_fk", ("b", "a"), ("y", "x"))
    warehouse.foreign_keys[("s", "t")].reverse()

    plan = ConstraintResolver(warehouse).resolve(TableRef("s", "t"))

    assert plan.add_statements == [
        'ALTER TABLE "s"."lines" ADD CONSTRAINT "lines_fk" FOREIGN KEY ("b", "a") REFERENCES "s"."t" ("y", "x")'
    ]
    assert [edge.position for edge in plan.edges] == [1, 2]


def test_foreign_key_query_expands_every_key_position() -> None:
    assert "con.conkey[k.i]" in catalog.FOREIGN_KEYS_SQL
    assert "con.confkey[k.i]" in catalog.FOREIGN_KEYS_SQL
    assert "conkey[1]" not in catalog.FOREIGN_KEYS_SQL
    assert "confkey[1]" not in catalog.TABLE_CONSTRAINTS_SQL
    assert catalog.TABLE_CONSTRAINTS_SQL.rstrip().endswith("ORDER BY con.contype DESC, con.conname, k.i")


def test_resolver_skips_self_references(warehouse) -> None:
    warehouse.add_foreign_key(("s", "t"), ("s", "t"), "t_parent_fk", "parent_id", "id")

    plan = ConstraintResolver(warehouse).resolve(TableRef("s", "t"))

    assert plan.drop_statements == []
    assert plan.add_fragment() == ""


def test_resolver_rejects_incomplete_edges(warehouse) -> None:
    warehouse.add_foreign_key(("s", "t"), ("s", "orders"), "orders_t_fk", "t_id", "")

    with pytest.raises(ConsistencyError) as exc_info:
        ConstraintResolver(warehouse).resolve(TableRef("s", "t"))

    assert exc_info.value.message == "Missing constraint info"
    assert exc_info.value.details["missing_fields"] == ["ref_columnname"]
