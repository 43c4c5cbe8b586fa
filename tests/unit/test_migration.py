import importlib.util
from pathlib import Path

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations


MIGRATION = Path(__file__).resolve().parents[2] / "backend/app/db/migrations/versions/0001_initial.py"


def _load_migration():
    spec = importlib.util.spec_from_file_location("migration_0001_initial", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_initial_migration_creates_and_drops_tables() -> None:
    migration = _load_migration()
    engine = sa.create_engine("sqlite://")

    with engine.begin() as connection:
        context = MigrationContext.configure(connection)
        with Operations.context(context):
            migration.upgrade()
        tables = set(sa.inspect(connection).get_table_names())
        assert {"table_archives", "table_reports", "table_locks", "audit_log", "jobs"} <= tables
        uniques = sa.inspect(connection).get_unique_constraints("table_archives")
        assert [constraint["column_names"] for constraint in uniques] == [["schema_name", "table_name"]]

        with Operations.context(context):
            migration.downgrade()
        assert sa.inspect(connection).get_table_names() == []
