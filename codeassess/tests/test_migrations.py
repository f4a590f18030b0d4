import importlib.util
import unittest
from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

import codeassess
from codeassess.database.base import Base
import codeassess.database.models  # noqa: F401

MIGRATION = Path(codeassess.__file__).parent / "alembic" / "versions" / "001_initial_schema.py"


def load_migration():
    spec = importlib.util.spec_from_file_location("initial_schema", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestInitialMigration(unittest.TestCase):
    """Test that the migration builds the schema the models describe."""

    def setUp(self):
        self.migration = load_migration()
        self.engine = create_engine("sqlite://")

    def tearDown(self):
        self.engine.dispose()

    def run_migration(self, step):
        with self.engine.begin() as conn:
            with Operations.context(MigrationContext.configure(conn)):
                step()
            inspector = inspect(conn)
            return {
                table: {c["name"] for c in inspector.get_columns(table)}
                for table in inspector.get_table_names()
            }

    def test_upgrade_matches_models(self):
        tables = self.run_migration(self.migration.upgrade)
        self.assertEqual(set(tables), set(Base.metadata.tables))
        for name, table in Base.metadata.tables.items():
            self.assertEqual(tables[name], {c.name for c in table.columns}, name)

    def test_downgrade_drops_everything(self):
        self.run_migration(self.migration.upgrade)
        self.assertEqual(self.run_migration(self.migration.downgrade), {})

    def test_first_revision(self):
        self.assertEqual(self.migration.revision, "001")
        self.assertIsNone(self.migration.down_revision)
