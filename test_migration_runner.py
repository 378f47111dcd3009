#!/usr/bin/env python3
"""
Schema Migrator Runner Tests

Exercises migration runs against temporary SQLite databases:
- Ordered application and idempotent re-runs
- Version sequence enforcement
- Checksum and missing-file integrity checks
- Fail-stop behaviour and per-migration atomicity
- Python migrations, rollback and status reporting
"""

import os
import sys
import unittest
import tempfile
from pathlib import Path
from unittest.mock import patch

# Setup test environment
sys.path.insert(0, str(Path(__file__).parent / "src"))

from sqlalchemy import create_engine

from schema_migrator.database.config import DatabaseConfig
from schema_migrator.database.gateway import DatabaseGateway
from schema_migrator.error_handling import (ChecksumMismatchError, DuplicateVersionError,
                                            IrreversibleMigrationError, MigrationApplyError,
                                            MigrationLoadError, MissingMigrationFileError,
                                            RollbackError, SequenceError, describe_error)
from schema_migrator.migrations.discovery import MigrationFile, file_checksum
from schema_migrator.migrations.migration_runner import MigrationRunner, plan_pending
from schema_migrator.migrations.registry import MigrationRegistry

CONFIG_ENV_KEYS = (
    "DATABASE_URL", "ENVIRONMENT", "DB_SCHEMA", "MIGRATIONS_DIR", "MIGRATION_TABLE",
    "MIGRATION_LOCK", "TENANT_QUERY", "TENANT_SCHEMA_PREFIX", "DB_ECHO",
)

CREATE_WIDGET = "CREATE TABLE widget (id INTEGER PRIMARY KEY, name TEXT NOT NULL);\n"
ADD_COLOR = "ALTER TABLE widget ADD COLUMN color TEXT;\n"
SEED_WIDGETS = "INSERT INTO widget (name, color) VALUES ('bolt', 'grey');\n"


class MigrationTestBase(unittest.TestCase):
    """Base class with a temporary SQLite database and migrations directory"""

    def setUp(self):
        """Setup isolated database and environment"""
        env_patcher = patch.dict(os.environ)
        env_patcher.start()
        self.addCleanup(env_patcher.stop)
        for key in CONFIG_ENV_KEYS:
            os.environ.pop(key, None)

        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.db_path = self.root / "test.db"
        self.migrations_root = self.root / "migrations"
        self.migrations_dir = self.migrations_root / "main"
        self.migrations_dir.mkdir(parents=True)

        self.config = DatabaseConfig(
            database_url=f"sqlite:///{self.db_path}",
            migrations_root=str(self.migrations_root),
        )
        self.gateway = DatabaseGateway.from_config(self.config).open()

    def tearDown(self):
        """Cleanup test environment"""
        self.gateway.close()
        self.temp_dir.cleanup()

    def write(self, name: str, content: str, directory: Path = None) -> Path:
        path = (directory or self.migrations_dir) / name
        path.write_text(content, encoding="utf-8")
        return path

    def runner(self, schema: str = "main", directory: Path = None,
               registry: MigrationRegistry = None) -> MigrationRunner:
        return MigrationRunner(self.gateway, schema, directory or self.migrations_dir,
                               registry=registry)

    def ledger_rows(self, schema: str = "main"):
        return self.gateway.execute(
            f'SELECT version, name, content_hash, applied_at FROM "{schema}".migrations ORDER BY version'
        )

    def ledger_versions(self, schema: str = "main"):
        return [row["version"] for row in self.ledger_rows(schema)]

    def table_exists(self, table: str, schema: str = "main") -> bool:
        rows = self.gateway.execute(
            f"SELECT name FROM \"{schema}\".sqlite_master WHERE type = 'table' AND name = :name",
            {"name": table},
        )
        return bool(rows)

    def columns(self, table: str):
        return [row["name"] for row in self.gateway.execute(f"PRAGMA main.table_info({table})")]


class TestPlanPending(unittest.TestCase):
    """Sequence planning without a database"""

    def _files(self, *names):
        return [MigrationFile(name=n, version=int(n.split("-")[0]), path=Path(n)) for n in names]

    def test_fresh_namespace_starts_at_one(self):
        files = self._files("001-a.sql", "002-b.sql", "003-c.py")
        pending = plan_pending(files, [])
        self.assertEqual([m.version for m in pending], [1, 2, 3])

    def test_applied_versions_are_skipped(self):
        files = self._files("001-a.sql", "002-b.sql", "003-c.sql")
        pending = plan_pending(files, [1, 2])
        self.assertEqual([m.name for m in pending], ["003-c.sql"])

    def test_nothing_pending(self):
        files = self._files("001-a.sql", "002-b.sql")
        self.assertEqual(plan_pending(files, [1, 2]), [])

    def test_gap_is_rejected(self):
        files = self._files("001-a.sql", "002-b.sql", "004-d.sql")
        with self.assertRaises(SequenceError) as ctx:
            plan_pending(files, [1, 2])
        self.assertEqual(ctx.exception.expected_version, 3)
        self.assertEqual(ctx.exception.actual_name, "004-d.sql")
        self.assertIn("expected 3, but got 004-d.sql", str(ctx.exception))

    def test_version_below_applied_maximum_is_rejected(self):
        files = self._files("001-a.sql", "002-b.sql", "003-c.sql")
        with self.assertRaises(SequenceError) as ctx:
            plan_pending(files, [1, 3])
        self.assertEqual(ctx.exception.expected_version, 4)
        self.assertEqual(ctx.exception.actual_name, "002-b.sql")


class TestMigrationRun(MigrationTestBase):
    """Applying migrations to the default namespace"""

    def test_fresh_namespace_applies_in_order(self):
        first = self.write("001-create-widget.sql", CREATE_WIDGET)
        second = self.write("002-add-color.sql", ADD_COLOR)

        result = self.runner().run()

        self.assertTrue(result["success"])
        self.assertEqual(result["schema"], "main")
        self.assertEqual(result["current_version"], 2)
        self.assertEqual([m["name"] for m in result["applied_migrations"]],
                         ["001-create-widget.sql", "002-add-color.sql"])

        rows = self.ledger_rows()
        self.assertEqual([row["version"] for row in rows], [1, 2])
        self.assertEqual(rows[0]["content_hash"], file_checksum(first))
        self.assertEqual(rows[1]["content_hash"], file_checksum(second))
        self.assertIsNotNone(rows[0]["applied_at"])
        self.assertIn("color", self.columns("widget"))

    def test_second_run_is_idempotent(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("002-add-color.sql", ADD_COLOR)
        self.runner().run()
        before = self.ledger_rows()

        result = self.runner().run()

        self.assertEqual(result["applied_migrations"], [])
        self.assertEqual(result["current_version"], 2)
        self.assertEqual(self.ledger_rows(), before)

    def test_new_migration_is_picked_up(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.runner().run()
        self.write("002-add-color.sql", ADD_COLOR)

        result = self.runner().run()

        self.assertEqual([m["version"] for m in result["applied_migrations"]], [2])
        self.assertEqual(self.ledger_versions(), [1, 2])

    def test_skipped_version_applies_nothing(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("002-add-color.sql", ADD_COLOR)
        self.runner().run()
        self.write("004-create-gadget.sql", "CREATE TABLE gadget (id INTEGER);")

        with self.assertRaises(SequenceError) as ctx:
            self.runner().run()

        self.assertEqual(ctx.exception.expected_version, 3)
        self.assertEqual(ctx.exception.actual_name, "004-create-gadget.sql")
        self.assertFalse(self.table_exists("gadget"))
        self.assertEqual(self.ledger_versions(), [1, 2])

    def test_gap_on_fresh_namespace_applies_nothing(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("003-add-color.sql", ADD_COLOR)

        with self.assertRaises(SequenceError):
            self.runner().run()

        self.assertFalse(self.table_exists("widget"))
        self.assertEqual(self.ledger_versions(), [])

    def test_duplicate_versions_are_rejected(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("001_create-gadget.sql", "CREATE TABLE gadget (id INTEGER);")

        with self.assertRaises(DuplicateVersionError) as ctx:
            self.runner().run()

        self.assertEqual(ctx.exception.version, 1)
        self.assertEqual(ctx.exception.names, ["001-create-widget.sql", "001_create-gadget.sql"])
        self.assertFalse(self.table_exists("widget"))

    def test_stray_files_are_ignored(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("README.md", "# notes")
        self.write("cleanup.sql", "DROP TABLE widget;")
        self.write("000-zero.sql", "DROP TABLE widget;")

        result = self.runner().run()

        self.assertEqual(len(result["applied_migrations"]), 1)
        self.assertTrue(self.table_exists("widget"))

    def test_missing_directory_is_created(self):
        directory = self.migrations_root / "reports"

        result = self.runner(directory=directory).run()

        self.assertTrue(directory.is_dir())
        self.assertEqual(result["applied_migrations"], [])
        self.assertIsNone(result["current_version"])

    def test_versions_stay_contiguous_across_runs(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.runner().run()
        self.write("002-add-color.sql", ADD_COLOR)
        self.write("003-seed-widgets.sql", SEED_WIDGETS)
        self.runner().run()

        versions = self.ledger_versions()
        self.assertEqual(versions, list(range(1, len(versions) + 1)))


class TestMigrationIntegrity(MigrationTestBase):
    """Detecting edited and deleted applied migrations"""

    def test_edited_migration_blocks_the_run(self):
        first = self.write("001-create-widget.sql", CREATE_WIDGET)
        self.runner().run()
        original_hash = file_checksum(first)
        self.write("001-create-widget.sql", CREATE_WIDGET + "-- tweaked\n")
        self.write("002-add-color.sql", ADD_COLOR)

        with self.assertRaises(ChecksumMismatchError) as ctx:
            self.runner().run()

        self.assertEqual(ctx.exception.name, "001-create-widget.sql")
        self.assertEqual(ctx.exception.expected, original_hash)
        self.assertEqual(ctx.exception.found, file_checksum(first))
        self.assertNotIn("color", self.columns("widget"))
        self.assertEqual(self.ledger_versions(), [1])

    def test_deleted_migration_blocks_the_run(self):
        first = self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("002-add-color.sql", ADD_COLOR)
        self.runner().run()
        first.unlink()

        with self.assertRaises(MissingMigrationFileError) as ctx:
            self.runner().run()

        self.assertEqual(ctx.exception.name, "001-create-widget.sql")
        self.assertEqual(ctx.exception.kind, "missing_file")


class TestMigrationFailure(MigrationTestBase):
    """Fail-stop and atomicity"""

    def test_failing_migration_stops_the_run(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("002-broken.sql",
                   "CREATE TABLE half_done (id INTEGER);\nINSERT INTO no_such_table VALUES (1);\n")
        self.write("003-add-color.sql", ADD_COLOR)

        with self.assertRaises(MigrationApplyError) as ctx:
            self.runner().run()

        self.assertEqual(ctx.exception.name, "002-broken.sql")
        self.assertEqual(ctx.exception.version, 2)
        self.assertIsNotNone(ctx.exception.cause)
        self.assertEqual(self.ledger_versions(), [1])
        self.assertTrue(self.table_exists("widget"))
        self.assertFalse(self.table_exists("half_done"))
        self.assertNotIn("color", self.columns("widget"))
        self.assertFalse(self.gateway.in_transaction)

    def test_run_resumes_after_fix(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("002-broken.sql", "INSERT INTO no_such_table VALUES (1);\n")
        self.write("003-add-color.sql", ADD_COLOR)
        with self.assertRaises(MigrationApplyError):
            self.runner().run()

        self.write("002-broken.sql", "CREATE TABLE gadget (id INTEGER);\n")
        result = self.runner().run()

        self.assertEqual([m["version"] for m in result["applied_migrations"]], [2, 3])
        self.assertEqual(self.ledger_versions(), [1, 2, 3])

    def test_python_failure_rolls_back_its_statements(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("002-seed.py", "# registered by the test\n")

        def up(handle):
            handle.execute("INSERT INTO widget (name) VALUES (:name)", {"name": "bolt"})
            raise RuntimeError("seed data unavailable")

        registry = MigrationRegistry()
        registry.register("002-seed.py", up)

        with self.assertRaises(MigrationApplyError) as ctx:
            self.runner(registry=registry).run()

        self.assertIsInstance(ctx.exception.cause, RuntimeError)
        self.assertEqual(self.gateway.execute("SELECT COUNT(*) AS n FROM widget")[0]["n"], 0)
        self.assertEqual(self.ledger_versions(), [1])

    def test_interrupt_rolls_back_and_propagates(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("002-seed.py", "# registered by the test\n")

        def up(handle):
            handle.execute("INSERT INTO widget (name) VALUES ('bolt')")
            raise KeyboardInterrupt()

        registry = MigrationRegistry()
        registry.register("002-seed.py", up)

        with self.assertRaises(KeyboardInterrupt):
            self.runner(registry=registry).run()

        self.assertFalse(self.gateway.in_transaction)
        self.assertEqual(self.gateway.execute("SELECT COUNT(*) AS n FROM widget")[0]["n"], 0)
        self.assertEqual(self.ledger_versions(), [1])

    def test_failed_rollback_is_attached_to_error(self):
        self.write("001-broken.sql", "INSERT INTO no_such_table VALUES (1);\n")

        with patch.object(self.gateway, "rollback", side_effect=RuntimeError("connection lost")):
            with self.assertRaises(MigrationApplyError) as ctx:
                self.runner().run()

        self.assertIsInstance(ctx.exception.rollback_error, RuntimeError)
        self.assertIn("rollback also failed", describe_error(ctx.exception))
        self.assertIn("connection lost", describe_error(ctx.exception))
        self.gateway.rollback()
        self.assertEqual(self.ledger_versions(), [])

    def test_successful_rollback_attaches_nothing(self):
        self.write("001-broken.sql", "INSERT INTO no_such_table VALUES (1);\n")

        with self.assertRaises(MigrationApplyError) as ctx:
            self.runner().run()

        self.assertIsNone(ctx.exception.rollback_error)
        self.assertNotIn("rollback also failed", describe_error(ctx.exception))

    def test_unregistered_python_migration_fails_to_load(self):
        self.write("001-create-widget.py", "def up(handle):\n    pass\n")

        with self.assertRaises(MigrationLoadError) as ctx:
            self.runner(registry=MigrationRegistry()).run()

        self.assertEqual(ctx.exception.name, "001-create-widget.py")
        self.assertEqual(self.ledger_versions(), [])

    def test_broken_python_module_fails_at_its_turn(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("002-broken.py", "def up(handle)\n    pass\n")
        registry = MigrationRegistry.from_directory(self.migrations_dir)

        with self.assertRaises(MigrationLoadError) as ctx:
            self.runner(registry=registry).run()

        self.assertIsInstance(ctx.exception.cause, SyntaxError)
        self.assertEqual(self.ledger_versions(), [1])


class TestPythonMigrations(MigrationTestBase):
    """Python migrations receive the transaction handle"""

    def test_registered_migration_runs_in_transaction(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        seed = self.write("002-seed.py", "# registered by the test\n")
        seen = {}

        def up(handle):
            seen["namespace"] = handle.namespace
            seen["dialect"] = handle.dialect_name
            handle.execute("INSERT INTO widget (name) VALUES (:name)", {"name": "bolt"})

        registry = MigrationRegistry()
        registry.register("002-seed.py", up)

        self.runner(registry=registry).run()

        self.assertEqual(seen, {"namespace": "main", "dialect": "sqlite"})
        self.assertEqual(self.gateway.execute("SELECT name FROM widget"), [{"name": "bolt"}])
        self.assertEqual(self.ledger_rows()[1]["content_hash"], file_checksum(seed))

    def test_file_edited_after_loading_is_rejected(self):
        self.write("001-create-table.py", (
            "def up(handle):\n"
            "    handle.execute('CREATE TABLE first_version (id INTEGER)')\n"
        ))
        registry = MigrationRegistry.from_directory(self.migrations_dir)
        edited = self.write("001-create-table.py", (
            "def up(handle):\n"
            "    handle.execute('CREATE TABLE second_version (id INTEGER)')\n"
        ))

        with self.assertRaises(MigrationLoadError) as ctx:
            self.runner(registry=registry).run()

        self.assertIn("changed on disk", str(ctx.exception.cause))
        self.assertFalse(self.table_exists("first_version"))
        self.assertFalse(self.table_exists("second_version"))
        self.assertEqual(self.ledger_versions(), [])

        reloaded = MigrationRegistry.from_directory(self.migrations_dir)
        self.runner(registry=reloaded).run()
        self.assertTrue(self.table_exists("second_version"))
        self.assertEqual(self.ledger_rows()[0]["content_hash"], file_checksum(edited))

    def test_loaded_checksum_matches_ledger(self):
        seed = self.write("001-create-table.py", (
            "def up(handle):\n"
            "    handle.execute('CREATE TABLE seeded (id INTEGER)')\n"
        ))
        registry = MigrationRegistry.from_directory(self.migrations_dir)

        self.runner(registry=registry).run()

        loaded = registry.resolve(MigrationFile("001-create-table.py", 1, seed))
        self.assertEqual(loaded.checksum, file_checksum(seed))
        self.assertEqual(self.ledger_rows()[0]["content_hash"], loaded.checksum)

    def test_directory_modules_are_loaded(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("002-seed.py", (
            "def up(handle):\n"
            "    handle.execute_script(\"INSERT INTO widget (name) VALUES ('nut');\")\n"
            "\n"
            "\n"
            "def down(handle):\n"
            "    handle.execute(\"DELETE FROM widget WHERE name = 'nut'\")\n"
        ))
        registry = MigrationRegistry.from_directory(self.migrations_dir)

        self.runner(registry=registry).run()
        self.assertEqual(self.gateway.execute("SELECT name FROM widget"), [{"name": "nut"}])

        self.runner(registry=registry).rollback()
        self.assertEqual(self.gateway.execute("SELECT name FROM widget"), [])
        self.assertEqual(self.ledger_versions(), [1])


class TestMigrationRollback(MigrationTestBase):
    """Reverting the latest migrations"""

    def test_undo_script_reverts_migration(self):
        self.write("001-create-widget.do.sql", CREATE_WIDGET)
        self.write("001-create-widget.undo.sql", "DROP TABLE widget;\n")
        self.runner().run()

        result = self.runner().rollback()

        self.assertEqual([m["name"] for m in result["rolled_back_migrations"]],
                         ["001-create-widget.do.sql"])
        self.assertIsNone(result["current_version"])
        self.assertFalse(self.table_exists("widget"))
        self.assertEqual(self.ledger_versions(), [])

    def test_rollback_reverts_newest_first(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("002-add-gadget.sql", "CREATE TABLE gadget (id INTEGER);\n")
        self.write("002-add-gadget.undo.sql", "DROP TABLE gadget;\n")
        self.write("003-seed.py", "# registered by the test\n")

        def down(handle):
            handle.execute("DELETE FROM widget")

        registry = MigrationRegistry()
        registry.register("003-seed.py",
                          lambda handle: handle.execute("INSERT INTO widget (name) VALUES ('bolt')"),
                          down)
        self.runner(registry=registry).run()

        result = self.runner(registry=registry).rollback(steps=2)

        self.assertEqual([m["version"] for m in result["rolled_back_migrations"]], [3, 2])
        self.assertEqual(result["current_version"], 1)
        self.assertFalse(self.table_exists("gadget"))
        self.assertEqual(self.ledger_versions(), [1])

    def test_migration_without_down_logic_is_irreversible(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("002-add-color.sql", ADD_COLOR)
        self.write("002-add-color.undo.sql", "ALTER TABLE widget DROP COLUMN color;\n")
        self.runner().run()

        with self.assertRaises(IrreversibleMigrationError) as ctx:
            self.runner().rollback(steps=2)

        self.assertEqual(ctx.exception.name, "001-create-widget.sql")
        # Nothing runs when any target is irreversible
        self.assertEqual(self.ledger_versions(), [1, 2])
        self.assertIn("color", self.columns("widget"))

    def test_failing_down_keeps_ledger_row(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.write("001-create-widget.undo.sql", "DROP TABLE no_such_table;\n")
        self.runner().run()

        with self.assertRaises(RollbackError) as ctx:
            self.runner().rollback()

        self.assertNotIsInstance(ctx.exception, IrreversibleMigrationError)
        self.assertEqual(self.ledger_versions(), [1])
        self.assertTrue(self.table_exists("widget"))

    def test_steps_must_be_positive(self):
        with self.assertRaises(ValueError):
            self.runner().rollback(steps=0)


class TestMigrationStatus(MigrationTestBase):
    """Status reporting never raises for integrity or sequence problems"""

    def test_status_of_fresh_namespace(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)

        status = self.runner().get_migration_status()

        self.assertEqual(status["database_type"], "sqlite")
        self.assertIsNone(status["current_version"])
        self.assertEqual([m["name"] for m in status["pending_migrations"]], ["001-create-widget.sql"])
        self.assertTrue(status["integrity_check"]["valid"])
        self.assertTrue(status["sequence_check"]["valid"])

    def test_status_reports_issues(self):
        self.write("001-create-widget.sql", CREATE_WIDGET)
        self.runner().run()
        self.write("001-create-widget.sql", CREATE_WIDGET + "-- tweaked\n")
        self.write("003-add-color.sql", ADD_COLOR)

        status = self.runner().get_migration_status()

        self.assertEqual(status["current_version"], 1)
        self.assertEqual(len(status["applied_migrations"]), 1)
        self.assertEqual([m["name"] for m in status["pending_migrations"]], ["003-add-color.sql"])
        self.assertFalse(status["integrity_check"]["valid"])
        self.assertEqual(status["integrity_check"]["issues"][0]["type"], "content_mismatch")
        self.assertFalse(status["sequence_check"]["valid"])
        self.assertIn("expected 2", status["sequence_check"]["error"])

    def test_status_creates_nothing(self):
        tenant_dir = self.migrations_root / "tenant"
        tenant_dir.mkdir()
        self.write("001-create-chat.sql", "CREATE TABLE chat (id INTEGER);", directory=tenant_dir)

        status = self.runner("tenant_9", tenant_dir).get_migration_status()

        self.assertNotIn("error", status)
        self.assertIsNone(status["current_version"])
        self.assertEqual(status["applied_migrations"], [])
        self.assertEqual([m["name"] for m in status["pending_migrations"]], ["001-create-chat.sql"])
        self.assertFalse((self.root / "test.tenant_9.db").exists())
        attached = [row["name"] for row in self.gateway.execute("PRAGMA database_list")]
        self.assertNotIn("tenant_9", attached)
        self.assertFalse(self.table_exists("migrations"))

    def test_status_reads_existing_namespace_file(self):
        tenant_dir = self.migrations_root / "tenant"
        tenant_dir.mkdir()
        self.write("001-create-chat.py", (
            "def up(handle):\n"
            "    handle.execute(f'CREATE TABLE \"{handle.namespace}\".chat (id INTEGER)')\n"
        ), directory=tenant_dir)
        self.runner("tenant_1", tenant_dir, MigrationRegistry.from_directory(tenant_dir)).run()
        self.gateway.close()
        self.gateway = DatabaseGateway.from_config(self.config).open()

        status = self.runner("tenant_1", tenant_dir).get_migration_status()

        self.assertEqual(status["current_version"], 1)
        self.assertEqual(status["pending_migrations"], [])
        self.assertTrue(status["integrity_check"]["valid"])

    def test_status_does_not_create_directory(self):
        directory = self.migrations_root / "reports"

        status = self.runner(directory=directory).get_migration_status()

        self.assertFalse(directory.exists())
        self.assertEqual(status["total_migration_files"], 0)


class TestAttachedNamespace(MigrationTestBase):
    """Namespaces other than main live in attached SQLite databases"""

    def test_tenant_ledger_is_separate(self):
        tenant_dir = self.migrations_root / "tenant"
        tenant_dir.mkdir()
        self.write("001-create-chat.py", (
            "def up(handle):\n"
            "    handle.execute(f'CREATE TABLE \"{handle.namespace}\".chat (id INTEGER PRIMARY KEY)')\n"
        ), directory=tenant_dir)
        self.write("001-create-widget.sql", CREATE_WIDGET)
        registry = MigrationRegistry.from_directory(tenant_dir)

        self.runner("tenant_1", tenant_dir, registry).run()

        self.assertTrue((self.root / "test.tenant_1.db").is_file())
        self.assertTrue(self.table_exists("chat", schema="tenant_1"))
        self.assertFalse(self.table_exists("chat"))
        self.assertEqual(self.ledger_versions("tenant_1"), [1])
        self.assertFalse(self.table_exists("migrations"))

        self.runner().run()
        self.assertEqual(self.ledger_versions(), [1])
        self.assertEqual(self.ledger_rows()[0]["name"], "001-create-widget.sql")


class TestPlainEngine(unittest.TestCase):
    """Gateways over engines built without DatabaseConfig"""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.migrations_dir = self.root / "main"
        self.migrations_dir.mkdir()
        self.engine = create_engine(f"sqlite:///{self.root / 'plain.db'}")
        self.gateway = DatabaseGateway(self.engine).open()

    def tearDown(self):
        self.gateway.close()
        self.engine.dispose()
        self.temp_dir.cleanup()

    def test_failed_migration_leaves_no_ddl(self):
        (self.migrations_dir / "001-broken.sql").write_text(
            "CREATE TABLE half_done (id INTEGER);\nINSERT INTO no_such_table VALUES (1);\n",
            encoding="utf-8",
        )

        with self.assertRaises(MigrationApplyError):
            MigrationRunner(self.gateway, "main", self.migrations_dir).run()

        tables = self.gateway.execute("SELECT name FROM sqlite_master WHERE name = 'half_done'")
        self.assertEqual(tables, [])


if __name__ == "__main__":
    unittest.main(verbosity=2)
