"""
Migration Runner for Database Schema Changes

Applies versioned migrations to one namespace: strictly sequential
versions, checksum verification of already-applied files, and one
transaction per migration holding both its statements and its ledger row.
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError

from ..database.gateway import validate_namespace
from ..error_handling import (IrreversibleMigrationError, MigrationApplyError, MigrationError,
                              MigrationLoadError, RollbackError, SequenceError)
from .discovery import MigrationFile, content_checksum, discover_migrations
from .ledger import AppliedMigration, MigrationLedger, check_integrity, verify_integrity
from .registry import MigrationRegistry

logger = logging.getLogger(__name__)


def plan_pending(migrations: Sequence[MigrationFile], applied_versions) -> List[MigrationFile]:
    """
    Migrations still to apply, in order

    The i-th pending migration must carry version ``max(applied) + 1 + i``.

    Raises:
        SequenceError: A pending migration would skip or precede a version
    """
    applied = set(applied_versions)
    pending = [m for m in migrations if m.version not in applied]
    expected_next = max(applied, default=0) + 1

    for i, migration in enumerate(pending):
        expected = expected_next + i
        if migration.version != expected:
            raise SequenceError(
                f"Migration version mismatch: expected {expected}, but got {migration.name}",
                expected_version=expected,
                actual_name=migration.name,
            )
    return pending


class MigrationRunner:
    """
    Applies the migrations of one directory to one namespace

    Fail-stop: the first failing migration is rolled back and the run ends;
    migrations committed before it stay applied and recorded.
    """

    def __init__(self, gateway, schema: str, migrations_path: Union[str, Path],
                 registry: Optional[MigrationRegistry] = None,
                 table_name: str = 'migrations'):
        """
        Initialize migration runner

        Args:
            gateway: Open DatabaseGateway
            schema: Namespace to migrate
            migrations_path: Directory holding this namespace's migrations
            registry: Python migrations available to this run
            table_name: Ledger table name
        """
        self.gateway = gateway
        self.schema = validate_namespace(schema)
        self.migrations_path = Path(migrations_path)
        self.registry = registry if registry is not None else MigrationRegistry()
        self.ledger = MigrationLedger(gateway, self.schema, table_name)

    @contextmanager
    def _namespace_session(self):
        with self.gateway.namespace_lock(self.schema):
            self.gateway.ensure_namespace(self.schema)
            self.gateway.set_namespace(self.schema)
            try:
                self.ledger.ensure_table()
                yield
            finally:
                self.gateway.reset_namespace()

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def run(self) -> Dict:
        """
        Apply all pending migrations

        Returns:
            Run summary with the migrations applied by this run

        Raises:
            SequenceError: Version gap, out-of-order or duplicate version
            IntegrityError: An applied migration is missing or was edited
            MigrationApplyError: A migration failed and was rolled back
        """
        logger.info(f"Starting migration run for schema {self.schema} from {self.migrations_path}")
        start_time = time.time()
        applied_migrations = []

        with self._namespace_session():
            migrations = discover_migrations(self.migrations_path)
            applied = self.ledger.load_applied()
            verify_integrity(applied, self.migrations_path)
            pending = plan_pending(migrations, [a.version for a in applied])

            if not pending:
                logger.info(f"Schema {self.schema} is up to date")

            for migration in pending:
                applied_migrations.append(self._apply(migration))

        versions = [a.version for a in applied] + [m['version'] for m in applied_migrations]
        total_time_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Migrations completed for schema: {self.schema}")

        return {
            'success': True,
            'schema': self.schema,
            'message': f"Applied {len(applied_migrations)} migrations successfully",
            'applied_migrations': applied_migrations,
            'current_version': max(versions, default=None),
            'total_time_ms': total_time_ms,
        }

    def _apply(self, migration: MigrationFile) -> Dict:
        logger.info(f"Applying migration {migration.version}: {migration.name}")
        start_time = time.time()

        handle = self.gateway.begin_transaction()
        try:
            checksum = self._run_up(migration, handle)
            execution_time_ms = int((time.time() - start_time) * 1000)
            self.ledger.record(migration.version, migration.name, checksum, execution_time_ms)
            self.gateway.commit()
        except MigrationApplyError as e:
            self._abort(migration.name, e)
            raise
        except Exception as e:
            error = MigrationApplyError(migration.name, migration.version, e)
            self._abort(migration.name, error)
            raise error from e
        except BaseException as e:
            self._abort(migration.name, e)
            raise

        logger.info(f"Applied migration: {migration.name} ({execution_time_ms} ms)")
        return {
            'version': migration.version,
            'name': migration.name,
            'status': 'applied',
            'checksum': checksum,
            'execution_time_ms': execution_time_ms,
        }

    def _run_up(self, migration: MigrationFile, handle) -> str:
        """Execute a migration's up logic, returning the checksum of what ran"""
        try:
            content = migration.path.read_bytes()
        except OSError as e:
            raise MigrationLoadError(migration.name, migration.version, e) from e
        checksum = content_checksum(content)

        if migration.kind == 'sql':
            try:
                sql = content.decode('utf-8')
            except UnicodeDecodeError as e:
                raise MigrationLoadError(migration.name, migration.version, e) from e
            handle.execute_script(sql)
        else:
            python_migration = self.registry.resolve(migration)
            if python_migration.checksum is not None and python_migration.checksum != checksum:
                raise MigrationLoadError(
                    migration.name,
                    migration.version,
                    RuntimeError(f"{migration.name} changed on disk after it was loaded"),
                )
            python_migration.up(handle)

        return checksum

    def _abort(self, name: str, error: BaseException):
        """
        Roll back the open transaction of a failed migration

        A failed rollback is attached to ``error`` as ``rollback_error``; the
        connection may still hold the failed transaction in that case.
        """
        try:
            self.gateway.rollback()
        except Exception as rollback_error:
            logger.error(f"Rollback after failure of {name} failed: {rollback_error}")
            error.rollback_error = rollback_error
            return
        logger.error(f"Migration failed and rolled back: {name}")

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def rollback(self, steps: int = 1) -> Dict:
        """
        Revert the most recently applied migrations

        Each migration's down logic and the removal of its ledger row share
        one transaction. All down logic is resolved before anything runs.

        Args:
            steps: Number of migrations to revert, newest first

        Raises:
            IntegrityError: An applied migration is missing or was edited
            IrreversibleMigrationError: A target migration has no down logic
            RollbackError: Down logic failed and was rolled back
        """
        if steps < 1:
            raise ValueError("steps must be at least 1")

        logger.info(f"Starting rollback of {steps} migrations for schema {self.schema}")
        start_time = time.time()
        rolled_back = []

        with self._namespace_session():
            applied = self.ledger.load_applied()
            verify_integrity(applied, self.migrations_path)

            targets = list(reversed(applied))[:steps]
            plans = [(entry, self._resolve_down(entry)) for entry in targets]

            for entry, down in plans:
                rolled_back.append(self._revert(entry, down))

            remaining = self.ledger.load_applied()

        total_time_ms = int((time.time() - start_time) * 1000)
        return {
            'success': True,
            'schema': self.schema,
            'message': f"Successfully rolled back {len(rolled_back)} migrations",
            'rolled_back_migrations': rolled_back,
            'current_version': remaining[-1].version if remaining else None,
            'total_time_ms': total_time_ms,
        }

    def _resolve_down(self, entry: AppliedMigration) -> Callable:
        migration = MigrationFile(name=entry.name, version=entry.version,
                                  path=self.migrations_path / entry.name)

        if migration.kind == 'sql':
            undo_path = migration.undo_path
            if not undo_path.is_file():
                raise IrreversibleMigrationError(entry.name, entry.version)
            return lambda handle: handle.execute_script(undo_path.read_text(encoding='utf-8'))

        try:
            python_migration = self.registry.resolve(migration)
        except MigrationLoadError as e:
            raise RollbackError(entry.name, entry.version, e.cause) from e
        if python_migration.down is None:
            raise IrreversibleMigrationError(entry.name, entry.version)
        return python_migration.down

    def _revert(self, entry: AppliedMigration, down: Callable) -> Dict:
        logger.info(f"Rolling back migration {entry.version}: {entry.name}")
        start_time = time.time()

        handle = self.gateway.begin_transaction()
        try:
            down(handle)
            self.ledger.remove(entry.version)
            self.gateway.commit()
        except Exception as e:
            error = RollbackError(entry.name, entry.version, e)
            self._abort(entry.name, error)
            raise error from e
        except BaseException as e:
            self._abort(entry.name, e)
            raise

        execution_time_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Rolled back migration {entry.version}: {entry.name}")
        return {
            'version': entry.version,
            'name': entry.name,
            'status': 'rolled_back',
            'execution_time_ms': execution_time_ms,
        }

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_migration_status(self) -> Dict:
        """
        Get comprehensive migration status

        Reports integrity and sequence problems instead of raising them.
        Read-only: a missing namespace or ledger reports nothing applied.

        Returns:
            Status information including pending migrations
        """
        try:
            applied = []
            if self.gateway.namespace_exists(self.schema) and self.ledger.exists():
                applied = self.ledger.load_applied()
            applied_versions = {a.version for a in applied}

            migrations = []
            sequence_error = None
            try:
                migrations = discover_migrations(self.migrations_path, create=False)
                plan_pending(migrations, applied_versions)
            except SequenceError as e:
                sequence_error = str(e)

            issues = check_integrity(applied, self.migrations_path)

            return {
                'schema': self.schema,
                'database_type': self.gateway.dialect_name,
                'migrations_path': str(self.migrations_path),
                'current_version': applied[-1].version if applied else None,
                'applied_migrations': [a.to_dict() for a in applied],
                'pending_migrations': [
                    {'version': m.version, 'name': m.name, 'file_path': str(m.path)}
                    for m in migrations
                    if m.version not in applied_versions
                ],
                'total_migration_files': len(migrations),
                'integrity_check': {'valid': not issues, 'issues': issues},
                'sequence_check': {'valid': sequence_error is None, 'error': sequence_error},
            }

        except (MigrationError, SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to get migration status for {self.schema}: {e}")
            return {
                'schema': self.schema,
                'error': str(e),
                'database_type': self.gateway.dialect_name,
                'migrations_path': str(self.migrations_path),
            }
