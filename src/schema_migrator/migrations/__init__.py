"""
Database Migration System

Discovers version-prefixed migration files, verifies applied ones against
the per-schema ledger and applies pending ones in their own transactions.
"""

from .discovery import MigrationFile, discover_migrations, file_checksum, parse_version
from .ledger import AppliedMigration, MigrationLedger, check_integrity, verify_integrity
from .migration_runner import MigrationRunner, plan_pending
from .registry import MigrationRegistry, PythonMigration

__all__ = [
    'AppliedMigration',
    'MigrationFile',
    'MigrationLedger',
    'MigrationRegistry',
    'MigrationRunner',
    'PythonMigration',
    'check_integrity',
    'discover_migrations',
    'file_checksum',
    'parse_version',
    'plan_pending',
    'verify_integrity',
]
