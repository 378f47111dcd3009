"""
Schema Migrator

Versioned, checksum-validated, transactional schema migrations for
multi-tenant PostgreSQL and SQLite databases.

Key Features:
- Strictly sequential versions, no gaps or duplicates
- Content checksums guarding already-applied migrations
- One transaction per migration, ledger row included
- Independent migration history per schema (tenant)
"""

from .database.config import DatabaseConfig
from .database.gateway import DatabaseGateway, TransactionHandle
from .error_handling import (ChecksumMismatchError, DuplicateVersionError, IntegrityError,
                             IrreversibleMigrationError, MigrationApplyError, MigrationError,
                             MigrationLoadError, MissingMigrationFileError, NamespaceError,
                             RollbackError, SequenceError)
from .migrations import MigrationLedger, MigrationRegistry, MigrationRunner
from .database.init_db import DatabaseInitializer

__version__ = '0.1.0'

__all__ = [
    'ChecksumMismatchError',
    'DatabaseConfig',
    'DatabaseGateway',
    'DatabaseInitializer',
    'DuplicateVersionError',
    'IntegrityError',
    'IrreversibleMigrationError',
    'MigrationApplyError',
    'MigrationError',
    'MigrationLedger',
    'MigrationLoadError',
    'MigrationRegistry',
    'MigrationRunner',
    'MissingMigrationFileError',
    'NamespaceError',
    'RollbackError',
    'SequenceError',
    'TransactionHandle',
]
