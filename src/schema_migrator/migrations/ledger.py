"""
Migration Ledger

Tracks applied migrations per namespace and verifies that their source
files have not changed since they were applied.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Union

from sqlalchemy import (BigInteger, Column, DateTime, Integer, MetaData, Table, Text,
                        delete, func, insert, select)

from ..error_handling import ChecksumMismatchError, MissingMigrationFileError
from .discovery import file_checksum

logger = logging.getLogger(__name__)


@dataclass
class AppliedMigration:
    """One ledger row"""
    version: int
    name: str
    content_hash: str
    applied_at: Optional[datetime] = None
    execution_time_ms: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            'version': self.version,
            'name': self.name,
            'content_hash': self.content_hash,
            'applied_at': self.applied_at.isoformat() if isinstance(self.applied_at, datetime) else self.applied_at,
            'execution_time_ms': self.execution_time_ms,
        }


def build_ledger_table(schema: str, table_name: str = 'migrations') -> Table:
    """Ledger table definition scoped to a namespace"""
    metadata = MetaData(schema=schema)
    return Table(
        table_name,
        metadata,
        Column('version', BigInteger, primary_key=True, autoincrement=False),
        Column('name', Text, nullable=False),
        Column('content_hash', Text, nullable=False),
        Column('applied_at', DateTime(timezone=True), nullable=False, server_default=func.now()),
        Column('execution_time_ms', Integer),
    )


class MigrationLedger:
    """
    Ledger of applied migrations for one namespace

    Statements are schema-qualified, so they reach the namespace's ledger
    whatever the connection's search path is.
    """

    def __init__(self, gateway, schema: str, table_name: str = 'migrations'):
        """
        Args:
            gateway: Open DatabaseGateway
            schema: Namespace owning the ledger
            table_name: Ledger table name
        """
        self.gateway = gateway
        self.schema = schema
        self.table = build_ledger_table(schema, table_name)

    def ensure_table(self):
        """Create the ledger table if it doesn't exist"""
        self.gateway.create_all(self.table.metadata)
        logger.debug(f"Ledger table ensured: {self.schema}.{self.table.name}")

    def exists(self) -> bool:
        return self.gateway.has_table(self.table.name, schema=self.schema)

    def load_applied(self) -> List[AppliedMigration]:
        """All applied migrations ordered by version"""
        rows = self.gateway.execute(select(self.table).order_by(self.table.c.version))
        return [
            AppliedMigration(
                version=int(row['version']),
                name=row['name'],
                content_hash=row['content_hash'],
                applied_at=row['applied_at'],
                execution_time_ms=row['execution_time_ms'],
            )
            for row in rows
        ]

    def record(self, version: int, name: str, content_hash: str,
               execution_time_ms: Optional[int] = None):
        """
        Record a successfully applied migration

        Must run inside the migration's own transaction so the row and the
        migration's effects commit or roll back together.
        """
        if not self.gateway.in_transaction:
            raise RuntimeError("Ledger entries can only be written inside a migration transaction")
        self.gateway.execute(insert(self.table).values(
            version=version,
            name=name,
            content_hash=content_hash,
            execution_time_ms=execution_time_ms,
        ))
        logger.debug(f"Recorded migration {version}: {name}")

    def remove(self, version: int):
        """Remove a ledger row, inside the rollback's transaction"""
        if not self.gateway.in_transaction:
            raise RuntimeError("Ledger entries can only be removed inside a migration transaction")
        self.gateway.execute(delete(self.table).where(self.table.c.version == version))
        logger.debug(f"Removed ledger entry {version}")


def _integrity_issues(applied: Sequence[AppliedMigration],
                      directory: Union[str, Path]) -> Iterator[Dict]:
    directory = Path(directory)
    for entry in applied:
        path = directory / entry.name
        if not path.is_file():
            yield {
                'type': MissingMigrationFileError.kind,
                'version': entry.version,
                'name': entry.name,
                'message': f"Applied migration missing: {entry.name}",
            }
            continue

        found = file_checksum(path)
        if found != entry.content_hash:
            yield {
                'type': ChecksumMismatchError.kind,
                'version': entry.version,
                'name': entry.name,
                'expected': entry.content_hash,
                'found': found,
                'message': f"{entry.name} was modified after applying",
            }


def check_integrity(applied: Sequence[AppliedMigration], directory: Union[str, Path]) -> List[Dict]:
    """Every integrity issue of the applied migrations, without raising"""
    return list(_integrity_issues(applied, directory))


def verify_integrity(applied: Sequence[AppliedMigration], directory: Union[str, Path]):
    """
    Verify applied migrations against their files on disk

    Raises:
        MissingMigrationFileError: An applied migration's file is gone
        ChecksumMismatchError: An applied migration's file was edited
    """
    for issue in _integrity_issues(applied, directory):
        if issue['type'] == MissingMigrationFileError.kind:
            raise MissingMigrationFileError(issue['name'], issue['version'])
        raise ChecksumMismatchError(issue['name'], issue['expected'], issue['found'], issue['version'])
    logger.debug(f"Verified {len(applied)} applied migrations")
