"""
Migration Discovery

Finds version-prefixed migration files in a directory and orders them.
"""

import hashlib
import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from ..error_handling import DuplicateVersionError

logger = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(r'^(\d+)[-_]')
MIGRATION_SUFFIXES = ('.sql', '.py')
UNDO_SUFFIX = '.undo.sql'
DO_SUFFIX = '.do.sql'


@dataclass(frozen=True)
class MigrationFile:
    """One version-prefixed migration script on disk"""
    name: str
    version: int
    path: Path

    @property
    def kind(self) -> str:
        return 'python' if self.name.endswith('.py') else 'sql'

    @property
    def undo_path(self) -> Path:
        """Location of the optional down script of a SQL migration"""
        stem = self.name[:-len(DO_SUFFIX)] if self.name.endswith(DO_SUFFIX) else self.name[:-len('.sql')]
        return self.path.with_name(stem + UNDO_SUFFIX)


def parse_version(name: str) -> Optional[int]:
    """Extract the positive version number from a file name prefix"""
    match = VERSION_PATTERN.match(name)
    if not match:
        return None
    version = int(match.group(1))
    return version if version > 0 else None


def is_migration_name(name: str) -> bool:
    if name.startswith(('.', '__')) or name.endswith(UNDO_SUFFIX):
        return False
    return name.endswith(MIGRATION_SUFFIXES) and parse_version(name) is not None


def discover_migrations(directory: Union[str, Path], create: bool = True) -> List[MigrationFile]:
    """
    Discover migrations in a directory, sorted by version

    A missing directory is created (``create=True``) or treated as empty.
    Files without a version prefix are ignored.

    Raises:
        DuplicateVersionError: Two files share a version
    """
    directory = Path(directory)
    if not directory.exists():
        if not create:
            return []
        directory.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created migrations directory: {directory}")

    migrations = [
        MigrationFile(name=entry.name, version=parse_version(entry.name), path=entry)
        for entry in directory.iterdir()
        if entry.is_file() and is_migration_name(entry.name)
    ]

    by_version = defaultdict(list)
    for migration in migrations:
        by_version[migration.version].append(migration.name)
    for version, names in sorted(by_version.items()):
        if len(names) > 1:
            raise DuplicateVersionError(version, names)

    migrations.sort(key=lambda m: m.version)
    logger.debug(f"Discovered {len(migrations)} migrations in {directory}")
    return migrations


def content_checksum(content: bytes) -> str:
    """SHA-256 checksum of migration content"""
    return hashlib.sha256(content).hexdigest()


def file_checksum(path: Union[str, Path]) -> str:
    """SHA-256 checksum of a migration file"""
    with open(path, 'rb') as f:
        return content_checksum(f.read())
