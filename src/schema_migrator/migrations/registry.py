"""
Registry of Python migrations

Python migrations are modules exporting ``up(handle)`` and optionally
``down(handle)``. They are registered once at start-up, either explicitly or
by scanning a migrations directory or package; the runner only looks them up
by file name.
"""

import importlib
import importlib.util
import logging
import pkgutil
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from ..error_handling import MigrationError, MigrationLoadError
from .discovery import MigrationFile, content_checksum, file_checksum, is_migration_name, parse_version

logger = logging.getLogger(__name__)


@dataclass
class PythonMigration:
    """Executable logic of a Python migration"""
    name: str
    up: Callable
    down: Optional[Callable] = None
    checksum: Optional[str] = None


class MigrationRegistry:
    """Python migrations keyed by file name"""

    def __init__(self):
        self._migrations: Dict[str, PythonMigration] = {}
        self._failures: Dict[str, Exception] = {}

    def register(self, name: str, up: Callable, down: Optional[Callable] = None,
                 checksum: Optional[str] = None) -> PythonMigration:
        """
        Register a Python migration

        Args:
            name: Migration file name, e.g. ``002-initial-lookup-data.py``
            up: Callable receiving the transaction handle
            down: Optional callable reverting ``up``
            checksum: Checksum of the source the callables were loaded from

        Raises:
            MigrationError: Name already registered
        """
        if name in self._migrations:
            raise MigrationError(f"Migration {name} is already registered")
        if not callable(up):
            raise MigrationError(f"Migration {name} 'up' is not callable")
        migration = PythonMigration(name=name, up=up, down=down if callable(down) else None,
                                    checksum=checksum)
        self._migrations[name] = migration
        self._failures.pop(name, None)
        logger.debug(f"Registered migration: {name}")
        return migration

    def register_module(self, name: str, module, checksum: Optional[str] = None) -> PythonMigration:
        up = getattr(module, 'up', None)
        if not callable(up):
            raise AttributeError(f"Migration file {name} does not export an 'up' function")
        return self.register(name, up, getattr(module, 'down', None), checksum)

    def record_failure(self, name: str, error: Exception):
        self._failures[name] = error

    def __contains__(self, name: str) -> bool:
        return name in self._migrations

    def __len__(self) -> int:
        return len(self._migrations)

    def names(self) -> List[str]:
        return sorted(self._migrations, key=lambda n: (parse_version(n) or 0, n))

    @property
    def failures(self) -> Dict[str, Exception]:
        return dict(self._failures)

    def resolve(self, migration: MigrationFile) -> PythonMigration:
        """
        Look up the logic of a discovered Python migration

        Raises:
            MigrationLoadError: The module failed to load or is not registered
        """
        if migration.name in self._failures:
            raise MigrationLoadError(migration.name, migration.version, self._failures[migration.name])
        try:
            return self._migrations[migration.name]
        except KeyError:
            raise MigrationLoadError(
                migration.name,
                migration.version,
                LookupError(f"No registered migration named {migration.name}"),
            ) from None

    @classmethod
    def from_directory(cls, directory: Union[str, Path]) -> 'MigrationRegistry':
        """Load every version-prefixed ``.py`` module of a migrations directory"""
        registry = cls()
        directory = Path(directory)
        if not directory.is_dir():
            return registry

        for entry in sorted(directory.iterdir()):
            if not (entry.is_file() and entry.suffix == '.py' and is_migration_name(entry.name)):
                continue
            try:
                source = entry.read_bytes()
                registry.register_module(entry.name, _load_module_from_source(entry, source),
                                         content_checksum(source))
            except Exception as e:
                logger.error(f"Failed to load migration from {entry}: {e}")
                registry.record_failure(entry.name, e)

        logger.info(f"Loaded {len(registry)} Python migrations from {directory}")
        if len(registry):
            logger.debug(f"Python migrations: {', '.join(registry.names())}")
        return registry

    @classmethod
    def from_package(cls, package_name: str) -> 'MigrationRegistry':
        """Import the version-prefixed modules of a Python package"""
        registry = cls()
        package = importlib.import_module(package_name)
        package_path = Path(package.__file__).parent

        for _, module_name, ispkg in pkgutil.iter_modules([str(package_path)]):
            file_name = f"{module_name}.py"
            if ispkg or not is_migration_name(file_name):
                continue
            try:
                module = importlib.import_module(f"{package_name}.{module_name}")
                registry.register_module(file_name, module, file_checksum(module.__file__))
            except Exception as e:
                logger.error(f"Failed to import migration {package_name}.{module_name}: {e}")
                registry.record_failure(file_name, e)

        return registry


def _load_module_from_source(path: Path, source: bytes):
    """Execute ``source``, the bytes read from ``path``, as a fresh module"""
    module_name = re.sub(r'\W', '_', f"schema_migrator_migration_{path.parent.name}_{path.stem}")
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load migration module from {path}")
    module = importlib.util.module_from_spec(spec)
    exec(compile(source, str(path), 'exec'), module.__dict__)
    return module
