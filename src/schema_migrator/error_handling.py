"""
Error Handling and Logging for the Schema Migrator

Provides the migration error hierarchy and centralized logging
configuration. Every error carries the context an operator needs to act on
it: the migration name, its version and the underlying cause.
"""

import logging
import sys
from datetime import datetime
from typing import Optional, Sequence


class MigrationError(Exception):
    """Base exception for migration errors"""
    pass


class SequenceError(MigrationError):
    """Pending migrations would skip or repeat a version"""
    def __init__(self, message: str, expected_version: Optional[int] = None,
                 actual_name: Optional[str] = None):
        super().__init__(message)
        self.expected_version = expected_version
        self.actual_name = actual_name


class DuplicateVersionError(SequenceError):
    """Two migration files share the same version prefix"""
    def __init__(self, version: int, names: Sequence[str]):
        names = sorted(names)
        super().__init__(
            f"Duplicate migration version {version}: {', '.join(names)}",
            expected_version=version,
            actual_name=names[-1],
        )
        self.version = version
        self.names = names


class IntegrityError(MigrationError):
    """An applied migration's source no longer matches the ledger"""
    kind = "integrity"

    def __init__(self, message: str, name: str, version: Optional[int] = None):
        super().__init__(message)
        self.name = name
        self.version = version


class MissingMigrationFileError(IntegrityError):
    """An applied migration's source file has been deleted"""
    kind = "missing_file"

    def __init__(self, name: str, version: Optional[int] = None):
        super().__init__(f"Applied migration missing: {name}", name, version)


class ChecksumMismatchError(IntegrityError):
    """An applied migration's source file was edited after being applied"""
    kind = "content_mismatch"

    def __init__(self, name: str, expected: str, found: str, version: Optional[int] = None):
        super().__init__(
            f"Checksum mismatch in {name}, modified after applying. "
            f"Expected: {expected}, Found: {found}",
            name,
            version,
        )
        self.expected = expected
        self.found = found


class MigrationApplyError(MigrationError):
    """A migration failed and its transaction was rolled back"""
    def __init__(self, name: str, version: Optional[int], cause: BaseException):
        super().__init__(f"Migration {name} (version {version}) failed: {cause}")
        self.name = name
        self.version = version
        self.cause = cause
        self.timestamp = datetime.utcnow()
        self.rollback_error: Optional[BaseException] = None


class MigrationLoadError(MigrationApplyError):
    """A migration's executable logic could not be read or located"""
    pass


class RollbackError(MigrationError):
    """A migration's down logic failed and its transaction was rolled back"""
    def __init__(self, name: str, version: Optional[int], cause: Optional[BaseException],
                 message: Optional[str] = None):
        super().__init__(message or f"Rollback of {name} (version {version}) failed: {cause}")
        self.name = name
        self.version = version
        self.cause = cause
        self.rollback_error: Optional[BaseException] = None


class IrreversibleMigrationError(RollbackError):
    """A migration has no down logic"""
    def __init__(self, name: str, version: Optional[int]):
        super().__init__(name, version, None,
                         f"Migration {name} (version {version}) has no down logic")


class NamespaceError(MigrationError):
    """Invalid or unsupported namespace (schema) name"""
    def __init__(self, message: str, namespace: str):
        super().__init__(message)
        self.namespace = namespace


def describe_error(error: BaseException) -> str:
    """Single-line, operator-facing description of a migration failure"""
    message = _describe(error)
    rollback_error = getattr(error, "rollback_error", None)
    if rollback_error is not None:
        message += f" (rollback also failed, connection may be unusable: {rollback_error})"
    return message


def _describe(error: BaseException) -> str:
    if isinstance(error, IntegrityError):
        return f"Integrity check failed ({error.kind}) for {error.name}: {error}"
    if isinstance(error, MigrationApplyError):
        return (f"Migration {error.name} (version {error.version}) failed: "
                f"{type(error.cause).__name__}: {error.cause}")
    if isinstance(error, IrreversibleMigrationError):
        return str(error)
    if isinstance(error, RollbackError):
        return (f"Rollback of {error.name} (version {error.version}) failed: "
                f"{type(error.cause).__name__}: {error.cause}")
    return f"{type(error).__name__}: {error}"


class LoggingManager:
    """
    Centralized logging configuration and management
    """

    FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    @staticmethod
    def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
        """
        Setup logging configuration

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional log file path
        """
        formatter = logging.Formatter(LoggingManager.FORMAT)

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level.upper()))

        # Replace handlers from an earlier call instead of stacking them
        for handler in list(root_logger.handlers):
            if getattr(handler, "_schema_migrator", False):
                root_logger.removeHandler(handler)
                handler.close()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler._schema_migrator = True
        root_logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            file_handler._schema_migrator = True
            root_logger.addHandler(file_handler)

        # SQLAlchemy has its own echo switch; keep its loggers quiet otherwise
        logging.getLogger('sqlalchemy').setLevel(logging.WARNING)
        logging.getLogger('schema_migrator').setLevel(getattr(logging, log_level.upper()))
