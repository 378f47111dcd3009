"""
Database Access Gateway

Owns the single administrative connection used by the migration runner:
explicit transaction boundaries, statement execution, and schema
(namespace) scoping for PostgreSQL and SQLite.
"""

import logging
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import inspect, text

from ..error_handling import NamespaceError
from .config import enable_sqlite_transactional_ddl

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
MAX_IDENTIFIER_LENGTH = 63


def validate_namespace(name: str) -> str:
    """Return ``name`` if it is usable as a schema identifier"""
    if not name or len(name) > MAX_IDENTIFIER_LENGTH or not IDENTIFIER_PATTERN.match(name):
        raise NamespaceError(f"Invalid namespace name: {name!r}", name)
    return name


def quote_identifier(name: str) -> str:
    return f'"{validate_namespace(name)}"'


COMMENT_PATTERN = re.compile(r"--[^\n]*|/\*.*?\*/", re.DOTALL)


def _has_sql(chunk: str) -> bool:
    return bool(COMMENT_PATTERN.sub("", chunk).strip().strip(";").strip())


def split_sql_statements(sql: str) -> List[str]:
    """
    Split a SQL script into complete statements

    Uses SQLite's own tokenizer rules, so semicolons inside string literals,
    comments and trigger bodies do not end a statement. Text after the last
    semicolon is kept as a final statement.
    """
    statements = []
    start = 0
    for index, char in enumerate(sql):
        if char == ';' and sqlite3.complete_statement(sql[start:index + 1]):
            chunk = sql[start:index + 1].strip()
            if _has_sql(chunk):
                statements.append(chunk)
            start = index + 1

    tail = sql[start:].strip()
    if _has_sql(tail):
        statements.append(tail)
    return statements


class TransactionHandle:
    """
    Handle passed to Python migrations

    Statements issued through it run inside the migration's transaction.
    """

    def __init__(self, gateway: 'DatabaseGateway'):
        self._gateway = gateway

    @property
    def namespace(self) -> Optional[str]:
        return self._gateway.namespace

    @property
    def dialect_name(self) -> str:
        return self._gateway.dialect_name

    def execute(self, statement, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return self._gateway.execute(statement, params)

    def execute_script(self, sql: str):
        self._gateway.execute_script(sql)


class DatabaseGateway:
    """
    Explicitly owned administrative database connection

    Statements executed outside an explicit transaction are committed one by
    one; between ``begin_transaction()`` and ``commit()``/``rollback()`` they
    share a single transaction.
    """

    def __init__(self, engine, use_lock: bool = True, owns_engine: bool = False):
        """
        Args:
            engine: SQLAlchemy engine instance; SQLite engines get the
                transactional DDL hooks installed
            use_lock: Serialize runs per namespace with an advisory lock
            owns_engine: Dispose of the engine when the gateway closes
        """
        self.engine = engine
        if engine.dialect.name == "sqlite":
            enable_sqlite_transactional_ddl(engine)
        self.use_lock = use_lock
        self.namespace: Optional[str] = None
        self._owns_engine = owns_engine
        self._connection = None
        self._transaction = None

    @classmethod
    def from_config(cls, config) -> 'DatabaseGateway':
        """Build a gateway with its own engine from a DatabaseConfig"""
        return cls(config.create_engine(), use_lock=config.use_lock, owns_engine=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> 'DatabaseGateway':
        if self._connection is None:
            self._connection = self.engine.connect()
            if self.is_sqlite:
                # Pooled connections may predate the connect hook
                self._connection.connection.driver_connection.isolation_level = None
            logger.debug(f"Opened administrative connection ({self.dialect_name})")
        return self

    def close(self):
        if self._connection is None:
            return
        try:
            if self.in_transaction:
                logger.warning("Closing gateway with an open transaction, rolling back")
                self._transaction.rollback()
        finally:
            self._transaction = None
            self._connection.close()
            self._connection = None
            if self._owns_engine:
                self.engine.dispose()
            logger.debug("Administrative connection closed")

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    @property
    def connection(self):
        if self._connection is None:
            raise RuntimeError("Database gateway is not open")
        return self._connection

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @property
    def is_sqlite(self) -> bool:
        return self.dialect_name == "sqlite"

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None and self._transaction.is_active

    def begin_transaction(self) -> TransactionHandle:
        if self.in_transaction:
            raise RuntimeError("A transaction is already open on this gateway")
        self._transaction = self.connection.begin()
        return TransactionHandle(self)

    def commit(self):
        if not self.in_transaction:
            raise RuntimeError("No open transaction to commit")
        try:
            self._transaction.commit()
        finally:
            self._transaction = None

    def rollback(self):
        if self._transaction is None:
            return
        try:
            if self._transaction.is_active:
                self._transaction.rollback()
        finally:
            self._transaction = None

    @contextmanager
    def _statement_scope(self):
        """Yield the connection inside the open transaction or a fresh one"""
        if self.in_transaction:
            yield self.connection
        else:
            with self.connection.begin():
                yield self.connection

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def execute(self, statement, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Execute a statement and return its rows as dictionaries

        Args:
            statement: SQL string (``:name`` bind parameters) or a
                SQLAlchemy Core executable
            params: Bind parameters
        """
        if isinstance(statement, str):
            statement = text(statement)
        with self._statement_scope() as conn:
            result = conn.execute(statement, params or {})
            if result.returns_rows:
                return [dict(row) for row in result.mappings()]
            return []

    def execute_script(self, sql: str):
        """Execute a SQL script verbatim, no bind parameters"""
        options = {"no_parameters": True}
        with self._statement_scope() as conn:
            if self.is_sqlite:
                statements = split_sql_statements(sql)
                for i, statement in enumerate(statements):
                    logger.debug(f"Executing statement {i + 1}/{len(statements)}")
                    conn.exec_driver_sql(statement, execution_options=options)
            elif sql.strip():
                conn.exec_driver_sql(sql, execution_options=options)

    def create_all(self, metadata):
        """Create the tables of ``metadata`` that do not exist yet"""
        with self._statement_scope() as conn:
            metadata.create_all(conn, checkfirst=True)

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    def ensure_namespace(self, name: str):
        """Create the namespace if it does not exist"""
        quoted = quote_identifier(name)
        if self.is_sqlite:
            self._attach_sqlite_namespace(name)
        else:
            self.execute(f"CREATE SCHEMA IF NOT EXISTS {quoted}")
        logger.debug(f"Namespace ensured: {name}")

    def namespace_exists(self, name: str) -> bool:
        """
        Whether the namespace exists, without creating it

        On SQLite an existing namespace database file is attached.
        """
        validate_namespace(name)
        if self.is_sqlite:
            if name in ("main", "temp") or name in self._sqlite_attached():
                return True
            path = self._sqlite_namespace_path(name)
            if path == ":memory:" or not Path(path).is_file():
                return False
            self._attach_sqlite_namespace(name)
            return True
        with self._statement_scope() as conn:
            return inspect(conn).has_schema(name)

    def has_table(self, table_name: str, schema: Optional[str] = None) -> bool:
        with self._statement_scope() as conn:
            return inspect(conn).has_table(table_name, schema=schema)

    def set_namespace(self, name: str):
        """Direct subsequent unqualified statements at ``name``"""
        quoted = quote_identifier(name)
        if not self.is_sqlite:
            self.execute(f"SET search_path TO {quoted}")
        self.namespace = name

    def reset_namespace(self):
        if self._connection is not None and not self.is_sqlite:
            self.execute("RESET search_path")
        self.namespace = None

    def _sqlite_attached(self) -> List[str]:
        driver_connection = self.connection.connection.driver_connection
        return [row[1] for row in driver_connection.execute("PRAGMA database_list")]

    def _sqlite_namespace_path(self, name: str) -> str:
        database = self.engine.url.database
        if not database or database == ":memory:":
            return ":memory:"
        path = Path(database)
        return str(path.with_name(f"{path.stem}.{name}{path.suffix or '.db'}"))

    def _attach_sqlite_namespace(self, name: str):
        if name in ("main", "temp") or name in self._sqlite_attached():
            return
        if self.in_transaction:
            raise NamespaceError(f"Cannot attach namespace {name} inside a transaction", name)
        path = self._sqlite_namespace_path(name)
        # ATTACH is refused inside a transaction, so bypass SQLAlchemy's autobegin
        driver_connection = self.connection.connection.driver_connection
        driver_connection.execute(f"ATTACH DATABASE ? AS {quote_identifier(name)}", (path,))
        logger.info(f"Attached SQLite namespace {name} at {path}")

    @contextmanager
    def namespace_lock(self, name: str):
        """
        Serialize migration runs against one namespace

        PostgreSQL takes a session-level advisory lock; SQLite relies on
        its database-level write lock.
        """
        validate_namespace(name)
        if not self.use_lock or self.dialect_name != "postgresql":
            yield
            return

        key = f"schema_migrator:{name}"
        logger.debug(f"Acquiring advisory lock for {name}")
        self.execute("SELECT pg_advisory_lock(hashtext(:key))", {"key": key})
        try:
            yield
        finally:
            self.rollback()
            self.execute("SELECT pg_advisory_unlock(hashtext(:key))", {"key": key})
            logger.debug(f"Released advisory lock for {name}")
