"""
Database Configuration for the Schema Migrator

Supports both SQLite (development) and PostgreSQL (production) environments.
Provides engine creation and migration settings read from the environment.
"""

import os
from pathlib import Path
from typing import Optional
from urllib.parse import quote_plus

from sqlalchemy import create_engine, event


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class DatabaseConfig:
    """Database and migration configuration manager"""

    def __init__(self, database_url: Optional[str] = None,
                 migrations_root: Optional[str] = None):
        self.environment = os.getenv("ENVIRONMENT", "development")
        self.database_url = database_url or self._get_database_url()
        self.migrations_root = Path(
            migrations_root or os.getenv("MIGRATIONS_DIR", "migrations")
        )
        self.default_schema = os.getenv("DB_SCHEMA") or (
            "main" if self.is_sqlite else "public"
        )
        self.migration_table = os.getenv("MIGRATION_TABLE", "migrations")
        self.use_lock = _env_flag("MIGRATION_LOCK", "true")
        self.tenant_query = os.getenv(
            "TENANT_QUERY", "SELECT id, name FROM tenant ORDER BY id"
        )
        self.tenant_schema_prefix = os.getenv("TENANT_SCHEMA_PREFIX", "tenant_")
        self.engine = None

    def _get_database_url(self) -> str:
        """Get database URL based on environment"""
        explicit = os.getenv("DATABASE_URL")
        if explicit:
            return explicit

        if self.environment == "production":
            # PostgreSQL configuration for production
            host = os.getenv("DB_HOST", "localhost")
            port = os.getenv("DB_PORT", "5432")
            name = os.getenv("DB_NAME", "app")
            user = os.getenv("DB_USER", "postgres")
            password = os.getenv("DB_PASSWORD", "")

            # URL encode password to handle special characters
            encoded_password = quote_plus(password) if password else ""

            if encoded_password:
                return f"postgresql://{user}:{encoded_password}@{host}:{port}/{name}"
            else:
                return f"postgresql://{user}@{host}:{port}/{name}"
        else:
            # SQLite configuration for development
            db_path = os.path.join(os.getcwd(), "data", "app.db")
            os.makedirs(os.path.dirname(db_path), exist_ok=True)
            return f"sqlite:///{db_path}"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def create_engine(self, **kwargs):
        """Create SQLAlchemy engine with appropriate configuration"""
        engine_config = {}

        engine_config["echo"] = _env_flag("DB_ECHO", "false")
        engine_config["pool_pre_ping"] = True

        if not self.is_sqlite:
            engine_config["pool_size"] = int(os.getenv("DB_POOL_SIZE", "5"))
            engine_config["max_overflow"] = int(os.getenv("DB_MAX_OVERFLOW", "5"))
            engine_config["pool_timeout"] = int(os.getenv("DB_POOL_TIMEOUT", "30"))
            engine_config["pool_recycle"] = int(os.getenv("DB_POOL_RECYCLE", "3600"))

        engine_config.update(kwargs)

        self.engine = create_engine(self.database_url, **engine_config)
        if self.is_sqlite:
            enable_sqlite_transactional_ddl(self.engine)
        return self.engine

    def migrations_dir_for(self, schema: str) -> Path:
        """
        Migration directory governing a schema

        The default schema uses ``<root>/main``, tenant schemas share
        ``<root>/tenant`` and any other schema uses ``<root>/<schema>``.
        """
        if schema == self.default_schema:
            return self.migrations_root / "main"
        if schema.startswith(self.tenant_schema_prefix):
            return self.migrations_root / "tenant"
        return self.migrations_root / schema

    def get_connection_info(self):
        """Get connection information for debugging"""
        return {
            "environment": self.environment,
            "database_url": mask_database_url(self.database_url),
            "default_schema": self.default_schema,
            "migrations_root": str(self.migrations_root),
            "migration_table": self.migration_table,
            "engine_created": self.engine is not None,
        }


def mask_database_url(url: str) -> str:
    """Mask credentials in a database URL for logging"""
    if "@" in url:
        protocol_and_creds, host_and_path = url.rsplit("@", 1)
        protocol = protocol_and_creds.split("://")[0]
        return f"{protocol}://***:***@{host_and_path}"
    return url


def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


def enable_sqlite_transactional_ddl(engine):
    """
    Make pysqlite honour transactions for DDL statements

    The sqlite3 driver only opens a transaction before DML, so a failing
    migration would leave its CREATE/ALTER statements behind. Disabling the
    driver's own handling and emitting BEGIN ourselves puts every statement
    between begin and commit/rollback. Installing the hooks twice is a no-op.
    """
    if not event.contains(engine, "connect", _disable_pysqlite_transactions):
        event.listen(engine, "connect", _disable_pysqlite_transactions)
    if not event.contains(engine, "begin", _emit_begin):
        event.listen(engine, "begin", _emit_begin)
    return engine
