"""
Database Initialization Service

Drives migration runs across namespaces: the default schema first, then
every tenant schema. Handles both SQLite (development) and PostgreSQL
(production) environments.
"""

import logging
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..error_handling import MigrationError, describe_error
from ..migrations.migration_runner import MigrationRunner
from ..migrations.registry import MigrationRegistry
from .config import DatabaseConfig, mask_database_url

logger = logging.getLogger(__name__)


class DatabaseInitializer:
    """
    Multi-namespace migration service

    Features:
    - Default schema migration with fail-stop semantics
    - Tenant schema discovery and per-tenant migration
    - Migration status across namespaces
    - Connectivity validation
    """

    def __init__(self, config: DatabaseConfig, gateway,
                 registries: Optional[Dict[Path, MigrationRegistry]] = None):
        """
        Initialize database service

        Args:
            config: Database configuration instance
            gateway: Open DatabaseGateway owned by the caller
            registries: Python migrations per migrations directory; loaded
                from the directory on first use when absent
        """
        self.config = config
        self.gateway = gateway
        self._registries = {
            Path(path).resolve(): registry for path, registry in (registries or {}).items()
        }

        logger.info(
            f"Database initializer created for {self.config.environment} environment"
        )

    def check_connection(self) -> Dict:
        """
        Test database connectivity

        Returns:
            Connection test results
        """
        try:
            start_time = time.time()

            test_value = self.gateway.execute(text("SELECT 1 AS test_value"))[0]["test_value"]
            if test_value != 1:
                raise MigrationError("Database test query returned unexpected result")

            connection_time_ms = int((time.time() - start_time) * 1000)

            return {
                "success": True,
                "connection_time_ms": connection_time_ms,
                "database_type": self.gateway.dialect_name,
                "url_masked": mask_database_url(self.config.database_url),
            }

        except (SQLAlchemyError, MigrationError) as e:
            logger.error(f"Database connection test failed: {e}")
            return {
                "success": False,
                "error": str(e),
                "url_masked": mask_database_url(self.config.database_url),
            }

    def registry_for(self, migrations_dir: Path) -> MigrationRegistry:
        """Python migrations of a directory, loaded once per directory"""
        key = Path(migrations_dir).resolve()
        if key not in self._registries:
            self._registries[key] = MigrationRegistry.from_directory(key)
        return self._registries[key]

    def runner_for(self, schema: Optional[str] = None,
                   migrations_dir: Optional[Path] = None) -> MigrationRunner:
        schema = schema or self.config.default_schema
        migrations_dir = Path(migrations_dir or self.config.migrations_dir_for(schema))
        return MigrationRunner(
            self.gateway,
            schema,
            migrations_dir,
            registry=self.registry_for(migrations_dir),
            table_name=self.config.migration_table,
        )

    def migrate_schema(self, schema: Optional[str] = None,
                       migrations_dir: Optional[Path] = None) -> Dict:
        """Apply pending migrations to one namespace"""
        return self.runner_for(schema, migrations_dir).run()

    def rollback_schema(self, steps: int = 1, schema: Optional[str] = None,
                        migrations_dir: Optional[Path] = None) -> Dict:
        """Revert the latest migrations of one namespace"""
        return self.runner_for(schema, migrations_dir).rollback(steps)

    def list_tenant_schemas(self) -> List[Tuple[str, str]]:
        """
        Tenant namespaces from the configured tenant query

        Returns:
            ``(schema, tenant name)`` pairs
        """
        rows = self.gateway.execute(self.config.tenant_query)
        return [
            (f"{self.config.tenant_schema_prefix}{row['id']}", str(row.get('name', row['id'])))
            for row in rows
        ]

    def migrate_all(self, include_tenants: bool = False) -> Dict:
        """
        Migrate the default schema, then optionally every tenant schema

        A failure in the default schema propagates. A failing tenant is
        logged and reported while the remaining tenants still run.
        """
        start_time = time.time()
        default_schema = self.config.default_schema
        results = {
            "success": True,
            "schemas": {default_schema: self.migrate_schema(default_schema)},
            "failed_tenants": [],
        }

        if include_tenants:
            for schema, tenant_name in self.list_tenant_schemas():
                logger.info(f"Running migration for: {tenant_name} ({schema})")
                try:
                    results["schemas"][schema] = self.migrate_schema(schema)
                except MigrationError as e:
                    logger.error(f"Failed to migrate {tenant_name} ({schema}): {describe_error(e)}")
                    results["failed_tenants"].append({
                        "schema": schema,
                        "tenant": tenant_name,
                        "error": describe_error(e),
                    })
                    results["success"] = False

        results["total_time_ms"] = int((time.time() - start_time) * 1000)
        if results["success"]:
            logger.info("All migrations completed")
        return results

    def get_migration_status(self, schemas: Optional[List[str]] = None) -> Dict:
        """Migration status of the given namespaces (default schema if none)"""
        schemas = schemas or [self.config.default_schema]
        return {schema: self.runner_for(schema).get_migration_status() for schema in schemas}
