"""
Schema Migrator command line

Usage:
    schema-migrator [up] [--schema NAME | --all-tenants]
    schema-migrator status [--schema NAME ...]
    schema-migrator verify [--schema NAME]
    schema-migrator down [--steps N] [--schema NAME]
"""

import argparse
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from .database.config import DatabaseConfig
from .database.gateway import DatabaseGateway
from .database.init_db import DatabaseInitializer
from .error_handling import LoggingManager, MigrationError, describe_error

logger = logging.getLogger(__name__)

COMMANDS = ('up', 'status', 'verify', 'down')

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        '--database-url',
        help='SQLAlchemy database URL (default: DATABASE_URL or environment settings)'
    )
    common.add_argument(
        '--migrations-dir',
        help='Root directory holding main/ and tenant/ migrations (default: MIGRATIONS_DIR or ./migrations)'
    )
    common.add_argument('--verbose', action='store_true', help='Enable verbose logging')
    common.add_argument('--log-file', help='Also write logs to this file')

    parser = argparse.ArgumentParser(
        prog='schema-migrator',
        description='Versioned, checksum-validated schema migrations',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  schema-migrator                              # Migrate the default schema
  schema-migrator up --all-tenants             # Default schema, then every tenant schema
  schema-migrator status --schema tenant_7     # Applied/pending migrations of one tenant
  schema-migrator down --steps 2               # Revert the two latest migrations
        """
    )
    subparsers = parser.add_subparsers(dest='command')

    up = subparsers.add_parser('up', parents=[common], help='Apply pending migrations')
    up.add_argument('--schema', help='Schema to migrate (default: DB_SCHEMA)')
    up.add_argument('--dir', dest='schema_dir',
                    help='Migration directory for --schema (default: derived from the schema)')
    up.add_argument('--all-tenants', action='store_true',
                    help='After the default schema, migrate every tenant schema')

    status = subparsers.add_parser('status', parents=[common], help='Show migration status')
    status.add_argument('--schema', action='append', dest='schemas',
                        help='Schema to report on, repeatable (default: DB_SCHEMA)')

    verify = subparsers.add_parser('verify', parents=[common],
                                   help='Check applied migrations against their files')
    verify.add_argument('--schema', help='Schema to verify (default: DB_SCHEMA)')

    down = subparsers.add_parser('down', parents=[common], help='Revert the latest migrations')
    down.add_argument('--schema', help='Schema to roll back (default: DB_SCHEMA)')
    down.add_argument('--steps', type=_positive_int, default=1, help='Number of migrations to revert (default: 1)')

    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] not in COMMANDS and argv[0] not in ('-h', '--help'):
        argv.insert(0, 'up')
    return build_parser().parse_args(argv)


def _print_run(result: dict):
    for schema, summary in result['schemas'].items():
        applied = summary['applied_migrations']
        print(f"✅ {schema}: {summary['message']} (current version: {summary['current_version']})")
        for migration in applied:
            print(f"   - {migration['name']} ({migration['execution_time_ms']} ms)")
    for failure in result.get('failed_tenants', []):
        print(f"❌ {failure['schema']} ({failure['tenant']}): {failure['error']}")


def _print_status(schema: str, status: dict):
    print(f"Schema: {schema}")
    if 'error' in status:
        print(f"  ❌ {status['error']}")
        return
    print(f"  Migrations path: {status['migrations_path']}")
    print(f"  Current version: {status['current_version']}")
    print(f"  Applied: {len(status['applied_migrations'])}")
    for migration in status['pending_migrations']:
        print(f"  Pending: {migration['name']}")
    for issue in status['integrity_check']['issues']:
        print(f"  ❌ {issue['type']}: {issue['message']}")
    if not status['sequence_check']['valid']:
        print(f"  ❌ {status['sequence_check']['error']}")


def _status_ok(status: dict) -> bool:
    return ('error' not in status
            and status['integrity_check']['valid']
            and status['sequence_check']['valid'])


def run_command(args: argparse.Namespace, initializer: DatabaseInitializer) -> int:
    if args.command == 'up':
        if args.schema:
            summary = initializer.migrate_schema(args.schema, args.schema_dir)
            result = {'success': True, 'schemas': {summary['schema']: summary}}
        else:
            result = initializer.migrate_all(include_tenants=args.all_tenants)
        _print_run(result)
        return EXIT_OK if result['success'] else EXIT_FAILURE

    if args.command == 'status':
        statuses = initializer.get_migration_status(args.schemas)
        for schema, status in statuses.items():
            _print_status(schema, status)
        return EXIT_OK if all('error' not in s for s in statuses.values()) else EXIT_FAILURE

    if args.command == 'verify':
        schema = args.schema or initializer.config.default_schema
        status = initializer.get_migration_status([schema])[schema]
        _print_status(schema, status)
        if _status_ok(status):
            print(f"✅ {schema}: applied migrations match their files")
            return EXIT_OK
        return EXIT_FAILURE

    if args.command == 'down':
        result = initializer.rollback_schema(args.steps, args.schema)
        for migration in result['rolled_back_migrations']:
            print(f"↩️  Rolled back {migration['name']}")
        print(f"✅ {result['schema']}: {result['message']} (current version: {result['current_version']})")
        return EXIT_OK

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point, returns the process exit code"""
    load_dotenv()
    args = parse_args(argv)

    LoggingManager.setup_logging(
        log_level='DEBUG' if args.verbose else 'INFO',
        log_file=args.log_file,
    )

    config = DatabaseConfig(database_url=args.database_url, migrations_root=args.migrations_dir)
    logger.info(f"Using database {config.get_connection_info()['database_url']}")

    try:
        with DatabaseGateway.from_config(config) as gateway:
            initializer = DatabaseInitializer(config, gateway)
            connection = initializer.check_connection()
            if not connection['success']:
                print(f"❌ Database connection failed: {connection['error']}", file=sys.stderr)
                return EXIT_FAILURE
            return run_command(args, initializer)
    except MigrationError as e:
        logger.error(f"Migration process failed: {e}")
        print(f"❌ {describe_error(e)}", file=sys.stderr)
        return EXIT_FAILURE
    except SQLAlchemyError as e:
        logger.error(f"Database error: {e}")
        print(f"❌ Database error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("\n⚠️ Migration interrupted, open transaction rolled back", file=sys.stderr)
        return EXIT_INTERRUPTED
    finally:
        logger.info("Migration script exiting...")


if __name__ == '__main__':
    sys.exit(main())
