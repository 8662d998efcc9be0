"""
Command Line Interface

``schemashift <command>`` wraps the migration subsystem: generate,
migrate, rollback, status, squash and backup management. Exits 0 on
success and 1 with an ``Error:`` message on failure.
"""

import argparse
import logging
import sys
from pathlib import Path

from .config import MigrationConfig, configure_logging
from .connection import DatabaseConnection
from .migrations.backup import BackupManager, format_size
from .migrations.entity_builder import EntitySchemaBuilder
from .migrations.executor import MigrateOptions, MigrationExecutor
from .migrations.generator import (
    MigrationGenerator,
    confirm_all,
    prompt_confirmation,
    reject_all,
)
from .migrations.squasher import MigrationSquasher

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schemashift", description="Entity-driven MySQL schema migrations"
    )
    parser.add_argument("--env-file", type=str, help="Path of a .env file to load")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    commands = parser.add_subparsers(dest="command", required=True)

    generate = commands.add_parser("generate", help="Generate a migration from entities")
    renames = generate.add_mutually_exclusive_group()
    renames.add_argument("--yes", action="store_true", help="Accept every detected rename")
    renames.add_argument(
        "--no-renames", action="store_true", help="Treat every rename as drop + add"
    )

    migrate = commands.add_parser("migrate", help="Run pending migrations")
    migrate.add_argument("--dry-run", action="store_true", help="Print SQL without running")
    migrate.add_argument("--force", action="store_true", help="Skip safety validation")

    rollback = commands.add_parser("rollback", help="Roll back migrations")
    target = rollback.add_mutually_exclusive_group()
    target.add_argument("--steps", type=int, default=1, help="Number of batches")
    target.add_argument("--to", dest="to_version", type=str, help="Roll back to version")

    commands.add_parser("rollback-all", help="Roll back every migration")
    commands.add_parser("refresh", help="Roll back everything and migrate again")

    fresh = commands.add_parser("fresh", help="Drop all tables and migrate from scratch")
    fresh.add_argument("--yes", action="store_true", help="Confirm dropping all tables")

    commands.add_parser("status", help="Show migration status")

    squash = commands.add_parser("squash", help="Squash executed migrations")
    squash.add_argument("--to", dest="to_version", type=str, help="Newest version to fold in")

    backup = commands.add_parser("backup", help="Manage backups")
    backup_commands = backup.add_subparsers(dest="backup_command", required=True)
    backup_commands.add_parser("list", help="List backups")
    restore = backup_commands.add_parser("restore", help="Restore a backup")
    restore.add_argument("target", help="Backup file path or migration version")
    cleanup = backup_commands.add_parser("cleanup", help="Delete old backups")
    cleanup.add_argument("--days", type=int, help="Retention in days")

    return parser


def _print_migrate_result(result: dict) -> None:
    if result["dry_run"]:
        for version, statements in result["preview"].items():
            print(f"-- Migration {version}")
            for statement in statements:
                print(f"{statement};")
        print(f"Dry run complete: {len(result['preview'])} migration(s) previewed")
    elif result["executed"]:
        print(
            f"Migrated {len(result['executed'])} migration(s) in batch {result['batch']}"
        )
    else:
        print("Nothing to migrate")


def run_command(args: argparse.Namespace, config: MigrationConfig) -> int:
    with DatabaseConnection.from_config(config) as connection:
        if args.command == "generate":
            if args.yes:
                confirm = confirm_all
            elif args.no_renames:
                confirm = reject_all
            else:
                confirm = prompt_confirmation
            generator = MigrationGenerator(
                connection,
                config.migrations_dir,
                entity_builder=EntitySchemaBuilder(entities_dir=config.entities_dir),
                confirm=confirm,
            )
            generated = generator.generate()
            if generated is None:
                print("No schema changes detected")
            else:
                print(generated.diff.get_summary())
                print(f"Created migration: {generated.path}")
            return 0

        if args.command == "squash":
            squasher = MigrationSquasher(connection, config.migrations_dir)
            path = squasher.squash(args.to_version)
            print(f"Created squashed migration: {path}" if path else "Nothing to squash")
            return 0

        if args.command == "backup":
            return run_backup_command(args, config, connection)

        executor = MigrationExecutor(connection, config=config)

        if args.command == "migrate":
            _print_migrate_result(
                executor.migrate(MigrateOptions(dry_run=args.dry_run, force=args.force))
            )
        elif args.command == "rollback":
            if args.to_version:
                versions = executor.rollback_to_version(args.to_version)
            else:
                versions = executor.rollback(args.steps)
            print(f"Rolled back {len(versions)} migration(s)")
        elif args.command == "rollback-all":
            versions = executor.rollback_all()
            print(f"Rolled back {len(versions)} migration(s)")
        elif args.command == "refresh":
            _print_migrate_result(executor.refresh())
        elif args.command == "fresh":
            if not args.yes:
                print("Error: fresh drops every table; rerun with --yes", file=sys.stderr)
                return 1
            _print_migrate_result(executor.fresh())
        elif args.command == "status":
            print(executor.status())

    return 0


def run_backup_command(
    args: argparse.Namespace, config: MigrationConfig, connection: DatabaseConnection
) -> int:
    manager = BackupManager(connection, config)

    if args.backup_command == "list":
        backups = manager.list_backups()
        if not backups:
            print("No backups found")
            return 0
        for backup in backups:
            created = backup.created_at.strftime("%Y-%m-%d %H:%M:%S")
            print(f"{backup.filename}  {format_size(backup.size)}  {created}")
        print(f"Total: {format_size(manager.get_total_backup_size())}")
    elif args.backup_command == "restore":
        if Path(args.target).exists():
            count = manager.restore(args.target)
        else:
            executor = MigrationExecutor(connection, config=config, backup_manager=manager)
            count = executor.restore_backup(args.target)
        print(f"Restored {count} statement(s)")
    elif args.backup_command == "cleanup":
        deleted = manager.cleanup_old_backups(args.days)
        print(f"Deleted {deleted} old backup(s)")

    return 0


def main(argv: list[str] | None = None) -> int:
    """Command line entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = MigrationConfig.from_environment(args.env_file)
        configure_logging("DEBUG" if args.verbose else config.log_level)
        return run_command(args, config)
    except KeyboardInterrupt:
        print("Aborted", file=sys.stderr)
        return 1
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
