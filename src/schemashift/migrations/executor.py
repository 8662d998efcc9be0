"""
Migration Executor

Applies and reverts migrations. Every mutating operation runs under the
migration lock; each migration runs in its own transaction and is
recorded in (or removed from) the tracking table inside that
transaction. Destructive migrations are backed up first, and a backup
is kept when its migration fails because it is the recovery path.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..config import MigrationConfig
from .backup import BackupManager
from .base import BaseMigration, MigrationError, MigrationValidationError
from .dialect import MySQLDialect, SQLDialect
from .introspector import SchemaIntrospector
from .lock import MigrationLockManager
from .manager import MigrationManager
from .validator import MigrationValidator
from .version_tracker import MigrationRecord, VersionTracker

logger = logging.getLogger(__name__)


@dataclass
class MigrateOptions:
    """Options for a migrate run."""

    dry_run: bool = False
    force: bool = False


class MigrationExecutor:
    """
    Runs migrations against a database.

    Per migration the states are: pending, validating, backing up (when
    destructive or requiring a backup), executing inside a transaction,
    recorded. Pending migrations run sequentially in ascending version
    order and share one batch number.
    """

    def __init__(
        self,
        connection: Any,
        migrations_dir: str | Path | None = None,
        config: MigrationConfig | None = None,
        dialect: SQLDialect | None = None,
        lock_manager: MigrationLockManager | None = None,
        backup_manager: BackupManager | None = None,
        validator: MigrationValidator | None = None,
        introspector: SchemaIntrospector | None = None,
    ) -> None:
        """
        Initialize executor.

        Args:
            connection: Object exposing ``query(sql, params)``
            migrations_dir: Directory holding ``Migration_<version>.py`` files.
                Defaults to config.migrations_dir
            config: Migration configuration
            dialect: SQL dialect for transaction and DDL statements
            lock_manager: Cross-process lock
            backup_manager: Backup creation before destructive migrations
            validator: Pre-execution safety checks
            introspector: Catalog reader
        """
        self.connection = connection
        self.config = config or MigrationConfig()
        self.dialect = dialect or MySQLDialect()
        self.manager = MigrationManager(migrations_dir or self.config.migrations_dir)
        self.tracker = VersionTracker(connection)
        self.introspector = introspector or SchemaIntrospector(connection)
        self.lock_manager = lock_manager or MigrationLockManager(
            connection, stale_after_seconds=self.config.lock_timeout_seconds
        )
        self.backup_manager = backup_manager or BackupManager(
            connection, self.config, dialect=self.dialect
        )
        self.validator = validator or MigrationValidator(connection, self.introspector)

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------

    def migrate(self, options: MigrateOptions | None = None) -> dict[str, Any]:
        """
        Run every pending migration.

        Args:
            options: Dry-run and force flags

        Returns:
            Dictionary with ``batch``, ``executed`` versions, ``dry_run`` and,
            for dry runs, a ``preview`` of statements per version

        Raises:
            MigrationLockError: If another process is migrating
            MigrationValidationError: If a pending migration is unsafe and
                ``force`` is not set
            MigrationError: If a migration fails
        """
        options = options or MigrateOptions()
        self.introspector.ensure_migration_tables()
        return self.lock_manager.with_lock(lambda: self._migrate(options))

    def _migrate(self, options: MigrateOptions) -> dict[str, Any]:
        result: dict[str, Any] = {
            "batch": None,
            "executed": [],
            "dry_run": options.dry_run,
            "preview": {},
        }

        pending = self.get_pending_migrations()
        if not pending:
            logger.info("No pending migrations")
            return result

        if options.force:
            logger.warning("Skipping migration validation (force)")
        else:
            self._validate_pending(pending)

        batch = self.tracker.get_next_batch_number()
        result["batch"] = batch
        logger.info(f"Running {len(pending)} migration(s) in batch {batch}")

        for migration in pending:
            if options.dry_run:
                result["preview"][migration.version] = migration.dry_run(self.connection)
                continue
            self._execute_migration(migration, batch)
            result["executed"].append(migration.version)

        return result

    def _validate_pending(self, pending: list[BaseMigration]) -> None:
        schema = self.introspector.get_current_schema()
        for migration in pending:
            validation = self.validator.validate(migration, schema)
            for warning in validation.warnings:
                logger.warning(f"Migration {migration.version}: {warning}")
            for suggestion in validation.suggestions:
                logger.info(f"Migration {migration.version} suggestion: {suggestion}")
            if not validation.valid:
                raise MigrationValidationError(migration.version, validation.errors)

    def _execute_migration(self, migration: BaseMigration, batch: int) -> None:
        version = migration.version
        backup_path: str | None = None

        if migration.is_destructive or migration.requires_backup:
            if migration.is_destructive:
                logger.warning(f"Migration {version} is DESTRUCTIVE, backing up first")
            backup_path = str(self.backup_manager.create_backup(version))

        logger.info(f"Migrating {version}")
        start_time = time.time()
        try:
            self.connection.query(self.dialect.begin_statement)
            migration.up(self.connection)
            execution_time = int((time.time() - start_time) * 1000)
            self.tracker.record_migration_applied(version, execution_time, batch, backup_path)
            if migration.is_squashed:
                self._record_replaced_versions(migration, batch)
            self.connection.query(self.dialect.commit_statement)
        except Exception as e:
            self._rollback_transaction(version)
            if backup_path:
                logger.error(f"Backup preserved for recovery: {backup_path}")
            raise MigrationError(f"Migration {version} failed: {e}") from e

        logger.info(f"Migrated {version} ({execution_time}ms)")

    def _record_replaced_versions(self, migration: BaseMigration, batch: int) -> None:
        executed = self.tracker.get_executed_versions()
        for version in migration.squashed_versions:
            if version not in executed:
                self.tracker.record_migration_applied(version, 0, batch, squashed=True)

    # ------------------------------------------------------------------
    # Backward
    # ------------------------------------------------------------------

    def rollback(self, steps: int = 1) -> list[str]:
        """
        Roll back the most recent ``steps`` batches.

        Returns:
            Versions rolled back, newest first
        """
        if steps < 1:
            raise MigrationError("Rollback steps must be at least 1")
        self.introspector.ensure_migration_tables()

        def run() -> list[str]:
            batches = self.tracker.get_last_batches(steps)
            versions = self._without_squashed(self.tracker.get_versions_in_batches(batches))
            return self._rollback_versions(versions)

        return self.lock_manager.with_lock(run)

    def rollback_to_version(self, target_version: str) -> list[str]:
        """
        Roll back every executed migration with ``version >= target_version``.

        Raises:
            MigrationError: If the target version was never executed
        """
        self.introspector.ensure_migration_tables()

        def run() -> list[str]:
            records = self.tracker.get_executed_migrations()
            if target_version not in {record.version for record in records}:
                raise MigrationError(f"Migration {target_version} has not been executed")
            versions = sorted(
                (r.version for r in records if r.version >= target_version and not r.squashed),
                reverse=True,
            )
            return self._rollback_versions(versions)

        return self.lock_manager.with_lock(run)

    def rollback_all(self) -> list[str]:
        """Roll back every executed migration, newest first."""
        self.introspector.ensure_migration_tables()

        def run() -> list[str]:
            records = self.tracker.get_executed_migrations()
            versions = sorted((r.version for r in records if not r.squashed), reverse=True)
            return self._rollback_versions(versions)

        return self.lock_manager.with_lock(run)

    def _without_squashed(self, versions: list[str]) -> list[str]:
        squashed = {r.version for r in self.tracker.get_executed_migrations() if r.squashed}
        return [version for version in versions if version not in squashed]

    def _rollback_versions(self, versions: list[str]) -> list[str]:
        if not versions:
            logger.info("Nothing to roll back")
            return []
        for version in versions:
            self._rollback_migration(version)
        return versions

    def _rollback_migration(self, version: str) -> None:
        migration = self.manager.get_migration(version)
        if migration is None:
            raise MigrationError(
                f"Migration file for {version} not found, cannot roll back"
            )

        logger.info(f"Rolling back {version}")
        try:
            self.connection.query(self.dialect.begin_statement)
            migration.down(self.connection)
            self.tracker.record_migration_rolled_back(version)
            if migration.is_squashed:
                self.tracker.delete_squashed_records()
            self.connection.query(self.dialect.commit_statement)
        except Exception as e:
            self._rollback_transaction(version)
            raise MigrationError(f"Rollback of migration {version} failed: {e}") from e

        logger.info(f"Rolled back {version}")

    def _rollback_transaction(self, version: str) -> None:
        try:
            self.connection.query(self.dialect.rollback_statement)
        except Exception as e:
            logger.error(f"ROLLBACK after failure of {version} also failed: {e}")

    # ------------------------------------------------------------------
    # Composite operations
    # ------------------------------------------------------------------

    def refresh(self, options: MigrateOptions | None = None) -> dict[str, Any]:
        """Roll back everything, then migrate again."""
        self.rollback_all()
        return self.migrate(options)

    def fresh(self, options: MigrateOptions | None = None) -> dict[str, Any]:
        """
        Drop every application table, clear history, then migrate.

        This discards all data in the database.
        """
        self.introspector.ensure_migration_tables()

        def drop_all() -> list[str]:
            tables = self.introspector.get_tables()
            logger.warning(f"Dropping {len(tables)} table(s) for a fresh migration")
            self.connection.query(self.dialect.set_foreign_key_checks(False))
            try:
                for table in tables:
                    self.connection.query(self.dialect.drop_table(table))
            finally:
                self.connection.query(self.dialect.set_foreign_key_checks(True))
            self.tracker.clear()
            return tables

        self.lock_manager.with_lock(drop_all)
        return self.migrate(options)

    def restore_backup(self, version: str) -> int:
        """
        Restore the backup taken before a migration ran.

        Raises:
            MigrationError: If no backup is recorded for the version
        """
        backup_path = self.tracker.get_backup_path(version)
        if not backup_path:
            raise MigrationError(f"No backup recorded for migration {version}")
        return self.backup_manager.restore(backup_path)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_executed_migrations(self) -> list[MigrationRecord]:
        return self.tracker.get_executed_migrations()

    def get_pending_migrations(self) -> list[BaseMigration]:
        """
        Migrations not yet executed, in version order.

        Versions replaced by a squashed baseline are never pending; the
        baseline runs in their place.
        """
        executed = self.tracker.get_executed_versions()
        migrations = self.manager.discover_migrations()
        replaced = {
            version
            for migration in migrations
            if migration.is_squashed
            for version in migration.squashed_versions
        }
        return [
            m for m in migrations if m.version not in executed and m.version not in replaced
        ]

    def status(self) -> str:
        """
        Render the status of every known migration.

        Returns:
            Box-drawn table with summary lines
        """
        records = {record.version: record for record in self.get_executed_migrations()}
        migrations = {m.version: m for m in self.manager.discover_migrations()}

        rows = []
        for version in sorted(set(records) | set(migrations)):
            record = records.get(version)
            migration = migrations.get(version)

            flags = []
            if migration is not None and migration.is_destructive:
                flags.append("⚠")
            if record is not None and record.backup_path:
                flags.append("✓")
            if record is not None and record.squashed:
                flags.append("⊘")

            if record is not None:
                time_text = (
                    f"{record.execution_time}ms"
                    if record.execution_time is not None
                    else "-"
                )
                date_text = (
                    record.executed_at.strftime("%Y-%m-%d %H:%M:%S")
                    if hasattr(record.executed_at, "strftime")
                    else str(record.executed_at or "-")
                )
                rows.append(
                    [
                        version,
                        "✓ Executed",
                        str(record.batch),
                        time_text,
                        date_text,
                        " ".join(flags),
                    ]
                )
            else:
                rows.append([version, "○ Pending", "-", "-", "-", " ".join(flags)])

        executed = list(records.values())
        headers = ["VERSION", "STATUS", "BATCH", "TIME", "DATE", "FLAGS"]
        lines = [render_table(headers, rows)]
        lines.append("")
        lines.append(
            f"Total: {len(rows)}  Executed: {len(executed)}  "
            f"Pending: {len(rows) - len(executed)}"
        )
        latest_batch = max((r.batch for r in executed), default=0)
        with_backups = sum(1 for r in executed if r.backup_path)
        total_time = sum(r.execution_time or 0 for r in executed)
        lines.append(
            f"Latest batch: {latest_batch}  With backups: {with_backups}  "
            f"Total time: {total_time}ms"
        )
        lines.append("Legend: ⚠ destructive  ✓ backup  ⊘ squashed")
        return "\n".join(lines)


def render_table(headers: list[str], rows: list[list[str]]) -> str:
    """Render rows as a box-drawn table."""
    if not rows:
        rows = [["(none)"] + [""] * (len(headers) - 1)]
    widths = [len(header) for header in headers]
    for row in rows:
        for index, cell in enumerate(row):
            widths[index] = max(widths[index], len(cell))

    def border(left: str, middle: str, right: str) -> str:
        return left + middle.join("─" * (width + 2) for width in widths) + right

    def line(cells: list[str]) -> str:
        padded = (f" {cell.ljust(widths[i])} " for i, cell in enumerate(cells))
        return "│" + "│".join(padded) + "│"

    output = [border("┌", "┬", "┐"), line(headers), border("├", "┼", "┤")]
    output.extend(line(row) for row in rows)
    output.append(border("└", "┴", "┘"))
    return "\n".join(output)
