"""
Backup Manager

Point-in-time SQL snapshots taken before destructive migrations. Dumps
are produced entirely through the migration connection (no external
dump tools): table DDL from ``SHOW CREATE TABLE`` plus batched INSERTs,
wrapped in foreign-key-check toggles, then gzip-compressed.
"""

import gzip
import logging
import re
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from ..config import MigrationConfig
from .base import BackupError
from .dialect import MySQLDialect, SQLDialect
from .introspector import LOCK_TABLE

logger = logging.getLogger(__name__)

INSERT_BATCH_SIZE = 100
TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass
class BackupInfo:
    """A backup file on disk."""

    filename: str
    path: Path
    size: int
    created_at: datetime

    @property
    def compressed(self) -> bool:
        return self.filename.endswith(".gz")


def format_size(num_bytes: int) -> str:
    """Format a byte count as B, KB, MB or GB with two decimals."""
    units = ["B", "KB", "MB", "GB"]
    size = float(num_bytes)
    unit_index = 0
    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1
    return f"{size:.2f} {units[unit_index]}"


class BackupManager:
    """Creates, restores, lists and prunes migration backups."""

    def __init__(
        self,
        connection: Any,
        config: MigrationConfig,
        backup_dir: str | Path | None = None,
        dialect: SQLDialect | None = None,
        compression_grace_seconds: float = 0.1,
    ) -> None:
        """
        Initialize backup manager.

        Args:
            connection: Object exposing ``query(sql, params)``
            config: Migration configuration (DB_NAME is required for dumps)
            backup_dir: Directory for backup files. Defaults to config.backups_dir
            dialect: SQL dialect used to render the dump
            compression_grace_seconds: Pause before deleting the uncompressed dump
        """
        self.connection = connection
        self.config = config
        self.backup_dir = Path(backup_dir) if backup_dir else Path(config.backups_dir)
        self.dialect = dialect or MySQLDialect()
        self.compression_grace_seconds = compression_grace_seconds

    def create_backup(self, migration_version: str) -> Path:
        """
        Dump every table of the database before a migration runs.

        Args:
            migration_version: Version the backup protects

        Returns:
            Path of the backup file (``.sql.gz`` unless compression failed)

        Raises:
            ConfigurationError: If DB_NAME is not configured
            BackupError: If the dump cannot be written
        """
        database = self.config.require_database_name()
        tables = self._list_tables()
        filename = f"backup_{migration_version}_{int(time.time() * 1000)}.sql"
        return self._write_backup(filename, migration_version, database, tables)

    def create_selective_backup(self, migration_version: str, tables: list[str]) -> Path:
        """
        Dump only the given tables.

        Raises:
            ConfigurationError: If DB_NAME is not configured
            BackupError: If no tables are given, a name is invalid, or the
                dump cannot be written
        """
        database = self.config.require_database_name()
        if not tables:
            raise BackupError("No tables specified for selective backup")
        invalid = [table for table in tables if not TABLE_NAME_PATTERN.match(table)]
        if invalid:
            raise BackupError(f"Invalid table name(s) for backup: {', '.join(invalid)}")

        filename = f"backup_{migration_version}_{int(time.time() * 1000)}_selective.sql"
        return self._write_backup(filename, migration_version, database, tables)

    def _list_tables(self) -> list[str]:
        rows = self.connection.query(
            "SELECT TABLE_NAME AS table_name FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_TYPE = 'BASE TABLE' "
            "AND TABLE_NAME != %s ORDER BY TABLE_NAME",
            (LOCK_TABLE,),
        )
        return [row["table_name"] for row in rows if row.get("table_name")]

    def _write_backup(
        self, filename: str, migration_version: str, database: str, tables: list[str]
    ) -> Path:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        backup_path = self.backup_dir / filename

        logger.info(f"Creating backup for migration {migration_version}: {filename}")
        try:
            with open(backup_path, "w", encoding="utf-8") as handle:
                for chunk in self.dump_statements(migration_version, database, tables):
                    handle.write(chunk)
        except Exception as e:
            if backup_path.exists():
                backup_path.unlink()
            raise BackupError(f"Backup creation failed: {e}") from e

        final_path = self._compress(backup_path)
        logger.info(f"Backup created: {final_path}")
        return final_path

    def dump_statements(self, migration_version: str, database: str, tables: list[str]):
        """Yield the dump script piece by piece."""
        d = self.dialect
        yield f"-- schemashift backup of {database}\n"
        yield f"-- Migration: {migration_version}\n"
        yield f"-- Created: {datetime.now().isoformat()}\n\n"
        yield f"{d.set_foreign_key_checks(False)};\n\n"

        for table in tables:
            quoted = d.quote_identifier(table)
            yield f"-- Table {table}\n"
            yield f"DROP TABLE IF EXISTS {quoted};\n"

            create_rows = self.connection.query(d.show_create_table(table))
            if not create_rows:
                raise BackupError(f"Cannot read definition of table {table}")
            yield f"{self._create_statement(create_rows[0])};\n"

            rows = self.connection.query(f"SELECT * FROM {quoted}")
            for start in range(0, len(rows), INSERT_BATCH_SIZE):
                yield self._insert_statement(table, rows[start : start + INSERT_BATCH_SIZE])
            yield "\n"

        yield f"{d.set_foreign_key_checks(True)};\n"

    @staticmethod
    def _create_statement(row: dict[str, Any]) -> str:
        statement = row.get("Create Table")
        if statement is None:
            # Fall back to the second column of the SHOW CREATE TABLE result
            values = list(row.values())
            statement = values[1] if len(values) > 1 else None
        if not statement:
            raise BackupError("SHOW CREATE TABLE returned no definition")
        return statement

    def _insert_statement(self, table: str, rows: list[dict[str, Any]]) -> str:
        d = self.dialect
        columns = list(rows[0].keys())
        column_list = ", ".join(d.quote_identifier(column) for column in columns)
        values = ",\n  ".join(
            "(" + ", ".join(d.literal(row.get(column)) for column in columns) + ")"
            for row in rows
        )
        return f"INSERT INTO {d.quote_identifier(table)} ({column_list}) VALUES\n  {values};\n"

    def _compress(self, backup_path: Path) -> Path:
        """Gzip the dump; keep the plain file if compression fails."""
        compressed_path = backup_path.with_name(backup_path.name + ".gz")
        try:
            with open(backup_path, "rb") as source, gzip.open(compressed_path, "wb") as target:
                shutil.copyfileobj(source, target)
        except OSError as e:
            logger.warning(
                f"Backup compression failed, keeping uncompressed file: {e}"
            )
            if compressed_path.exists():
                compressed_path.unlink()
            return backup_path

        if self.compression_grace_seconds:
            time.sleep(self.compression_grace_seconds)
        backup_path.unlink()
        return compressed_path

    def restore(self, backup_path: str | Path) -> int:
        """
        Restore the database from a backup file.

        Statements run one by one, outside a transaction, because the DDL
        in the dump cannot be wrapped in one.

        Args:
            backup_path: ``.sql`` or ``.sql.gz`` file

        Returns:
            Number of statements executed

        Raises:
            ConfigurationError: If DB_NAME is not configured
            BackupError: If the file is missing or a statement fails
        """
        self.config.require_database_name()
        path = Path(backup_path)
        if not path.exists():
            raise BackupError(f"Backup file not found: {path}")

        logger.warning(f"Restoring database from backup: {path.name}")
        if path.suffix == ".gz":
            with gzip.open(path, "rt", encoding="utf-8") as handle:
                script = handle.read()
        else:
            script = path.read_text(encoding="utf-8")

        statements = self.parse_script(script)
        for index, statement in enumerate(statements, start=1):
            try:
                self.connection.query(statement)
            except Exception as e:
                raise BackupError(
                    f"Restore failed at statement {index}/{len(statements)}: {e}"
                ) from e

        logger.info(f"Database restored from {path.name} ({len(statements)} statements)")
        return len(statements)

    @staticmethod
    def parse_script(script: str) -> list[str]:
        """Strip comment lines and split a dump into statements."""
        content = "\n".join(
            line for line in script.splitlines() if not line.lstrip().startswith("--")
        )
        statements = []
        for part in (content + "\n").split(";\n"):
            statement = part.strip()
            if statement:
                statements.append(statement)
        return statements

    def list_backups(self) -> list[BackupInfo]:
        """Backup files, newest first."""
        if not self.backup_dir.is_dir():
            return []

        backups = []
        for path in self.backup_dir.iterdir():
            name = path.name
            if not name.startswith("backup_") or not (
                name.endswith(".sql") or name.endswith(".sql.gz")
            ):
                continue
            stats = path.stat()
            backups.append(
                BackupInfo(
                    filename=name,
                    path=path,
                    size=stats.st_size,
                    created_at=datetime.fromtimestamp(stats.st_mtime),
                )
            )
        backups.sort(key=lambda info: info.created_at, reverse=True)
        return backups

    def cleanup_old_backups(self, retention_days: int | None = None) -> int:
        """
        Delete backups older than the retention window.

        Args:
            retention_days: Age limit in days. Defaults to the configured value

        Returns:
            Number of files deleted
        """
        if retention_days is None:
            retention_days = self.config.backup_retention_days
        cutoff = datetime.now() - timedelta(days=retention_days)

        deleted = 0
        for backup in self.list_backups():
            if backup.created_at < cutoff:
                backup.path.unlink()
                logger.info(f"Deleted old backup: {backup.filename}")
                deleted += 1

        if deleted:
            logger.info(f"Cleaned up {deleted} old backup(s)")
        return deleted

    def get_total_backup_size(self) -> int:
        return sum(backup.size for backup in self.list_backups())

    format_size = staticmethod(format_size)
