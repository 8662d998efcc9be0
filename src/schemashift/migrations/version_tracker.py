"""
Migration Version Tracker

Owns every read and write of the ``migrations`` tracking table: which
versions have run, in which batch, how long they took, whether they have
been squashed and where their pre-migration backup lives.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .base import MigrationError
from .introspector import MIGRATIONS_TABLE

logger = logging.getLogger(__name__)


@dataclass
class MigrationRecord:
    """One row of the tracking table."""

    version: str
    executed_at: datetime | None
    execution_time: int | None
    batch: int
    squashed: bool = False
    backup_path: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "MigrationRecord":
        return cls(
            version=str(row["version"]),
            executed_at=row.get("executed_at"),
            execution_time=row.get("execution_time"),
            batch=int(row.get("batch") or 0),
            squashed=bool(row.get("squashed")),
            backup_path=row.get("backup_path"),
        )


class VersionTracker:
    """Reads and writes migration history."""

    def __init__(self, connection: Any) -> None:
        """
        Initialize version tracker.

        Args:
            connection: Object exposing ``query(sql, params) -> list[dict]``
        """
        self.connection = connection

    def table_exists(self) -> bool:
        rows = self.connection.query(
            "SELECT COUNT(*) AS count FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s",
            (MIGRATIONS_TABLE,),
        )
        return bool(rows) and int(rows[0].get("count") or 0) > 0

    def get_executed_migrations(self) -> list[MigrationRecord]:
        """
        Get every executed migration in ascending version order.

        Returns:
            Migration records, or an empty list if tracking is not set up
        """
        if not self.table_exists():
            return []
        rows = self.connection.query(
            f"SELECT version, executed_at, execution_time, batch, squashed, backup_path "
            f"FROM `{MIGRATIONS_TABLE}` ORDER BY version ASC"
        )
        return [MigrationRecord.from_row(row) for row in rows]

    def get_executed_versions(self) -> set[str]:
        return {record.version for record in self.get_executed_migrations()}

    def get_record(self, version: str) -> MigrationRecord | None:
        if not self.table_exists():
            return None
        rows = self.connection.query(
            f"SELECT version, executed_at, execution_time, batch, squashed, backup_path "
            f"FROM `{MIGRATIONS_TABLE}` WHERE version = %s",
            (version,),
        )
        return MigrationRecord.from_row(rows[0]) if rows else None

    def get_latest_batch(self) -> int:
        rows = self.connection.query(
            f"SELECT MAX(batch) AS max_batch FROM `{MIGRATIONS_TABLE}`"
        )
        if not rows or rows[0].get("max_batch") is None:
            return 0
        return int(rows[0]["max_batch"])

    def get_next_batch_number(self) -> int:
        return self.get_latest_batch() + 1

    def get_last_batches(self, steps: int) -> list[int]:
        """Most recent ``steps`` distinct batch numbers, newest first."""
        rows = self.connection.query(
            f"SELECT DISTINCT batch FROM `{MIGRATIONS_TABLE}` "
            f"ORDER BY batch DESC LIMIT %s",
            (steps,),
        )
        return [int(row["batch"]) for row in rows]

    def get_versions_in_batches(self, batches: list[int]) -> list[str]:
        """Versions belonging to the given batches, newest version first."""
        if not batches:
            return []
        placeholders = ", ".join(["%s"] * len(batches))
        rows = self.connection.query(
            f"SELECT version FROM `{MIGRATIONS_TABLE}` "
            f"WHERE batch IN ({placeholders}) ORDER BY version DESC",
            tuple(batches),
        )
        return [str(row["version"]) for row in rows]

    def record_migration_applied(
        self,
        version: str,
        execution_time_ms: int,
        batch: int,
        backup_path: str | None = None,
        squashed: bool = False,
    ) -> None:
        """
        Record a successfully applied migration.

        Raises:
            MigrationError: If the record cannot be written
        """
        try:
            self.connection.query(
                f"INSERT INTO `{MIGRATIONS_TABLE}` "
                f"(version, executed_at, execution_time, batch, squashed, backup_path) "
                f"VALUES (%s, %s, %s, %s, %s, %s)",
                (version, datetime.now(), execution_time_ms, batch, squashed, backup_path),
            )
        except Exception as e:
            raise MigrationError(f"Cannot record migration {version}: {e}") from e
        logger.debug(f"Recorded migration {version} in batch {batch}")

    def record_migration_rolled_back(self, version: str) -> None:
        try:
            self.connection.query(
                f"DELETE FROM `{MIGRATIONS_TABLE}` WHERE version = %s", (version,)
            )
        except Exception as e:
            raise MigrationError(f"Cannot remove record of {version}: {e}") from e
        logger.debug(f"Removed record of migration {version}")

    def mark_squashed(self, versions: list[str]) -> None:
        if not versions:
            return
        placeholders = ", ".join(["%s"] * len(versions))
        self.connection.query(
            f"UPDATE `{MIGRATIONS_TABLE}` SET squashed = TRUE "
            f"WHERE version IN ({placeholders})",
            tuple(versions),
        )
        logger.info(f"Marked {len(versions)} migrations as squashed")

    def get_backup_path(self, version: str) -> str | None:
        record = self.get_record(version)
        return record.backup_path if record else None

    def delete_squashed_records(self) -> int:
        """Remove history rows folded into a squashed baseline."""
        rows = self.connection.query(
            f"SELECT version FROM `{MIGRATIONS_TABLE}` WHERE squashed = TRUE"
        )
        versions = [str(row["version"]) for row in rows]
        for version in versions:
            self.record_migration_rolled_back(version)
        return len(versions)

    def clear(self) -> None:
        """Forget every executed migration."""
        self.connection.query(f"DELETE FROM `{MIGRATIONS_TABLE}`")
        logger.info("Migration history cleared")
