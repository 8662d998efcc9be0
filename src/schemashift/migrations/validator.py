"""
Migration Validator

Safety analysis run before a migration executes. Combines the
migration's own validation with a textual scan of its dry-run
statements for destructive or data-dependent operations.
"""

import logging
import re
from typing import Any

from .base import BaseMigration, ValidationResult
from .introspector import SchemaIntrospector
from .schema import DatabaseSchema

logger = logging.getLogger(__name__)

TABLE_NAME_PATTERN = re.compile(
    r"(?:TABLE(?:\s+IF(?:\s+NOT)?\s+EXISTS)?|FROM|INTO|UPDATE)\s+`?(\w+)`?",
    re.IGNORECASE,
)

LARGE_TABLE_ROWS = 100_000


def extract_table_name(statement: str) -> str | None:
    """First table name referenced by a statement, if any."""
    match = TABLE_NAME_PATTERN.search(statement)
    return match.group(1) if match else None


class MigrationValidator:
    """Validates migrations before execution."""

    def __init__(self, connection: Any, introspector: SchemaIntrospector | None = None) -> None:
        """
        Initialize validator.

        Args:
            connection: Object exposing ``query(sql, params)``
            introspector: Catalog reader used for row checks
        """
        self.connection = connection
        self.introspector = introspector or SchemaIntrospector(connection)

    def validate(
        self, migration: BaseMigration, schema: DatabaseSchema | None = None
    ) -> ValidationResult:
        """
        Validate a migration.

        Args:
            migration: Migration to check
            schema: Current database schema, if known. Tables absent from
                it are treated as empty.

        Returns:
            ValidationResult; ``valid`` is False iff any error was found
        """
        errors: list[str] = []
        warnings: list[str] = []
        suggestions: list[str] = []

        own = migration.validate(schema)
        if not own.valid:
            errors.extend(own.errors)
        warnings.extend(own.warnings)
        suggestions.extend(own.suggestions)

        for statement in migration.dry_run(self.connection):
            upper = statement.upper()
            table = extract_table_name(statement)

            if "DROP TABLE" in upper:
                warnings.append(
                    f"DESTRUCTIVE: Drops entire table {table} - ALL DATA WILL BE LOST"
                )
                if not migration.requires_backup:
                    suggestions.append(
                        "Consider setting requires_backup = True for this migration"
                    )

            if "DROP COLUMN" in upper:
                warnings.append(
                    f"Drops a column from {table} - data in this column will be lost"
                )

            if "NOT NULL" in upper and "DEFAULT" not in upper:
                if table and self._has_existing_data(table, schema):
                    errors.append(
                        f"Adding NOT NULL column without DEFAULT to table {table} "
                        f"with existing data"
                    )
                    suggestions.append("Add a DEFAULT value or migrate data first")

            if "ALTER TABLE" in upper and table:
                row_count = self._estimated_rows(table, schema)
                if row_count > LARGE_TABLE_ROWS:
                    warnings.append(
                        f"Altering large table {table} ({row_count:,} rows) "
                        f"- may take a long time"
                    )
                    suggestions.append(
                        "Consider running this migration during low-traffic hours"
                    )

        if migration.is_destructive and not warnings:
            warnings.append(f"Migration {migration.version} is marked as destructive")

        return ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            suggestions=suggestions,
            can_proceed=not errors,
            requires_confirmation=bool(warnings),
        )

    def _has_existing_data(self, table: str, schema: DatabaseSchema | None) -> bool:
        if schema is not None and not schema.has_table(table):
            return False
        try:
            return self.introspector.table_has_rows(table)
        except Exception as e:
            logger.warning(f"Could not check existing data in {table}: {e}")
            return False

    def _estimated_rows(self, table: str, schema: DatabaseSchema | None) -> int:
        if schema is not None and not schema.has_table(table):
            return 0
        try:
            return self.introspector.get_estimated_row_count(table)
        except Exception as e:
            logger.warning(f"Could not estimate row count of {table}: {e}")
            return 0
