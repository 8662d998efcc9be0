"""
Schema Introspector

Reads the live database structure from MySQL's information_schema and
manages the two tracking tables used by the migration tooling. Every
catalog query is scoped to the connection's current database.
"""

import logging
from typing import Any

from .schema import (
    ColumnDefinition,
    DatabaseSchema,
    ForeignKeyDefinition,
    IndexDefinition,
    TableDefinition,
)

logger = logging.getLogger(__name__)

MIGRATIONS_TABLE = "migrations"
LOCK_TABLE = "migration_lock"
TRACKING_TABLES = (MIGRATIONS_TABLE, LOCK_TABLE)

CREATE_MIGRATIONS_TABLE = f"""
CREATE TABLE IF NOT EXISTS `{MIGRATIONS_TABLE}` (
  `version` VARCHAR(255) NOT NULL PRIMARY KEY,
  `executed_at` DATETIME NOT NULL,
  `execution_time` INT,
  `batch` INT NOT NULL,
  `squashed` BOOLEAN DEFAULT FALSE,
  `backup_path` VARCHAR(500) NULL,
  INDEX `idx_batch` (`batch`),
  INDEX `idx_squashed` (`squashed`)
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
""".strip()

CREATE_LOCK_TABLE = f"""
CREATE TABLE IF NOT EXISTS `{LOCK_TABLE}` (
  `id` INT NOT NULL AUTO_INCREMENT PRIMARY KEY,
  `locked_at` DATETIME NOT NULL,
  `hostname` VARCHAR(255) NOT NULL,
  `process_id` INT
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
""".strip()

# Types whose catalog length is part of the declared type
_CHARACTER_LENGTH_TYPES = frozenset({"varchar", "char", "binary", "varbinary"})


class SchemaIntrospector:
    """Builds a DatabaseSchema from the live database."""

    def __init__(self, connection: Any) -> None:
        """
        Initialize introspector.

        Args:
            connection: Object exposing ``query(sql, params) -> list[dict]``
        """
        self.connection = connection

    def get_current_schema(self) -> DatabaseSchema:
        """
        Introspect every application table of the current database.

        Returns:
            DatabaseSchema of the live database (tracking tables excluded)
        """
        schema = DatabaseSchema()
        for table_name in self.get_tables():
            schema.add_table(
                TableDefinition(
                    name=table_name,
                    columns=self.get_columns(table_name),
                    indexes=self.get_indexes(table_name),
                    foreign_keys=self.get_foreign_keys(table_name),
                )
            )
        logger.debug(f"Introspected {len(schema)} tables")
        return schema

    def get_tables(self) -> list[str]:
        rows = self.connection.query(
            "SELECT TABLE_NAME AS table_name FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_TYPE = 'BASE TABLE' "
            "AND TABLE_NAME NOT IN (%s, %s) ORDER BY TABLE_NAME",
            TRACKING_TABLES,
        )
        return [row["table_name"] for row in rows if row.get("table_name")]

    def get_columns(self, table: str) -> list[ColumnDefinition]:
        rows = self.connection.query(
            "SELECT COLUMN_NAME AS column_name, DATA_TYPE AS data_type, "
            "CHARACTER_MAXIMUM_LENGTH AS character_length, "
            "NUMERIC_PRECISION AS numeric_precision, IS_NULLABLE AS is_nullable, "
            "COLUMN_DEFAULT AS column_default, COLUMN_KEY AS column_key, "
            "EXTRA AS extra, COLUMN_COMMENT AS column_comment "
            "FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s "
            "ORDER BY ORDINAL_POSITION",
            (table,),
        )

        columns = []
        for row in rows:
            if not row.get("column_name"):
                continue
            data_type = (row.get("data_type") or "varchar").lower()
            if data_type in _CHARACTER_LENGTH_TYPES:
                length = row.get("character_length")
            elif data_type == "decimal":
                length = row.get("numeric_precision")
            else:
                length = None
            columns.append(
                ColumnDefinition(
                    name=row["column_name"],
                    type=data_type,
                    length=int(length) if length is not None else None,
                    nullable=row.get("is_nullable") == "YES",
                    default=row.get("column_default"),
                    primary=row.get("column_key") == "PRI",
                    unique=row.get("column_key") == "UNI",
                    auto_increment="auto_increment" in (row.get("extra") or "").lower(),
                    comment=row.get("column_comment") or None,
                )
            )
        return columns

    def get_indexes(self, table: str) -> list[IndexDefinition]:
        rows = self.connection.query(
            "SELECT INDEX_NAME AS index_name, COLUMN_NAME AS column_name, "
            "NON_UNIQUE AS non_unique, INDEX_TYPE AS index_type "
            "FROM information_schema.STATISTICS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s "
            "AND INDEX_NAME != 'PRIMARY' ORDER BY INDEX_NAME, SEQ_IN_INDEX",
            (table,),
        )

        indexes: dict[str, IndexDefinition] = {}
        for row in rows:
            name = row.get("index_name")
            if not name:
                continue
            index = indexes.get(name)
            if index is None:
                index = IndexDefinition(
                    name=name,
                    columns=[],
                    unique=int(row.get("non_unique") or 0) == 0,
                    type=row.get("index_type") or "BTREE",
                )
                indexes[name] = index
            if row.get("column_name"):
                index.columns.append(row["column_name"])
        return list(indexes.values())

    def get_foreign_keys(self, table: str) -> list[ForeignKeyDefinition]:
        rows = self.connection.query(
            "SELECT kcu.CONSTRAINT_NAME AS constraint_name, "
            "kcu.COLUMN_NAME AS column_name, "
            "kcu.REFERENCED_TABLE_NAME AS referenced_table, "
            "kcu.REFERENCED_COLUMN_NAME AS referenced_column, "
            "rc.UPDATE_RULE AS update_rule, rc.DELETE_RULE AS delete_rule "
            "FROM information_schema.KEY_COLUMN_USAGE kcu "
            "JOIN information_schema.REFERENTIAL_CONSTRAINTS rc "
            "ON kcu.CONSTRAINT_NAME = rc.CONSTRAINT_NAME "
            "AND kcu.CONSTRAINT_SCHEMA = rc.CONSTRAINT_SCHEMA "
            "WHERE kcu.TABLE_SCHEMA = DATABASE() AND kcu.TABLE_NAME = %s "
            "AND kcu.REFERENCED_TABLE_NAME IS NOT NULL",
            (table,),
        )

        return [
            ForeignKeyDefinition(
                name=row["constraint_name"],
                column=row["column_name"],
                referenced_table=row["referenced_table"],
                referenced_column=row["referenced_column"],
                on_update=row.get("update_rule") or "RESTRICT",
                on_delete=row.get("delete_rule") or "RESTRICT",
            )
            for row in rows
            if row.get("constraint_name")
        ]

    def get_estimated_row_count(self, table: str) -> int:
        """Row count estimate from catalog statistics (0 if unknown)."""
        rows = self.connection.query(
            "SELECT TABLE_ROWS AS table_rows FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s",
            (table,),
        )
        if not rows or rows[0].get("table_rows") is None:
            return 0
        return int(rows[0]["table_rows"])

    def table_has_rows(self, table: str) -> bool:
        """Whether the table currently holds at least one row."""
        rows = self.connection.query(
            f"SELECT COUNT(*) AS count FROM `{table}` LIMIT 1"
        )
        return bool(rows) and int(rows[0].get("count") or 0) > 0

    def migration_tables_exist(self) -> bool:
        rows = self.connection.query(
            "SELECT COUNT(*) AS count FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME IN (%s, %s)",
            TRACKING_TABLES,
        )
        return bool(rows) and int(rows[0].get("count") or 0) == len(TRACKING_TABLES)

    def initialize_migration_tables(self) -> None:
        """Create the tracking tables if they do not exist yet."""
        self.connection.query(CREATE_MIGRATIONS_TABLE)
        self.connection.query(CREATE_LOCK_TABLE)
        logger.info("Migration tracking tables initialized")

    def ensure_migration_tables(self) -> None:
        if not self.migration_tables_exist():
            self.initialize_migration_tables()
