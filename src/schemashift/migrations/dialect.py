"""
SQL Dialect

Isolates the SQL fragments that differ between database engines
(identifier quoting, type keywords, literals, DDL statement shapes) so
that generated migrations and the executor do not hard-code MySQL syntax.
"""

import datetime
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

from .schema import (
    DEFAULT_LENGTHS,
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    TableDefinition,
)

# Default expressions that must not be quoted as string literals
SQL_EXPRESSION_DEFAULTS = frozenset(
    {"CURRENT_TIMESTAMP", "CURRENT_TIMESTAMP()", "NOW()", "NULL", "CURRENT_DATE"}
)

# Backslash first so later replacements are not escaped twice
STRING_ESCAPES = (
    ("\\", "\\\\"),
    ("'", "\\'"),
    ("\n", "\\n"),
    ("\r", "\\r"),
    ("\x00", "\\0"),
    ("\x1a", "\\Z"),
)


class SQLDialect(ABC):
    """Strategy interface for engine-specific SQL fragments."""

    name = "generic"

    begin_statement = "START TRANSACTION"
    commit_statement = "COMMIT"
    rollback_statement = "ROLLBACK"

    @abstractmethod
    def quote_identifier(self, identifier: str) -> str:
        """Quote a table, column or index name."""
        pass

    @abstractmethod
    def column_type(self, column: ColumnDefinition) -> str:
        """Render the type keyword for a column, including its length."""
        pass

    def literal(self, value: Any) -> str:
        """Render a Python value as an SQL literal."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        if isinstance(value, datetime.datetime):
            return f"'{value.strftime('%Y-%m-%d %H:%M:%S')}'"
        if isinstance(value, datetime.date):
            return f"'{value.strftime('%Y-%m-%d')}'"
        if isinstance(value, datetime.timedelta):
            total = int(value.total_seconds())
            sign = "-" if total < 0 else ""
            hours, remainder = divmod(abs(total), 3600)
            minutes, seconds = divmod(remainder, 60)
            return f"'{sign}{hours:02d}:{minutes:02d}:{seconds:02d}'"
        if isinstance(value, (bytes, bytearray)):
            return f"X'{bytes(value).hex()}'"
        return "'" + self.escape_string(str(value)) + "'"

    @staticmethod
    def escape_string(value: str) -> str:
        for char, escaped in STRING_ESCAPES:
            value = value.replace(char, escaped)
        return value

    def default_clause(self, value: Any) -> str:
        if isinstance(value, str) and value.strip().upper() in SQL_EXPRESSION_DEFAULTS:
            return f"DEFAULT {value.strip().upper()}"
        return f"DEFAULT {self.literal(value)}"

    @abstractmethod
    def column_definition(self, column: ColumnDefinition, inline_unique: bool = True) -> str:
        """Render a full column definition as used in CREATE/ALTER TABLE."""
        pass

    @abstractmethod
    def create_table(self, table: TableDefinition) -> str:
        pass

    @abstractmethod
    def drop_table(self, table: str) -> str:
        pass

    @abstractmethod
    def rename_table(self, from_name: str, to_name: str) -> str:
        pass

    @abstractmethod
    def add_column(self, table: str, column: ColumnDefinition) -> str:
        pass

    @abstractmethod
    def modify_column(self, table: str, column: ColumnDefinition) -> str:
        pass

    @abstractmethod
    def drop_column(self, table: str, column: str) -> str:
        pass

    @abstractmethod
    def rename_column(self, table: str, from_name: str, to_name: str) -> str:
        pass

    @abstractmethod
    def add_index(self, table: str, index: IndexDefinition) -> str:
        pass

    @abstractmethod
    def drop_index(self, table: str, index: str) -> str:
        pass

    @abstractmethod
    def add_foreign_key(self, table: str, foreign_key: ForeignKeyDefinition) -> str:
        pass

    @abstractmethod
    def drop_foreign_key(self, table: str, foreign_key: str) -> str:
        pass

    @abstractmethod
    def set_foreign_key_checks(self, enabled: bool) -> str:
        pass

    @abstractmethod
    def show_create_table(self, table: str) -> str:
        pass


class MySQLDialect(SQLDialect):
    """MySQL 8 / InnoDB."""

    name = "mysql"

    UNSIZED_TYPES = frozenset(
        {
            "text", "tinytext", "mediumtext", "longtext", "json",
            "blob", "tinyblob", "mediumblob", "longblob",
            "date", "datetime", "timestamp", "time", "year",
        }
    )

    def quote_identifier(self, identifier: str) -> str:
        return "`" + identifier.replace("`", "``") + "`"

    def column_type(self, column: ColumnDefinition) -> str:
        type_name = column.normalized_type or "varchar"
        length = column.length or DEFAULT_LENGTHS.get(type_name)
        if length and type_name not in self.UNSIZED_TYPES:
            return f"{type_name.upper()}({length})"
        return type_name.upper()

    def column_definition(self, column: ColumnDefinition, inline_unique: bool = True) -> str:
        parts = [self.quote_identifier(column.name), self.column_type(column)]
        if column.auto_increment:
            parts.append("AUTO_INCREMENT")
        if not column.nullable or column.primary:
            parts.append("NOT NULL")
        if inline_unique and column.unique and not column.primary:
            parts.append("UNIQUE")
        if column.default is not None:
            parts.append(self.default_clause(column.default))
        if column.comment:
            parts.append(f"COMMENT {self.literal(column.comment)}")
        return " ".join(parts)

    def create_table(self, table: TableDefinition) -> str:
        # Single-column unique indexes replace the inline UNIQUE keyword so
        # the created index carries the declared name
        uniquely_indexed = {
            index.columns[0]
            for index in table.indexes
            if index.unique and len(index.columns) == 1
        }
        definitions = [
            self.column_definition(column, inline_unique=column.name not in uniquely_indexed)
            for column in table.columns
        ]
        primary = table.primary_key
        if primary is not None:
            definitions.append(f"PRIMARY KEY ({self.quote_identifier(primary.name)})")
        for index in table.indexes:
            definitions.append(self._index_clause(index))

        body = ",\n  ".join(definitions)
        return (
            f"CREATE TABLE IF NOT EXISTS {self.quote_identifier(table.name)} (\n"
            f"  {body}\n) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4"
        )

    def _index_clause(self, index: IndexDefinition) -> str:
        columns = ", ".join(self.quote_identifier(c) for c in index.columns)
        keyword = "UNIQUE INDEX" if index.unique else "INDEX"
        return f"{keyword} {self.quote_identifier(index.name)} ({columns})"

    def drop_table(self, table: str) -> str:
        return f"DROP TABLE IF EXISTS {self.quote_identifier(table)}"

    def rename_table(self, from_name: str, to_name: str) -> str:
        return (
            f"RENAME TABLE {self.quote_identifier(from_name)} "
            f"TO {self.quote_identifier(to_name)}"
        )

    def add_column(self, table: str, column: ColumnDefinition) -> str:
        definition = self.column_definition(column, inline_unique=False)
        if column.primary:
            definition += " PRIMARY KEY"
        return f"ALTER TABLE {self.quote_identifier(table)} ADD COLUMN {definition}"

    def modify_column(self, table: str, column: ColumnDefinition) -> str:
        definition = self.column_definition(column, inline_unique=False)
        return f"ALTER TABLE {self.quote_identifier(table)} MODIFY COLUMN {definition}"

    def drop_column(self, table: str, column: str) -> str:
        return (
            f"ALTER TABLE {self.quote_identifier(table)} "
            f"DROP COLUMN {self.quote_identifier(column)}"
        )

    def rename_column(self, table: str, from_name: str, to_name: str) -> str:
        return (
            f"ALTER TABLE {self.quote_identifier(table)} "
            f"RENAME COLUMN {self.quote_identifier(from_name)} "
            f"TO {self.quote_identifier(to_name)}"
        )

    def add_index(self, table: str, index: IndexDefinition) -> str:
        columns = ", ".join(self.quote_identifier(c) for c in index.columns)
        keyword = "UNIQUE INDEX" if index.unique else "INDEX"
        return (
            f"ALTER TABLE {self.quote_identifier(table)} ADD {keyword} "
            f"{self.quote_identifier(index.name)} ({columns})"
        )

    def drop_index(self, table: str, index: str) -> str:
        return (
            f"ALTER TABLE {self.quote_identifier(table)} "
            f"DROP INDEX {self.quote_identifier(index)}"
        )

    def add_foreign_key(self, table: str, foreign_key: ForeignKeyDefinition) -> str:
        sql = (
            f"ALTER TABLE {self.quote_identifier(table)} "
            f"ADD CONSTRAINT {self.quote_identifier(foreign_key.name)} "
            f"FOREIGN KEY ({self.quote_identifier(foreign_key.column)}) "
            f"REFERENCES {self.quote_identifier(foreign_key.referenced_table)} "
            f"({self.quote_identifier(foreign_key.referenced_column)})"
        )
        if foreign_key.on_update and foreign_key.on_update.upper() != "RESTRICT":
            sql += f" ON UPDATE {foreign_key.on_update.upper()}"
        if foreign_key.on_delete and foreign_key.on_delete.upper() != "RESTRICT":
            sql += f" ON DELETE {foreign_key.on_delete.upper()}"
        return sql

    def drop_foreign_key(self, table: str, foreign_key: str) -> str:
        return (
            f"ALTER TABLE {self.quote_identifier(table)} "
            f"DROP FOREIGN KEY {self.quote_identifier(foreign_key)}"
        )

    def set_foreign_key_checks(self, enabled: bool) -> str:
        return f"SET FOREIGN_KEY_CHECKS={1 if enabled else 0}"

    def show_create_table(self, table: str) -> str:
        return f"SHOW CREATE TABLE {self.quote_identifier(table)}"
