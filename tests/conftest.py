"""Shared fixtures for the migration test suite.

``FakeDatabase`` stands in for a MySQL connection. It understands the
statements the migration subsystem issues (catalog queries, tracking and
lock table access, and the DDL produced by ``MySQLDialect``) and keeps
enough state in memory for end-to-end generate/migrate/rollback tests.
"""

from __future__ import annotations

import copy
import re
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from schemashift.config import MigrationConfig
from schemashift.migrations.dialect import MySQLDialect
from schemashift.migrations.introspector import (
    CREATE_LOCK_TABLE,
    CREATE_MIGRATIONS_TABLE,
    LOCK_TABLE,
    MIGRATIONS_TABLE,
)
from schemashift.migrations.schema import (
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    TableDefinition,
)

TRACKING_COLUMNS = ["version", "executed_at", "execution_time", "batch", "squashed", "backup_path"]
CHARACTER_TYPES = {"varchar", "char", "binary", "varbinary"}

COLUMN_PATTERN = re.compile(r"^`(\w+)` (\w+)(?:\((\d+)\))?(.*)$", re.DOTALL)
DEFAULT_PATTERN = re.compile(r"DEFAULT ('(?:[^'\\]|\\.)*'|\S+)")
INDEX_PATTERN = re.compile(r"^(UNIQUE )?INDEX `(\w+)` \((.*)\)$")
FOREIGN_KEY_PATTERN = re.compile(
    r"^ADD CONSTRAINT `(\w+)` FOREIGN KEY \(`(\w+)`\) REFERENCES `(\w+)` \(`(\w+)`\)"
    r"(?: ON UPDATE (\w+(?: \w+)?))?(?: ON DELETE (\w+(?: \w+)?))?$"
)


class FakeDatabaseError(Exception):
    """Raised by the fake for failing or unsupported statements."""

    pass


def parse_column(definition: str) -> ColumnDefinition:
    """Parse a column definition rendered by MySQLDialect."""
    match = COLUMN_PATTERN.match(definition.strip())
    if match is None:
        raise FakeDatabaseError(f"Cannot parse column definition: {definition}")
    name, type_name, length, rest = match.groups()
    upper_rest = rest.upper()

    default = None
    default_match = DEFAULT_PATTERN.search(rest)
    if default_match:
        default = default_match.group(1)
        if default.startswith("'") and default.endswith("'"):
            default = default[1:-1]

    return ColumnDefinition(
        name=name,
        type=type_name.lower(),
        length=int(length) if length else None,
        nullable="NOT NULL" not in upper_rest,
        default=default,
        primary="PRIMARY KEY" in upper_rest,
        unique=" UNIQUE" in f" {upper_rest}",
        auto_increment="AUTO_INCREMENT" in upper_rest,
    )


def catalog_default(value: Any) -> str | None:
    """Render a default the way information_schema reports it."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


class FakeDatabase:
    """In-memory stand-in for a MySQL connection."""

    def __init__(self) -> None:
        self.tables: dict[str, TableDefinition] = {}
        self.rows: dict[str, list[dict[str, Any]]] = {}
        self.row_estimates: dict[str, int] = {}
        self.tracking_tables: set[str] = set()
        self.migration_rows: list[dict[str, Any]] = []
        self.lock_rows: list[dict[str, Any]] = []
        self.statements: list[tuple[str, tuple]] = []
        self.fail_on: list[str] = []
        self.foreign_key_checks = True
        self._snapshot: tuple | None = None

    # -- setup helpers -------------------------------------------------

    def add_table(
        self,
        table: TableDefinition,
        rows: list[dict[str, Any]] | None = None,
        estimated_rows: int | None = None,
    ) -> None:
        self.tables[table.name] = copy.deepcopy(table)
        self.rows[table.name] = list(rows or [])
        if estimated_rows is not None:
            self.row_estimates[table.name] = estimated_rows

    def create_tracking_tables(self) -> None:
        self.tracking_tables.update({MIGRATIONS_TABLE, LOCK_TABLE})

    def executed_sql(self) -> list[str]:
        return [" ".join(sql.split()) for sql, _ in self.statements]

    # -- connection contract -------------------------------------------

    def query(self, sql: str, params: Any = None) -> list[dict[str, Any]]:
        params = tuple(params or ())
        self.statements.append((sql, params))
        norm = " ".join(sql.split())
        upper = norm.upper()

        for marker in self.fail_on:
            if marker in norm:
                raise FakeDatabaseError(f"Injected failure on: {marker}")

        if upper == "START TRANSACTION":
            self._snapshot = (copy.deepcopy(self.rows), copy.deepcopy(self.migration_rows))
            return []
        if upper == "COMMIT":
            self._snapshot = None
            return []
        if upper == "ROLLBACK":
            if self._snapshot is not None:
                self.rows, self.migration_rows = self._snapshot
                self._snapshot = None
            return []
        if upper.startswith("SET FOREIGN_KEY_CHECKS"):
            self.foreign_key_checks = upper.endswith("1")
            return []
        if upper == "SELECT 1":
            return [{"1": 1}]

        if "INFORMATION_SCHEMA.TABLES" in upper:
            return self._catalog_tables(upper, params)
        if "INFORMATION_SCHEMA.COLUMNS" in upper:
            return self._catalog_columns(params[0])
        if "INFORMATION_SCHEMA.STATISTICS" in upper:
            return self._catalog_indexes(params[0])
        if "INFORMATION_SCHEMA.KEY_COLUMN_USAGE" in upper:
            return self._catalog_foreign_keys(params[0])

        if upper.startswith("CREATE TABLE"):
            return self._create_table(sql)
        if upper.startswith("DROP TABLE"):
            name = re.search(r"`(\w+)`", norm).group(1)
            self.tables.pop(name, None)
            self.rows.pop(name, None)
            self.tracking_tables.discard(name)
            return []
        if upper.startswith("RENAME TABLE"):
            old, new = re.findall(r"`(\w+)`", norm)
            self._require_table(old)
            table = self.tables.pop(old)
            table.name = new
            self.tables[new] = table
            self.rows[new] = self.rows.pop(old, [])
            return []

        if f"`{LOCK_TABLE.upper()}`" in upper:
            return self._lock(upper, params)
        if f"`{MIGRATIONS_TABLE.upper()}`" in upper:
            return self._tracking(upper, params)

        if upper.startswith("ALTER TABLE"):
            return self._alter_table(norm)
        if upper.startswith("SELECT COUNT(*) AS COUNT FROM"):
            name = re.search(r"`(\w+)`", norm).group(1)
            self._require_table(name)
            return [{"count": len(self.rows[name])}]
        if upper.startswith("SHOW CREATE TABLE"):
            name = re.search(r"`(\w+)`", norm).group(1)
            self._require_table(name)
            create = MySQLDialect().create_table(self.tables[name])
            return [{"Table": name, "Create Table": create.replace(" IF NOT EXISTS", "")}]
        if upper.startswith("SELECT * FROM"):
            name = re.search(r"`(\w+)`", norm).group(1)
            self._require_table(name)
            return [dict(row) for row in self.rows[name]]
        if upper.startswith("INSERT INTO"):
            return []

        raise FakeDatabaseError(f"Unsupported statement: {norm[:120]}")

    def close(self) -> None:
        pass

    # -- catalog -------------------------------------------------------

    def _exists(self, name: str) -> bool:
        return name in self.tables or name in self.tracking_tables

    def _require_table(self, name: str) -> None:
        if name not in self.tables:
            raise FakeDatabaseError(f"Table '{name}' doesn't exist")

    def _catalog_tables(self, upper: str, params: tuple) -> list[dict[str, Any]]:
        if "COUNT(*)" in upper:
            return [{"count": sum(1 for name in params if self._exists(name))}]
        if "TABLE_ROWS" in upper:
            name = params[0]
            if name not in self.tables:
                return []
            return [{"table_rows": self.row_estimates.get(name, len(self.rows[name]))}]
        if "NOT IN" in upper:
            return [{"table_name": name} for name in sorted(self.tables)]
        if "!=" in upper:
            names = set(self.tables) | (self.tracking_tables - {params[0]})
            return [{"table_name": name} for name in sorted(names)]
        raise FakeDatabaseError(f"Unsupported catalog query: {upper[:120]}")

    def _catalog_columns(self, name: str) -> list[dict[str, Any]]:
        table = self.tables.get(name)
        if table is None:
            return []
        uniquely_indexed = {
            index.columns[0]
            for index in table.indexes
            if index.unique and len(index.columns) == 1
        }
        rows = []
        for column in table.columns:
            if column.primary:
                key = "PRI"
            elif column.unique or column.name in uniquely_indexed:
                key = "UNI"
            else:
                key = ""
            rows.append(
                {
                    "column_name": column.name,
                    "data_type": column.type,
                    "character_length": (
                        column.effective_length if column.type in CHARACTER_TYPES else None
                    ),
                    "numeric_precision": (
                        column.effective_length if column.type == "decimal" else None
                    ),
                    "is_nullable": "YES" if column.nullable and not column.primary else "NO",
                    "column_default": catalog_default(column.default),
                    "column_key": key,
                    "extra": "auto_increment" if column.auto_increment else "",
                    "column_comment": "",
                }
            )
        return rows

    def _catalog_indexes(self, name: str) -> list[dict[str, Any]]:
        table = self.tables.get(name)
        if table is None:
            return []
        rows = []
        for index in sorted(table.indexes, key=lambda i: i.name):
            for column in index.columns:
                rows.append(
                    {
                        "index_name": index.name,
                        "column_name": column,
                        "non_unique": 0 if index.unique else 1,
                        "index_type": index.type,
                    }
                )
        return rows

    def _catalog_foreign_keys(self, name: str) -> list[dict[str, Any]]:
        table = self.tables.get(name)
        if table is None:
            return []
        return [
            {
                "constraint_name": fk.name,
                "column_name": fk.column,
                "referenced_table": fk.referenced_table,
                "referenced_column": fk.referenced_column,
                "update_rule": fk.on_update,
                "delete_rule": fk.on_delete,
            }
            for fk in table.foreign_keys
        ]

    # -- tracking and lock tables ---------------------------------------

    def _tracking(self, upper: str, params: tuple) -> list[dict[str, Any]]:
        if MIGRATIONS_TABLE not in self.tracking_tables:
            raise FakeDatabaseError(f"Table '{MIGRATIONS_TABLE}' doesn't exist")

        if upper.startswith("INSERT INTO"):
            if not params:
                # Literal INSERT replayed from a backup dump
                return []
            row = dict(zip(TRACKING_COLUMNS, params))
            if any(r["version"] == row["version"] for r in self.migration_rows):
                raise FakeDatabaseError(f"Duplicate entry '{row['version']}'")
            row["squashed"] = bool(row["squashed"])
            self.migration_rows.append(row)
            return []
        if upper.startswith("SELECT MAX(BATCH)"):
            batches = [row["batch"] for row in self.migration_rows]
            return [{"max_batch": max(batches) if batches else None}]
        if upper.startswith("SELECT DISTINCT BATCH"):
            batches = sorted({row["batch"] for row in self.migration_rows}, reverse=True)
            return [{"batch": batch} for batch in batches[: params[0]]]
        if "WHERE BATCH IN" in upper:
            versions = sorted(
                (r["version"] for r in self.migration_rows if r["batch"] in params),
                reverse=True,
            )
            return [{"version": version} for version in versions]
        if upper.startswith("SELECT VERSION FROM") and "SQUASHED = TRUE" in upper:
            return [{"version": r["version"]} for r in self.migration_rows if r["squashed"]]
        if upper.startswith("SELECT VERSION, EXECUTED_AT"):
            rows = sorted(self.migration_rows, key=lambda r: r["version"])
            if "WHERE VERSION = %S" in upper:
                rows = [r for r in rows if r["version"] == params[0]]
            return [dict(row) for row in rows]
        if upper.startswith("DELETE FROM"):
            if "WHERE VERSION" in upper:
                self.migration_rows = [r for r in self.migration_rows if r["version"] != params[0]]
            else:
                self.migration_rows = []
            return []
        if upper.startswith("UPDATE"):
            for row in self.migration_rows:
                if row["version"] in params:
                    row["squashed"] = True
            return []
        if upper.startswith("SELECT * FROM"):
            return [dict(row) for row in self.migration_rows]
        if upper.startswith("SHOW CREATE TABLE"):
            return [{"Table": MIGRATIONS_TABLE, "Create Table": CREATE_MIGRATIONS_TABLE}]
        raise FakeDatabaseError(f"Unsupported tracking statement: {upper[:120]}")

    def _lock(self, upper: str, params: tuple) -> list[dict[str, Any]]:
        if LOCK_TABLE not in self.tracking_tables:
            raise FakeDatabaseError(f"Table '{LOCK_TABLE}' doesn't exist")

        if upper.startswith("INSERT INTO"):
            if self.lock_rows:
                raise FakeDatabaseError("Duplicate entry '1' for key 'PRIMARY'")
            lock_id, locked_at, hostname, process_id = params
            self.lock_rows.append(
                {
                    "id": lock_id,
                    "locked_at": locked_at,
                    "hostname": hostname,
                    "process_id": process_id,
                }
            )
            return []
        if upper.startswith("SELECT"):
            return [dict(row) for row in self.lock_rows[:1]]
        if upper.startswith("DELETE FROM"):
            self.lock_rows = []
            return []
        if upper.startswith("SHOW CREATE TABLE"):
            return [{"Table": LOCK_TABLE, "Create Table": CREATE_LOCK_TABLE}]
        raise FakeDatabaseError(f"Unsupported lock statement: {upper[:120]}")

    # -- DDL -----------------------------------------------------------

    def _create_table(self, sql: str) -> list[dict[str, Any]]:
        name = re.search(r"CREATE TABLE(?: IF NOT EXISTS)? `(\w+)`", sql).group(1)
        if name in (MIGRATIONS_TABLE, LOCK_TABLE):
            self.tracking_tables.add(name)
            return []
        if name in self.tables:
            return []

        body = sql[sql.index("(") + 1 : sql.rindex(")")]
        table = TableDefinition(name=name)
        for part in body.split(",\n"):
            part = part.strip()
            if part.startswith("PRIMARY KEY"):
                primary = re.search(r"`(\w+)`", part).group(1)
                column = table.get_column(primary)
                column.primary = True
                column.nullable = False
            elif INDEX_PATTERN.match(part):
                unique, index_name, columns = INDEX_PATTERN.match(part).groups()
                table.indexes.append(
                    IndexDefinition(index_name, re.findall(r"`(\w+)`", columns), bool(unique))
                )
            elif part.startswith("`"):
                table.columns.append(parse_column(part))
            else:
                raise FakeDatabaseError(f"Cannot parse table element: {part}")

        self.tables[name] = table
        self.rows[name] = []
        return []

    def _alter_table(self, norm: str) -> list[dict[str, Any]]:
        match = re.match(r"ALTER TABLE `(\w+)` (.*)$", norm)
        name, action = match.groups()
        self._require_table(name)
        table = self.tables[name]

        if action.startswith("ADD COLUMN "):
            table.columns.append(parse_column(action[len("ADD COLUMN "):]))
        elif action.startswith("MODIFY COLUMN "):
            column = parse_column(action[len("MODIFY COLUMN "):])
            existing = table.get_column(column.name)
            if existing is None:
                raise FakeDatabaseError(f"Unknown column '{column.name}'")
            column.primary = existing.primary
            table.columns[table.columns.index(existing)] = column
        elif action.startswith("DROP COLUMN "):
            column_name = re.search(r"`(\w+)`", action).group(1)
            column = table.get_column(column_name)
            if column is None:
                raise FakeDatabaseError(f"Can't DROP '{column_name}'; check that it exists")
            table.columns.remove(column)
            for index in table.indexes:
                if column_name in index.columns:
                    index.columns.remove(column_name)
            table.indexes = [index for index in table.indexes if index.columns]
            for row in self.rows[name]:
                row.pop(column_name, None)
        elif action.startswith("RENAME COLUMN "):
            old, new = re.findall(r"`(\w+)`", action)
            column = table.get_column(old)
            if column is None:
                raise FakeDatabaseError(f"Unknown column '{old}'")
            column.name = new
            for index in table.indexes:
                index.columns = [new if c == old else c for c in index.columns]
            for row in self.rows[name]:
                if old in row:
                    row[new] = row.pop(old)
        elif action.startswith("ADD UNIQUE INDEX ") or action.startswith("ADD INDEX "):
            unique, index_name, columns = INDEX_PATTERN.match(action[len("ADD "):]).groups()
            if table.get_index(index_name) is not None:
                raise FakeDatabaseError(f"Duplicate key name '{index_name}'")
            table.indexes.append(
                IndexDefinition(index_name, re.findall(r"`(\w+)`", columns), bool(unique))
            )
        elif action.startswith("DROP INDEX "):
            index_name = re.search(r"`(\w+)`", action).group(1)
            index = table.get_index(index_name)
            if index is None:
                raise FakeDatabaseError(f"Can't DROP '{index_name}'; check that it exists")
            table.indexes.remove(index)
        elif action.startswith("ADD CONSTRAINT "):
            fk_match = FOREIGN_KEY_PATTERN.match(action)
            if fk_match is None:
                raise FakeDatabaseError(f"Cannot parse foreign key: {action}")
            fk_name, column, ref_table, ref_column, on_update, on_delete = fk_match.groups()
            self._require_table(ref_table)
            table.foreign_keys.append(
                ForeignKeyDefinition(
                    fk_name, column, ref_table, ref_column,
                    on_update or "RESTRICT", on_delete or "RESTRICT",
                )
            )
        elif action.startswith("DROP FOREIGN KEY "):
            fk_name = re.search(r"`(\w+)`", action).group(1)
            foreign_key = table.get_foreign_key(fk_name)
            if foreign_key is None:
                raise FakeDatabaseError(f"Can't DROP '{fk_name}'; check that it exists")
            table.foreign_keys.remove(foreign_key)
        else:
            raise FakeDatabaseError(f"Unsupported ALTER TABLE action: {action}")
        return []


@pytest.fixture
def fake_db() -> FakeDatabase:
    """Empty fake database without tracking tables."""
    return FakeDatabase()


@pytest.fixture
def tracked_db(fake_db: FakeDatabase) -> FakeDatabase:
    """Fake database with the tracking tables already created."""
    fake_db.create_tracking_tables()
    return fake_db


@pytest.fixture
def migrations_dir(tmp_path: Path) -> Path:
    path = tmp_path / "migrations"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path: Path, migrations_dir: Path) -> MigrationConfig:
    """Configuration pointing every directory into tmp_path."""
    return MigrationConfig(
        db_name="app_test",
        migrations_dir=migrations_dir,
        backups_dir=tmp_path / "backups",
        entities_dir=tmp_path / "entities",
    )


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 10, 18, 12, 0, 0)
