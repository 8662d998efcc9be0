"""
Migration Generator

Compares the schema described by entities with the live database and
writes a ``Migration_<version>.py`` file whose ``up``/``down``/``dry_run``
apply and reverse the difference. Detected renames are confirmed through
a callback before they are kept as renames.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .differ import SchemaDiffer
from .dialect import MySQLDialect, SQLDialect
from .entity_builder import EntitySchemaBuilder
from .introspector import SchemaIntrospector
from .rename_detector import RenameDetector
from .schema import (
    ColumnDefinition,
    ColumnRenameEntry,
    DatabaseSchema,
    IndexToRemove,
    SchemaDiff,
    TableRenameEntry,
)

logger = logging.getLogger(__name__)

RenameEntry = ColumnRenameEntry | TableRenameEntry
ConfirmCallback = Callable[[RenameEntry], bool]


def describe_rename(rename: RenameEntry) -> str:
    """Question shown to the user for a detected rename."""
    high = rename.confidence >= RenameDetector.HIGH_CONFIDENCE_THRESHOLD
    level = "HIGH" if high else "MEDIUM"
    if isinstance(rename, TableRenameEntry):
        return (
            f"Rename table '{rename.from_name}' to '{rename.to_name}'? "
            f"(confidence {rename.confidence:.0%}, {level})"
        )
    return (
        f"Rename column '{rename.table}.{rename.from_name}' to '{rename.to_name}'? "
        f"(confidence {rename.confidence:.0%}, {level})"
    )


def prompt_confirmation(rename: RenameEntry) -> bool:
    """Ask on the terminal whether a detected rename is real."""
    answer = input(f"{describe_rename(rename)} [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def confirm_all(rename: RenameEntry) -> bool:
    return True


def reject_all(rename: RenameEntry) -> bool:
    return False


@dataclass
class MigrationPlan:
    """Ordered statements for both directions of a migration."""

    up: list[str] = field(default_factory=list)
    down: list[str] = field(default_factory=list)
    manual_steps: list[str] = field(default_factory=list)


@dataclass
class GeneratedMigration:
    version: str
    path: Path
    diff: SchemaDiff
    plan: MigrationPlan


MIGRATION_TEMPLATE = '''"""
Migration_{version}

Generated by schemashift on {generated_at}.

{summary}
"""

from typing import Any

from schemashift.migrations.base import BaseMigration


class Migration_{version}(BaseMigration):
    version = "{version}"
    description = {description}
    is_destructive = {is_destructive}
    requires_backup = {requires_backup}
    is_squashed = {is_squashed}
    squashed_versions = {squashed_versions}
    can_run_in_parallel = {can_run_in_parallel}

    def up(self, connection: Any) -> None:
{up_body}

    def down(self, connection: Any) -> None:
{down_body}

    def dry_run(self, connection: Any) -> list[str]:
        return [
{dry_run_body}
        ]
'''


class MigrationRenderer:
    """Turns a SchemaDiff into ordered SQL and migration source text."""

    def __init__(self, dialect: SQLDialect | None = None) -> None:
        self.dialect = dialect or MySQLDialect()

    def plan(self, diff: SchemaDiff) -> MigrationPlan:
        """
        Order the statements for a diff.

        ``up`` runs: table renames, column renames, foreign key drops,
        table creates, table drops, column adds, column modifications,
        column drops, index adds, index drops, foreign key adds.
        ``down`` reverses what can be reversed; dropped tables are listed
        as manual steps because their data is gone.
        """
        d = self.dialect
        plan = MigrationPlan()
        up = plan.up

        modified = self._modified_columns(diff)
        dropped_columns = {(e.table, e.column) for e in diff.columns_to_remove}

        up.extend(d.rename_table(r.from_name, r.to_name) for r in diff.tables_to_rename)
        up.extend(
            d.rename_column(r.table, r.from_name, r.to_name) for r in diff.columns_to_rename
        )
        up.extend(
            d.drop_foreign_key(e.table, e.foreign_key) for e in diff.foreign_keys_to_remove
        )
        up.extend(d.create_table(table) for table in diff.tables_to_create)
        up.extend(d.drop_table(name) for name in diff.tables_to_drop)
        up.extend(d.add_column(e.table, e.column) for e in diff.columns_to_add)
        up.extend(
            d.modify_column(table, desired) for (table, _), (desired, _) in modified.items()
        )
        up.extend(d.drop_column(e.table, e.column) for e in diff.columns_to_remove)
        up.extend(d.add_index(e.table, e.index) for e in diff.indexes_to_add)
        # Indexes whose every column is dropped disappear with the columns
        up.extend(
            d.drop_index(e.table, e.index)
            for e in diff.indexes_to_remove
            if not self._covered_by_drops(e, dropped_columns)
        )
        up.extend(
            d.add_foreign_key(e.table, e.foreign_key) for e in diff.foreign_keys_to_add
        )
        up.extend(
            d.add_foreign_key(table.name, fk)
            for table in diff.tables_to_create
            for fk in table.foreign_keys
        )

        down = plan.down
        down.extend(
            d.drop_foreign_key(table.name, fk.name)
            for table in diff.tables_to_create
            for fk in table.foreign_keys
        )
        down.extend(
            d.drop_foreign_key(e.table, e.foreign_key.name) for e in diff.foreign_keys_to_add
        )
        down.extend(d.drop_index(e.table, e.index.name) for e in diff.indexes_to_add)
        down.extend(d.drop_column(e.table, e.column.name) for e in diff.columns_to_add)
        down.extend(
            d.modify_column(table, previous)
            for (table, _), (_, previous) in modified.items()
        )
        down.extend(
            d.rename_column(r.table, r.to_name, r.from_name)
            for r in reversed(diff.columns_to_rename)
        )
        down.extend(
            d.add_column(e.table, e.definition)
            for e in diff.columns_to_remove
            if e.definition is not None
        )
        down.extend(
            d.add_index(e.table, e.definition)
            for e in diff.indexes_to_remove
            if e.definition is not None
        )
        down.extend(
            d.add_foreign_key(e.table, e.definition)
            for e in diff.foreign_keys_to_remove
            if e.definition is not None
        )
        plan.manual_steps.extend(
            f"Restore table {name} from backup (dropped tables are not recreated)"
            for name in diff.tables_to_drop
        )
        down.extend(d.drop_table(table.name) for table in diff.tables_to_create)
        down.extend(
            d.rename_table(r.to_name, r.from_name) for r in reversed(diff.tables_to_rename)
        )

        return plan

    @staticmethod
    def _modified_columns(
        diff: SchemaDiff,
    ) -> dict[tuple[str, str], tuple[ColumnDefinition, ColumnDefinition]]:
        # Several change flags on one column collapse into one MODIFY
        modified: dict[tuple[str, str], tuple[ColumnDefinition, ColumnDefinition]] = {}
        for change in diff.columns_to_modify:
            if change.definition is None or change.previous is None:
                continue
            modified.setdefault(
                (change.table, change.column), (change.definition, change.previous)
            )
        return modified

    @staticmethod
    def _covered_by_drops(
        entry: IndexToRemove, dropped_columns: set[tuple[str, str]]
    ) -> bool:
        if entry.definition is None or not entry.definition.columns:
            return False
        return all((entry.table, c) in dropped_columns for c in entry.definition.columns)

    def render(
        self,
        version: str,
        plan: MigrationPlan,
        summary: str,
        description: str,
        is_destructive: bool,
        requires_backup: bool = False,
        is_squashed: bool = False,
        squashed_versions: list[str] | None = None,
        can_run_in_parallel: bool = True,
    ) -> str:
        """Render migration source code."""
        indent = " " * 8

        up_lines = [f"{indent}connection.query({statement!r})" for statement in plan.up]
        down_lines = [f"{indent}# TODO: {step}" for step in plan.manual_steps]
        down_lines.extend(
            f"{indent}connection.query({statement!r})" for statement in plan.down
        )
        dry_run_lines = [f"{indent}    {statement!r}," for statement in plan.up]

        if not plan.up:
            up_lines.append(f"{indent}pass  # No changes")
        if not plan.down:
            down_lines.append(f"{indent}pass  # No changes")

        return MIGRATION_TEMPLATE.format(
            version=version,
            generated_at=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            summary=summary,
            description=repr(description),
            is_destructive=is_destructive,
            requires_backup=requires_backup,
            is_squashed=is_squashed,
            squashed_versions=repr(list(squashed_versions or [])),
            can_run_in_parallel=can_run_in_parallel,
            up_body="\n".join(up_lines),
            down_body="\n".join(down_lines),
            dry_run_body="\n".join(dry_run_lines),
        )


def describe_diff(diff: SchemaDiff) -> str:
    """One-line description of a diff, used as the migration description."""
    parts = []
    counts = [
        (len(diff.tables_to_create), "table(s) created"),
        (len(diff.tables_to_rename), "table(s) renamed"),
        (len(diff.tables_to_drop), "table(s) dropped"),
        (len(diff.columns_to_add), "column(s) added"),
        (len(diff.columns_to_rename), "column(s) renamed"),
        (len({(c.table, c.column) for c in diff.columns_to_modify}), "column(s) modified"),
        (len(diff.columns_to_remove), "column(s) dropped"),
        (len(diff.indexes_to_add) + len(diff.indexes_to_remove), "index change(s)"),
        (
            len(diff.foreign_keys_to_add) + len(diff.foreign_keys_to_remove),
            "foreign key change(s)",
        ),
    ]
    for count, label in counts:
        if count:
            parts.append(f"{count} {label}")
    return ", ".join(parts) or "No changes"


class MigrationGenerator:
    """
    Generates migration files from entity definitions.

    Steps: build the desired schema, make sure the tracking tables exist,
    introspect the current schema, diff, confirm renames, and write the
    migration file when there is anything to change.
    """

    def __init__(
        self,
        connection: Any,
        migrations_dir: str | Path,
        entity_builder: EntitySchemaBuilder | None = None,
        confirm: ConfirmCallback | None = None,
        dialect: SQLDialect | None = None,
        introspector: SchemaIntrospector | None = None,
        differ: SchemaDiffer | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize generator.

        Args:
            connection: Object exposing ``query(sql, params)``
            migrations_dir: Directory migration files are written to
            entity_builder: Source of the desired schema
            confirm: Called for each detected rename; defaults to a terminal prompt
            dialect: SQL dialect used for generated statements
            introspector: Source of the current schema
            differ: Schema differ
            clock: Time source for migration versions (seconds)
        """
        self.connection = connection
        self.migrations_dir = Path(migrations_dir)
        self.entity_builder = entity_builder or EntitySchemaBuilder()
        self.confirm = confirm or prompt_confirmation
        self.renderer = MigrationRenderer(dialect)
        self.introspector = introspector or SchemaIntrospector(connection)
        self.differ = differ or SchemaDiffer()
        self.clock = clock

    def generate(self) -> GeneratedMigration | None:
        """
        Generate a migration for the pending schema changes.

        Returns:
            The generated migration, or None if the schema is up to date
        """
        desired = self.entity_builder.build_schema_from_entities()

        if not self.introspector.migration_tables_exist():
            self.introspector.initialize_migration_tables()

        current = self.introspector.get_current_schema()
        diff = self.compute_diff(current, desired)

        if diff.is_empty():
            logger.info("No schema changes detected, nothing to generate")
            return None

        if diff.is_destructive():
            logger.warning("Generated migration contains destructive operations")

        version = str(int(self.clock() * 1000))
        plan = self.renderer.plan(diff)
        source = self.renderer.render(
            version,
            plan,
            summary=diff.get_summary(),
            description=describe_diff(diff),
            is_destructive=diff.is_destructive(),
        )

        self.migrations_dir.mkdir(parents=True, exist_ok=True)
        path = self.migrations_dir / f"Migration_{version}.py"
        path.write_text(source, encoding="utf-8")

        logger.info(f"Generated migration {path}")
        return GeneratedMigration(version=version, path=path, diff=diff, plan=plan)

    def compute_diff(self, current: DatabaseSchema, desired: DatabaseSchema) -> SchemaDiff:
        """
        Diff the schemas, confirming every detected rename.

        Rejected renames are excluded and the diff recomputed, so they
        fall back to independent drop and add entries. Each pair is asked
        about at most once.
        """
        rejected_tables: set[tuple[str, str]] = set()
        rejected_columns: set[tuple[str, str, str]] = set()
        confirmed: set[tuple[str, ...]] = set()

        while True:
            diff = self.differ.diff(current, desired, rejected_tables, rejected_columns)

            rejected_any = False
            for rename in diff.tables_to_rename:
                key = ("table", rename.from_name, rename.to_name)
                if key in confirmed:
                    continue
                if self.confirm(rename):
                    confirmed.add(key)
                else:
                    rejected_tables.add((rename.from_name, rename.to_name))
                    rejected_any = True
            if rejected_any:
                continue

            for rename in diff.columns_to_rename:
                key = ("column", rename.table, rename.from_name, rename.to_name)
                if key in confirmed:
                    continue
                if self.confirm(rename):
                    confirmed.add(key)
                else:
                    rejected_columns.add((rename.table, rename.from_name, rename.to_name))
                    rejected_any = True
            if not rejected_any:
                return diff
