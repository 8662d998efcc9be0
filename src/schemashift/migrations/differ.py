"""
Schema Differ

Structural comparison of a current and a desired DatabaseSchema. Renames
are detected with RenameDetector so they are reported as renames rather
than as independent drop/create pairs.
"""

import logging
from typing import Any

from .rename_detector import RenameDetector
from .schema import (
    ColumnChange,
    ColumnChangeType,
    ColumnDefinition,
    ColumnRenameEntry,
    ColumnToAdd,
    ColumnToRemove,
    DatabaseSchema,
    ForeignKeyToAdd,
    ForeignKeyToRemove,
    IndexToAdd,
    IndexToRemove,
    SchemaDiff,
    TableDefinition,
    TableRenameEntry,
)

logger = logging.getLogger(__name__)


def _normalize_default(value: Any) -> str | None:
    """Bring defaults from entities and from the catalog to one representation."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    text = str(value)
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        text = text[1:-1]
    return text


def _format_type(column_type: str, length: int | None) -> str:
    return f"{column_type}({length})" if length else column_type


class SchemaDiffer:
    """Computes a SchemaDiff between two schemas."""

    def __init__(self, rename_detector: RenameDetector | None = None) -> None:
        self.rename_detector = rename_detector or RenameDetector()

    def diff(
        self,
        current: DatabaseSchema,
        desired: DatabaseSchema,
        rejected_table_renames: set[tuple[str, str]] | None = None,
        rejected_column_renames: set[tuple[str, str, str]] | None = None,
    ) -> SchemaDiff:
        """
        Compare two schemas.

        Args:
            current: Schema as it exists in the database
            desired: Schema the database should have
            rejected_table_renames: (from, to) table pairs that must be
                treated as a drop plus a create
            rejected_column_renames: (table, from, to) column pairs that
                must be treated as a drop plus an add

        Returns:
            SchemaDiff describing every change
        """
        rejected_table_renames = rejected_table_renames or set()
        rejected_column_renames = rejected_column_renames or set()
        diff = SchemaDiff()

        current_names = [name for name in current.get_table_names() if name]
        desired_names = [name for name in desired.get_table_names() if name]

        created = [desired.get_table(n) for n in desired_names if n not in current]
        dropped = [current.get_table(n) for n in current_names if n not in desired]

        table_renames = self.rename_detector.detect_table_renames(
            dropped, created, excluded=rejected_table_renames
        )
        renamed_from = {rename.from_name for rename in table_renames}
        renamed_to = {rename.to_name for rename in table_renames}

        diff.tables_to_rename = [
            TableRenameEntry(r.from_name, r.to_name, r.confidence) for r in table_renames
        ]
        diff.tables_to_create = [t for t in created if t.name not in renamed_to]
        diff.tables_to_drop = [t.name for t in dropped if t.name not in renamed_from]

        # Pairs of (current table, desired table) whose contents are compared
        pairs: list[tuple[TableDefinition, TableDefinition]] = [
            (current.get_table(name), desired.get_table(name))
            for name in desired_names
            if name in current
        ]
        pairs.extend(
            (current.get_table(r.from_name), desired.get_table(r.to_name))
            for r in table_renames
        )

        for current_table, desired_table in pairs:
            self._diff_table(diff, current_table, desired_table, rejected_column_renames)

        logger.debug(
            f"Diff computed: {len(diff.tables_to_create)} create, "
            f"{len(diff.tables_to_drop)} drop, {len(diff.tables_to_rename)} rename, "
            f"{len(diff.columns_to_add)} column add, "
            f"{len(diff.columns_to_remove)} column remove"
        )
        return diff

    def _diff_table(
        self,
        diff: SchemaDiff,
        current_table: TableDefinition,
        desired_table: TableDefinition,
        rejected_column_renames: set[tuple[str, str, str]],
    ) -> None:
        # Changes are addressed by the desired name, which is the table's
        # name once any table rename has run
        table = desired_table.name

        current_columns = {c.name: c for c in current_table.columns if c.name}
        desired_columns = {c.name: c for c in desired_table.columns if c.name}

        added = [c for name, c in desired_columns.items() if name not in current_columns]
        removed = [c for name, c in current_columns.items() if name not in desired_columns]

        excluded = {
            (from_name, to_name)
            for rejected_table, from_name, to_name in rejected_column_renames
            if rejected_table == table
        }
        column_renames = self.rename_detector.detect_column_renames(
            table, removed, added, excluded=excluded
        )
        renamed_from = {rename.from_name for rename in column_renames}
        renamed_to = {rename.to_name for rename in column_renames}

        diff.columns_to_rename.extend(
            ColumnRenameEntry(table, r.from_name, r.to_name, r.confidence)
            for r in column_renames
        )
        diff.columns_to_add.extend(
            ColumnToAdd(table, c) for c in added if c.name not in renamed_to
        )
        diff.columns_to_remove.extend(
            ColumnToRemove(table, c.name, c) for c in removed if c.name not in renamed_from
        )

        for name, desired_column in desired_columns.items():
            current_column = current_columns.get(name)
            if current_column is None:
                continue
            diff.columns_to_modify.extend(
                self.compare_columns(table, current_column, desired_column)
            )

        self._diff_indexes(diff, table, current_table, desired_table)
        self._diff_foreign_keys(diff, table, current_table, desired_table)

    @staticmethod
    def compare_columns(
        table: str, current: ColumnDefinition, desired: ColumnDefinition
    ) -> list[ColumnChange]:
        """Return every change flag that fires for a column present in both schemas."""
        changes: list[ColumnChange] = []

        if (
            current.normalized_type != desired.normalized_type
            or current.effective_length != desired.effective_length
        ):
            changes.append(
                ColumnChange(
                    table,
                    desired.name,
                    ColumnChangeType.TYPE_CHANGE,
                    _format_type(current.normalized_type, current.effective_length),
                    _format_type(desired.normalized_type, desired.effective_length),
                    definition=desired,
                    previous=current,
                )
            )

        if current.nullable != desired.nullable:
            changes.append(
                ColumnChange(
                    table,
                    desired.name,
                    ColumnChangeType.NULLABLE_CHANGE,
                    current.nullable,
                    desired.nullable,
                    definition=desired,
                    previous=current,
                )
            )

        if _normalize_default(current.default) != _normalize_default(desired.default):
            changes.append(
                ColumnChange(
                    table,
                    desired.name,
                    ColumnChangeType.DEFAULT_CHANGE,
                    current.default,
                    desired.default,
                    definition=desired,
                    previous=current,
                )
            )

        return changes

    @staticmethod
    def _diff_indexes(
        diff: SchemaDiff,
        table: str,
        current_table: TableDefinition,
        desired_table: TableDefinition,
    ) -> None:
        current_indexes = {i.name: i for i in current_table.indexes if i.name}
        desired_indexes = {i.name: i for i in desired_table.indexes if i.name}

        diff.indexes_to_add.extend(
            IndexToAdd(table, index)
            for name, index in desired_indexes.items()
            if name not in current_indexes
        )
        diff.indexes_to_remove.extend(
            IndexToRemove(table, name, index)
            for name, index in current_indexes.items()
            if name not in desired_indexes
        )

    @staticmethod
    def _diff_foreign_keys(
        diff: SchemaDiff,
        table: str,
        current_table: TableDefinition,
        desired_table: TableDefinition,
    ) -> None:
        current_fks = {fk.name: fk for fk in current_table.foreign_keys if fk.name}
        desired_fks = {fk.name: fk for fk in desired_table.foreign_keys if fk.name}

        diff.foreign_keys_to_add.extend(
            ForeignKeyToAdd(table, fk)
            for name, fk in desired_fks.items()
            if name not in current_fks
        )
        diff.foreign_keys_to_remove.extend(
            ForeignKeyToRemove(table, name, fk)
            for name, fk in current_fks.items()
            if name not in desired_fks
        )
