"""
Schema Model

Structural metadata for tables, columns, indexes and foreign keys, plus
the SchemaDiff produced when comparing two schemas. Nothing here owns
row data; these objects are rebuilt for every introspection or
generation run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Synonyms that the database reports differently from entity metadata
TYPE_ALIASES: dict[str, str] = {
    "integer": "int",
    "bool": "tinyint",
    "boolean": "tinyint",
    "character varying": "varchar",
    "character": "char",
    "dec": "decimal",
    "numeric": "decimal",
    "real": "double",
    "double precision": "double",
}

# Types whose length is part of the declared type
LENGTH_TYPES = frozenset({"varchar", "char", "binary", "varbinary", "decimal"})

# Length MySQL applies when a sized type is declared bare
DEFAULT_LENGTHS: dict[str, int] = {
    "varchar": 255,
    "char": 1,
    "varbinary": 255,
    "binary": 1,
    "decimal": 10,
}


def normalize_type(type_name: str | None) -> str:
    """
    Normalize a column type name to its canonical lowercase form.

    Args:
        type_name: Raw type name, e.g. ``INTEGER`` or ``Boolean``

    Returns:
        Canonical type name, e.g. ``int`` or ``tinyint``
    """
    if not type_name:
        return ""
    normalized = type_name.strip().lower()
    return TYPE_ALIASES.get(normalized, normalized)


@dataclass
class ColumnDefinition:
    """A single table column."""

    name: str
    type: str
    length: int | None = None
    nullable: bool = True
    default: Any = None
    primary: bool = False
    unique: bool = False
    auto_increment: bool = False
    comment: str | None = None

    @property
    def normalized_type(self) -> str:
        return normalize_type(self.type)

    @property
    def effective_length(self) -> int | None:
        """
        Length that is meaningful for comparison.

        None for unsized types; a bare sized type compares as its default
        length, so ``decimal`` equals the catalog's ``decimal(10)``.
        """
        type_name = self.normalized_type
        if type_name in LENGTH_TYPES:
            return self.length or DEFAULT_LENGTHS.get(type_name)
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "length": self.length,
            "nullable": self.nullable,
            "default": self.default,
            "primary": self.primary,
            "unique": self.unique,
            "autoIncrement": self.auto_increment,
            "comment": self.comment,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ColumnDefinition":
        return cls(
            name=data["name"],
            type=data["type"],
            length=data.get("length"),
            nullable=data.get("nullable", True),
            default=data.get("default"),
            primary=data.get("primary", False),
            unique=data.get("unique", False),
            auto_increment=data.get("autoIncrement", False),
            comment=data.get("comment"),
        )


@dataclass
class IndexDefinition:
    """A secondary index. The implicit PRIMARY index is never represented."""

    name: str
    columns: list[str]
    unique: bool = False
    type: str = "BTREE"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "columns": list(self.columns),
            "unique": self.unique,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexDefinition":
        return cls(
            name=data["name"],
            columns=list(data.get("columns", [])),
            unique=data.get("unique", False),
            type=data.get("type", "BTREE"),
        )


@dataclass
class ForeignKeyDefinition:
    """A single-column foreign key constraint."""

    name: str
    column: str
    referenced_table: str
    referenced_column: str
    on_update: str = "RESTRICT"
    on_delete: str = "RESTRICT"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "column": self.column,
            "referencedTable": self.referenced_table,
            "referencedColumn": self.referenced_column,
            "onUpdate": self.on_update,
            "onDelete": self.on_delete,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ForeignKeyDefinition":
        return cls(
            name=data["name"],
            column=data["column"],
            referenced_table=data["referencedTable"],
            referenced_column=data["referencedColumn"],
            on_update=data.get("onUpdate", "RESTRICT"),
            on_delete=data.get("onDelete", "RESTRICT"),
        )


@dataclass
class TableDefinition:
    """Structural definition of one table."""

    name: str
    columns: list[ColumnDefinition] = field(default_factory=list)
    indexes: list[IndexDefinition] = field(default_factory=list)
    foreign_keys: list[ForeignKeyDefinition] = field(default_factory=list)

    def get_column(self, name: str) -> ColumnDefinition | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def get_index(self, name: str) -> IndexDefinition | None:
        for index in self.indexes:
            if index.name == name:
                return index
        return None

    def get_foreign_key(self, name: str) -> ForeignKeyDefinition | None:
        for foreign_key in self.foreign_keys:
            if foreign_key.name == name:
                return foreign_key
        return None

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    @property
    def primary_key(self) -> ColumnDefinition | None:
        for column in self.columns:
            if column.primary:
                return column
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "columns": [column.to_dict() for column in self.columns],
            "indexes": [index.to_dict() for index in self.indexes],
            "foreignKeys": [fk.to_dict() for fk in self.foreign_keys],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TableDefinition":
        return cls(
            name=data["name"],
            columns=[ColumnDefinition.from_dict(c) for c in data.get("columns", [])],
            indexes=[IndexDefinition.from_dict(i) for i in data.get("indexes", [])],
            foreign_keys=[
                ForeignKeyDefinition.from_dict(fk) for fk in data.get("foreignKeys", [])
            ],
        )


class DatabaseSchema:
    """
    Mapping of table name to TableDefinition.

    Lookup by name is the primary access pattern; iteration order is
    insertion order but carries no meaning.
    """

    def __init__(self, tables: list[TableDefinition] | None = None) -> None:
        self._tables: dict[str, TableDefinition] = {}
        for table in tables or []:
            self.add_table(table)

    def add_table(self, table: TableDefinition) -> None:
        self._tables[table.name] = table

    def get_table(self, name: str) -> TableDefinition | None:
        return self._tables.get(name)

    def has_table(self, name: str) -> bool:
        return name in self._tables

    def get_tables(self) -> list[TableDefinition]:
        return list(self._tables.values())

    def get_table_names(self) -> list[str]:
        return list(self._tables.keys())

    def __len__(self) -> int:
        return len(self._tables)

    def __iter__(self):
        return iter(self._tables.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tables

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain structure suitable for JSON."""
        return {"tables": [table.to_dict() for table in self._tables.values()]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DatabaseSchema":
        """Rebuild a schema from the output of ``to_dict()``."""
        return cls([TableDefinition.from_dict(t) for t in data.get("tables", [])])


class ColumnChangeType(str, Enum):
    """Kinds of modification detected on a column present in both schemas."""

    TYPE_CHANGE = "TYPE_CHANGE"
    NULLABLE_CHANGE = "NULLABLE_CHANGE"
    DEFAULT_CHANGE = "DEFAULT_CHANGE"


@dataclass
class ColumnToAdd:
    table: str
    column: ColumnDefinition


@dataclass
class ColumnToRemove:
    table: str
    column: str
    definition: ColumnDefinition | None = None


@dataclass
class ColumnChange:
    table: str
    column: str
    change_type: ColumnChangeType
    from_value: Any
    to_value: Any
    definition: ColumnDefinition | None = None
    previous: ColumnDefinition | None = None


@dataclass
class ColumnRenameEntry:
    table: str
    from_name: str
    to_name: str
    confidence: float


@dataclass
class TableRenameEntry:
    from_name: str
    to_name: str
    confidence: float


@dataclass
class IndexToAdd:
    table: str
    index: IndexDefinition


@dataclass
class IndexToRemove:
    table: str
    index: str
    definition: IndexDefinition | None = None


@dataclass
class ForeignKeyToAdd:
    table: str
    foreign_key: ForeignKeyDefinition


@dataclass
class ForeignKeyToRemove:
    table: str
    foreign_key: str
    definition: ForeignKeyDefinition | None = None


@dataclass
class SchemaDiff:
    """Every structural change needed to turn one schema into another."""

    tables_to_create: list[TableDefinition] = field(default_factory=list)
    tables_to_rename: list[TableRenameEntry] = field(default_factory=list)
    tables_to_drop: list[str] = field(default_factory=list)
    columns_to_add: list[ColumnToAdd] = field(default_factory=list)
    columns_to_remove: list[ColumnToRemove] = field(default_factory=list)
    columns_to_modify: list[ColumnChange] = field(default_factory=list)
    columns_to_rename: list[ColumnRenameEntry] = field(default_factory=list)
    indexes_to_add: list[IndexToAdd] = field(default_factory=list)
    indexes_to_remove: list[IndexToRemove] = field(default_factory=list)
    foreign_keys_to_add: list[ForeignKeyToAdd] = field(default_factory=list)
    foreign_keys_to_remove: list[ForeignKeyToRemove] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.tables_to_create
            or self.tables_to_rename
            or self.tables_to_drop
            or self.columns_to_add
            or self.columns_to_remove
            or self.columns_to_modify
            or self.columns_to_rename
            or self.indexes_to_add
            or self.indexes_to_remove
            or self.foreign_keys_to_add
            or self.foreign_keys_to_remove
        )

    def is_destructive(self) -> bool:
        return bool(self.tables_to_drop or self.columns_to_remove)

    def get_summary(self) -> str:
        """Human-readable multi-line summary of the diff."""
        if self.is_empty():
            return "No schema changes detected"

        lines = ["Schema changes:"]
        for table in self.tables_to_create:
            lines.append(f"  + Create table {table.name}")
        for rename in self.tables_to_rename:
            lines.append(
                f"  ~ Rename table {rename.from_name} -> {rename.to_name} "
                f"({rename.confidence:.0%})"
            )
        for name in self.tables_to_drop:
            lines.append(f"  - Drop table {name} (DESTRUCTIVE)")
        for entry in self.columns_to_add:
            lines.append(f"  + Add column {entry.table}.{entry.column.name}")
        for rename in self.columns_to_rename:
            lines.append(
                f"  ~ Rename column {rename.table}.{rename.from_name} -> "
                f"{rename.to_name} ({rename.confidence:.0%})"
            )
        for change in self.columns_to_modify:
            lines.append(
                f"  ~ Modify column {change.table}.{change.column}: "
                f"{change.change_type.value} {change.from_value!r} -> {change.to_value!r}"
            )
        for entry in self.columns_to_remove:
            lines.append(f"  - Drop column {entry.table}.{entry.column} (DESTRUCTIVE)")
        for entry in self.indexes_to_add:
            lines.append(f"  + Add index {entry.table}.{entry.index.name}")
        for entry in self.indexes_to_remove:
            lines.append(f"  - Drop index {entry.table}.{entry.index}")
        for entry in self.foreign_keys_to_add:
            lines.append(f"  + Add foreign key {entry.table}.{entry.foreign_key.name}")
        for entry in self.foreign_keys_to_remove:
            lines.append(f"  - Drop foreign key {entry.table}.{entry.foreign_key}")
        return "\n".join(lines)
