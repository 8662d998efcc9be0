"""
Entity Schema Builder

Converts entity schema descriptions into the desired DatabaseSchema.
Entity files that fail to load, and individual malformed columns or
references, are logged and skipped instead of aborting the build.
"""

import importlib.util
import inspect
import logging
from pathlib import Path

from ..entity import ColumnSpec, Entity, EntityDescription, get_registered_entities
from .rename_detector import TYPE_FAMILIES
from .schema import (
    DEFAULT_LENGTHS,
    ColumnDefinition,
    DatabaseSchema,
    ForeignKeyDefinition,
    IndexDefinition,
    TableDefinition,
    normalize_type,
)

logger = logging.getLogger(__name__)


class EntitySchemaBuilder:
    """Builds the schema the database should have from entity classes."""

    def __init__(
        self,
        entities: list[type[Entity]] | None = None,
        entities_dir: str | Path | None = None,
    ) -> None:
        """
        Initialize builder.

        Args:
            entities: Entity classes to include. Defaults to the registry.
            entities_dir: Optional directory scanned for Entity subclasses
        """
        self.entities = entities
        self.entities_dir = Path(entities_dir) if entities_dir else None

    def build_schema_from_entities(self) -> DatabaseSchema:
        """
        Build the desired schema.

        Returns:
            DatabaseSchema with one table per entity
        """
        schema = DatabaseSchema()
        for entity_class in self.discover_entities():
            try:
                description = entity_class.describe()
            except Exception as e:
                logger.warning(f"Skipping entity {entity_class.__name__}: {e}")
                continue
            table = self.build_table(entity_class.__name__, description)
            schema.add_table(table)
            logger.debug(f"Built table {table.name} from entity {entity_class.__name__}")

        logger.info(f"Built desired schema with {len(schema)} tables")
        return schema

    def discover_entities(self) -> list[type[Entity]]:
        """Collect entity classes from the explicit list or registry, then the directory."""
        found: dict[str, type[Entity]] = {}
        explicit = self.entities if self.entities is not None else get_registered_entities()
        for entity_class in explicit:
            found[entity_class.__name__] = entity_class

        if self.entities_dir is not None:
            for entity_class in self._load_entities_dir(self.entities_dir):
                found.setdefault(entity_class.__name__, entity_class)

        return list(found.values())

    def _load_entities_dir(self, directory: Path) -> list[type[Entity]]:
        if not directory.is_dir():
            logger.warning(f"Entities directory not found: {directory}")
            return []

        classes: list[type[Entity]] = []
        for file_path in sorted(directory.glob("*.py")):
            if file_path.name.startswith("__"):
                continue
            try:
                spec = importlib.util.spec_from_file_location(
                    f"schemashift_entities.{file_path.stem}", file_path
                )
                if spec is None or spec.loader is None:
                    logger.warning(f"Could not load spec for {file_path}")
                    continue
                module = importlib.util.module_from_spec(spec)
                spec.loader.exec_module(module)
            except Exception as e:
                logger.warning(f"Failed to load entity file {file_path}: {e}")
                continue

            module_classes = [
                obj
                for _, obj in inspect.getmembers(module, inspect.isclass)
                if issubclass(obj, Entity)
                and obj is not Entity
                and obj.__module__ == module.__name__
            ]
            if not module_classes:
                logger.warning(f"No entity class found in {file_path.name}")
            classes.extend(module_classes)

        return classes

    def build_table(self, class_name: str, description: EntityDescription) -> TableDefinition:
        """
        Convert one entity description into a TableDefinition.

        Args:
            class_name: Entity class name, used when no table name is given
            description: The entity's schema description

        Returns:
            TableDefinition with columns, synthetic indexes and foreign keys
        """
        table_name = description.table_name or class_name.lower()
        table = TableDefinition(name=table_name)

        for spec in description.columns:
            if not spec.name or not spec.type:
                logger.warning(
                    f"Skipping column without name or type on {table_name}: {spec!r}"
                )
                continue

            table.columns.append(self.build_column(spec))

            if spec.unique and not spec.pk:
                table.indexes.append(
                    IndexDefinition(
                        name=f"idx_{table_name}_{spec.name}",
                        columns=[spec.name],
                        unique=True,
                        type="BTREE",
                    )
                )

            if spec.fk:
                foreign_key = self.build_foreign_key(table_name, spec)
                if foreign_key is not None:
                    table.indexes.append(
                        IndexDefinition(
                            name=foreign_key.name,
                            columns=[spec.name],
                            unique=False,
                            type="BTREE",
                        )
                    )
                    table.foreign_keys.append(foreign_key)

        return table

    @staticmethod
    def build_column(spec: ColumnSpec) -> ColumnDefinition:
        column_type = normalize_type(spec.type)
        return ColumnDefinition(
            name=spec.name,
            type=column_type,
            length=spec.size or DEFAULT_LENGTHS.get(column_type),
            nullable=spec.nullable and not spec.pk,
            default=spec.default,
            primary=spec.pk,
            unique=spec.unique,
            auto_increment=spec.pk and column_type in TYPE_FAMILIES["integer"],
            comment=spec.comment,
        )

    @staticmethod
    def build_foreign_key(table_name: str, spec: ColumnSpec) -> ForeignKeyDefinition | None:
        parts = (spec.references or "").split(".")
        if len(parts) != 2 or not all(parts):
            return None
        referenced_table, referenced_column = parts
        return ForeignKeyDefinition(
            name=f"fk_{table_name}_{spec.name}",
            column=spec.name,
            referenced_table=referenced_table,
            referenced_column=referenced_column,
            on_update="RESTRICT",
            on_delete=(spec.on_delete or "RESTRICT").upper(),
        )
