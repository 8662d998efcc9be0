"""
Entity Schema Description

The contract application entities implement so the migration tooling can
derive the desired schema: each entity class describes its own table and
columns. Entities are picked up either by registration or by discovery of
Entity subclasses in an entities directory.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ColumnSpec:
    """Column metadata as declared on an entity."""

    name: str | None
    type: str | None
    size: int | None = None
    nullable: bool = True
    default: Any = None
    pk: bool = False
    unique: bool = False
    fk: bool = False
    references: str | None = None  # "table.column"
    on_delete: str | None = None
    comment: str | None = None


@dataclass
class EntityDescription:
    """What an entity reports about its table."""

    table_name: str | None
    columns: list[ColumnSpec] = field(default_factory=list)


class Entity:
    """
    Base class for entities that describe their own table.

    Subclasses either set ``__table_name__`` and ``__columns__`` or
    override ``describe()``. When no table name is given, the lowercase
    class name is used.
    """

    __table_name__: str | None = None
    __columns__: list[ColumnSpec] = []

    @classmethod
    def describe(cls) -> EntityDescription:
        return EntityDescription(
            table_name=cls.__table_name__,
            columns=list(cls.__columns__),
        )


# Entities registered explicitly by the application
ENTITY_REGISTRY: dict[str, type[Entity]] = {}


def register_entity(entity_class: type[Entity]) -> type[Entity]:
    """Register an entity class. Usable as a class decorator."""
    ENTITY_REGISTRY[entity_class.__name__] = entity_class
    return entity_class


def get_registered_entities() -> list[type[Entity]]:
    """Get registered entity classes in registration order."""
    return list(ENTITY_REGISTRY.values())
