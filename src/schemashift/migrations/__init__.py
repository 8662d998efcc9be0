"""
Schema Migration Subsystem

Introspects the live database, diffs it against the schema described by
entities, generates reversible migration files, and executes them under
a cross-process lock with backups for destructive changes.
"""

from .backup import BackupManager
from .base import (
    BackupError,
    BaseMigration,
    MigrationError,
    MigrationLockError,
    MigrationValidationError,
    ValidationResult,
)
from .differ import SchemaDiffer
from .entity_builder import EntitySchemaBuilder
from .executor import MigrateOptions, MigrationExecutor
from .generator import MigrationGenerator
from .introspector import SchemaIntrospector
from .lock import MigrationLockManager
from .rename_detector import RenameDetector
from .schema import DatabaseSchema, SchemaDiff
from .squasher import MigrationSquasher
from .validator import MigrationValidator

__all__ = [
    "BackupError",
    "BackupManager",
    "BaseMigration",
    "DatabaseSchema",
    "EntitySchemaBuilder",
    "MigrateOptions",
    "MigrationError",
    "MigrationExecutor",
    "MigrationGenerator",
    "MigrationLockError",
    "MigrationLockManager",
    "MigrationSquasher",
    "MigrationValidationError",
    "MigrationValidator",
    "RenameDetector",
    "SchemaDiff",
    "SchemaDiffer",
    "SchemaIntrospector",
    "ValidationResult",
]
