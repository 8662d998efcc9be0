"""
Migration Manager

Discovers ``Migration_<version>.py`` files in the migrations directory,
loads the migration class each one defines, and hands out instances in
version order.
"""

import importlib.util
import inspect
import logging
import re
from pathlib import Path

from .base import BaseMigration, MigrationError

logger = logging.getLogger(__name__)

MIGRATION_FILE_PATTERN = re.compile(r"^Migration_(?P<version>\d+)$")


class MigrationManager:
    """
    Loads migration files from disk.

    Versions are compared as strings; generated versions are millisecond
    timestamps of equal length, so lexicographic order is chronological.
    """

    def __init__(self, migrations_path: str | Path) -> None:
        """
        Initialize migration manager.

        Args:
            migrations_path: Directory containing migration files
        """
        self.migrations_path = Path(migrations_path)

    def discover_migrations(self) -> list[BaseMigration]:
        """
        Load every migration file in the directory.

        Files that fail to import or define no migration class are logged
        and skipped.

        Returns:
            Migration instances sorted by version
        """
        if not self.migrations_path.is_dir():
            logger.debug(f"Migrations directory does not exist: {self.migrations_path}")
            return []

        migrations: dict[str, BaseMigration] = {}
        for file_path in sorted(self.migrations_path.glob("Migration_*.py")):
            try:
                migration = self._load_migration_file(file_path)
            except MigrationError as e:
                logger.error(f"Failed to load migration file {file_path}: {e}")
                continue
            if migration is not None:
                migrations[migration.version] = migration

        logger.debug(f"Discovered {len(migrations)} migrations in {self.migrations_path}")
        return [migrations[version] for version in sorted(migrations)]

    def _load_migration_file(self, file_path: Path) -> BaseMigration | None:
        """Load the migration class from a Python file."""
        match = MIGRATION_FILE_PATTERN.match(file_path.stem)
        if match is None:
            logger.warning(f"Skipping file with invalid name format: {file_path.name}")
            return None
        version = match.group("version")

        module_name = f"schemashift_migrations.{file_path.stem}"
        spec = importlib.util.spec_from_file_location(module_name, file_path)
        if spec is None or spec.loader is None:
            logger.warning(f"Could not load spec for {file_path}")
            return None

        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            raise MigrationError(f"Cannot import {file_path.name}: {e}") from e

        migration_class = None
        for _, obj in inspect.getmembers(module, inspect.isclass):
            if (
                issubclass(obj, BaseMigration)
                and obj.__module__ == module_name
                and not inspect.isabstract(obj)
            ):
                migration_class = obj
                break

        if migration_class is None:
            logger.warning(f"No migration class found in {file_path.name}")
            return None

        migration = migration_class()
        if str(migration.version) != version:
            raise MigrationError(
                f"Version mismatch in {file_path.name}: "
                f"filename={version}, class={migration.version}"
            )
        return migration

    def get_migration(self, version: str) -> BaseMigration | None:
        """
        Load a single migration by version.

        Raises:
            MigrationError: If the file exists but cannot be loaded
        """
        file_path = self.migrations_path / f"Migration_{version}.py"
        if not file_path.exists():
            return None
        return self._load_migration_file(file_path)

    def get_available_versions(self) -> list[str]:
        return [migration.version for migration in self.discover_migrations()]

    def migration_path(self, version: str) -> Path:
        return self.migrations_path / f"Migration_{version}.py"
