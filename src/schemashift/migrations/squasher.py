"""
Migration Squasher

Folds the executed migration history into a single baseline migration
generated from the live schema, so fresh installations can run one
migration instead of the whole history.
"""

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .dialect import SQLDialect
from .generator import MigrationRenderer
from .introspector import SchemaIntrospector
from .schema import SchemaDiff
from .version_tracker import VersionTracker

logger = logging.getLogger(__name__)


class MigrationSquasher:
    """Creates squashed baseline migrations."""

    def __init__(
        self,
        connection: Any,
        migrations_dir: str | Path,
        dialect: SQLDialect | None = None,
        introspector: SchemaIntrospector | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.connection = connection
        self.migrations_dir = Path(migrations_dir)
        self.renderer = MigrationRenderer(dialect)
        self.introspector = introspector or SchemaIntrospector(connection)
        self.tracker = VersionTracker(connection)
        self.clock = clock

    def squash(self, target_version: str | None = None) -> Path | None:
        """
        Squash executed migrations up to ``target_version``.

        The baseline is recorded as executed so it is not applied again to
        the database it was generated from; the folded migrations are
        marked ``squashed``.

        Args:
            target_version: Newest version to fold in. Defaults to the
                newest executed migration

        Returns:
            Path of the baseline migration, or None when there is nothing
            to squash
        """
        records = self.tracker.get_executed_migrations()
        if not records:
            logger.warning("No executed migrations to squash")
            return None

        target = target_version or records[-1].version
        to_squash = [r for r in records if r.version <= target and not r.squashed]
        if not to_squash:
            logger.warning(
                "No migrations to squash (all already squashed or none before target)"
            )
            return None

        schema = self.introspector.get_current_schema()
        if len(schema) == 0:
            logger.error("Cannot squash: no tables found in database")
            return None

        versions = [record.version for record in to_squash]
        logger.info(f"Squashing {len(versions)} migrations up to version {target}")

        diff = SchemaDiff(tables_to_create=schema.get_tables())
        plan = self.renderer.plan(diff)
        version = str(int(self.clock() * 1000))
        source = self.renderer.render(
            version,
            plan,
            summary=(
                f"Squashed baseline replacing {len(versions)} migrations "
                f"({versions[0]} to {versions[-1]}).\n\n"
                f"Fresh installations run this migration instead of the "
                f"migrations it replaces."
            ),
            description=f"Squashed baseline of {len(versions)} migrations",
            is_destructive=False,
            is_squashed=True,
            squashed_versions=versions,
            can_run_in_parallel=False,
        )

        self.migrations_dir.mkdir(parents=True, exist_ok=True)
        path = self.migrations_dir / f"Migration_{version}.py"
        path.write_text(source, encoding="utf-8")

        self.tracker.mark_squashed(versions)
        self.tracker.record_migration_applied(
            version, 0, max(1, self.tracker.get_latest_batch())
        )

        logger.info(f"Squashed migration written: {path}")
        return path
