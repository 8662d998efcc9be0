"""
Migration Lock Manager

Serializes migration runs across processes and hosts using a single row
in the ``migration_lock`` table. A lock older than the staleness window
is assumed to belong to a crashed process and is recovered once.
"""

import logging
import os
import socket
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from .base import MigrationLockError
from .introspector import LOCK_TABLE

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fixed row id so a second insert collides with the live lock
LOCK_ROW_ID = 1


class MigrationLockManager:
    """Database-row mutex for migrate and rollback operations."""

    def __init__(
        self,
        connection: Any,
        stale_after_seconds: int = 3600,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialize lock manager.

        Args:
            connection: Object exposing ``query(sql, params)``
            stale_after_seconds: Age after which a held lock is force-released
            clock: Source of the current time
        """
        self.connection = connection
        self.stale_after_seconds = stale_after_seconds
        self.clock = clock
        self.lock_acquired = False

    def acquire_lock(self) -> None:
        """
        Acquire the migration lock.

        Raises:
            MigrationLockError: If another live process holds the lock
        """
        self._acquire(allow_stale_recovery=True)

    def _acquire(self, allow_stale_recovery: bool) -> None:
        hostname = socket.gethostname()
        process_id = os.getpid()
        try:
            self.connection.query(
                f"INSERT INTO `{LOCK_TABLE}` (id, locked_at, hostname, process_id) "
                f"VALUES (%s, %s, %s, %s)",
                (LOCK_ROW_ID, self.clock(), hostname, process_id),
            )
        except Exception as e:
            try:
                holder = self.get_lock_holder()
            except Exception as lookup_error:
                logger.debug(f"Could not read migration lock holder: {lookup_error}")
                holder = None
            if holder is None:
                raise MigrationLockError(f"Could not acquire migration lock: {e}") from e

            locked_at = holder.get("locked_at")
            age = (self.clock() - locked_at).total_seconds() if locked_at else 0.0

            if allow_stale_recovery and age > self.stale_after_seconds:
                logger.warning(
                    f"Releasing stale migration lock held by {holder.get('hostname')} "
                    f"(PID {holder.get('process_id')}) since {locked_at}"
                )
                self.force_release()
                self._acquire(allow_stale_recovery=False)
                return

            raise MigrationLockError(
                f"Migration lock is held by {holder.get('hostname')} "
                f"(PID {holder.get('process_id')}) since {locked_at}"
            ) from e

        self.lock_acquired = True
        logger.debug(f"Migration lock acquired by {hostname} (PID {process_id})")

    def release_lock(self) -> None:
        """Release the lock if this manager holds it."""
        if not self.lock_acquired:
            return
        self.connection.query(f"DELETE FROM `{LOCK_TABLE}`")
        self.lock_acquired = False
        logger.debug("Migration lock released")

    def force_release(self) -> None:
        """Delete the lock row regardless of who holds it."""
        self.connection.query(f"DELETE FROM `{LOCK_TABLE}`")
        self.lock_acquired = False

    def get_lock_holder(self) -> dict[str, Any] | None:
        rows = self.connection.query(
            f"SELECT id, locked_at, hostname, process_id FROM `{LOCK_TABLE}` LIMIT 1"
        )
        return rows[0] if rows else None

    def is_locked(self) -> bool:
        return self.get_lock_holder() is not None

    def with_lock(self, callback: Callable[[], T]) -> T:
        """
        Run a callback while holding the lock.

        The lock is released even when the callback raises.

        Raises:
            MigrationLockError: If the lock cannot be acquired
        """
        self.acquire_lock()
        try:
            return callback()
        finally:
            self.release_lock()
