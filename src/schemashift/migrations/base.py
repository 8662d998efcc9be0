"""
Base Migration Class

Defines the contract every authored or generated migration follows:
- Version and safety flags (destructive, requires backup)
- Forward (up) and backward (down) operations against a connection
- Optional dry-run statement listing and self-validation
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .schema import DatabaseSchema

logger = logging.getLogger(__name__)


class MigrationError(Exception):
    """Raised when database migration fails."""

    pass


class MigrationValidationError(MigrationError):
    """Raised when validation blocks a pending migration."""

    def __init__(self, version: str, errors: list[str]) -> None:
        self.version = version
        self.errors = list(errors)
        details = "; ".join(self.errors)
        super().__init__(f"Migration {version} failed validation: {details}")


class MigrationLockError(MigrationError):
    """Raised when the migration lock is held by another process."""

    pass


class BackupError(MigrationError):
    """Raised when a backup cannot be created or restored."""

    pass


@dataclass
class ValidationResult:
    """Outcome of validating a migration before it runs."""

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    can_proceed: bool = True
    requires_confirmation: bool = False


class BaseMigration(ABC):
    """
    Base class for all migrations.

    Subclasses set ``version`` (matching the ``Migration_<version>.py``
    file name) and implement ``up`` and ``down``. The connection is passed
    to each operation rather than held by the migration.

    A squashed baseline lists the versions it replaces in
    ``squashed_versions``; on a database where none of them ran, the
    baseline runs instead of them.

    ``can_run_in_parallel``, ``depends_on`` and ``conflicts_with`` are
    recorded for future scheduling; migrations always run sequentially in
    version order.
    """

    version: str = ""
    description: str = ""
    is_destructive: bool = False
    requires_backup: bool = False
    is_squashed: bool = False
    squashed_versions: list[str] = []
    can_run_in_parallel: bool = True
    depends_on: list[str] = []
    conflicts_with: list[str] = []

    @abstractmethod
    def up(self, connection: Any) -> None:
        """
        Apply the migration.

        Args:
            connection: Object exposing ``query(sql, params)``
        """
        pass

    @abstractmethod
    def down(self, connection: Any) -> None:
        """
        Reverse the migration.

        Args:
            connection: Object exposing ``query(sql, params)``
        """
        pass

    def dry_run(self, connection: Any) -> list[str]:
        """
        List the statements ``up`` would execute, without executing them.

        Returns:
            SQL statements (empty when the migration cannot preview itself)
        """
        return []

    def validate(self, schema: "DatabaseSchema | None") -> ValidationResult:
        """
        Migration-specific validation against the current schema.

        Default implementation accepts everything.
        """
        return ValidationResult()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} version={self.version}>"
