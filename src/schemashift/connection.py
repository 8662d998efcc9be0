"""
Database Connection

A thin raw-SQL executor over a SQLAlchemy engine. Migration components
talk to the database exclusively through ``query()``, issuing transaction
control (``START TRANSACTION`` / ``COMMIT`` / ``ROLLBACK``) as plain
statements, so the underlying DBAPI connection runs in autocommit mode
and is pinned for the lifetime of this object.
"""

import logging
import time
from collections.abc import Sequence
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import MigrationConfig

logger = logging.getLogger(__name__)


class DatabaseConnectionError(Exception):
    """Raised when database connection or statement execution fails."""

    pass


class DatabaseConnection:
    """
    Single pinned connection used by the migration subsystem.

    Statements use the driver's ``%s`` positional placeholders. Rows are
    returned as plain dictionaries keyed by column label.
    """

    SLOW_QUERY_THRESHOLD_MS = 1000

    def __init__(self, database_url: str, echo: bool = False) -> None:
        """
        Initialize the connection.

        Args:
            database_url: SQLAlchemy database URL (e.g. ``mysql+pymysql://...``)
            echo: Whether SQLAlchemy should echo statements

        Raises:
            DatabaseConnectionError: If the engine cannot connect
        """
        self.database_url = database_url
        try:
            self._engine: Engine = create_engine(
                database_url,
                isolation_level="AUTOCOMMIT",
                pool_pre_ping=True,
                echo=echo,
            )
            self._connection: Connection | None = self._engine.connect()
        except SQLAlchemyError as e:
            raise DatabaseConnectionError(f"Failed to connect to database: {e}") from e

        logger.debug(f"Database connection opened: {self._engine.url!r}")

    @classmethod
    def from_config(cls, config: MigrationConfig) -> "DatabaseConnection":
        """Create a connection from a MigrationConfig."""
        return cls(config.database_url)

    def _require_connection(self) -> Connection:
        if self._connection is None:
            raise DatabaseConnectionError("Connection is closed")
        return self._connection

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        """
        Execute a statement and return its rows.

        Args:
            sql: SQL statement with ``%s`` placeholders
            params: Positional parameters

        Returns:
            List of rows as dictionaries (empty for statements without results)

        Raises:
            DatabaseConnectionError: If execution fails
        """
        connection = self._require_connection()
        start_time = time.time()

        try:
            if params:
                result = connection.exec_driver_sql(sql, tuple(params))
            else:
                result = connection.exec_driver_sql(sql)
            rows = [dict(row) for row in result.mappings()] if result.returns_rows else []
        except SQLAlchemyError as e:
            logger.debug(f"Statement failed: {sql[:200]}")
            raise DatabaseConnectionError(f"Query failed: {e}") from e

        execution_time = (time.time() - start_time) * 1000
        if execution_time > self.SLOW_QUERY_THRESHOLD_MS:
            logger.warning(f"Slow query ({execution_time:.2f}ms): {sql[:100]}...")
        else:
            logger.debug(f"Executed query ({execution_time:.2f}ms): {sql[:100]}...")

        return rows

    def close(self) -> None:
        """Close the pinned connection and dispose of the engine."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
        self._engine.dispose()
        logger.debug("Database connection closed")

    def __enter__(self) -> "DatabaseConnection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
