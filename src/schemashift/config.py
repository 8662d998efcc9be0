"""
Migration Configuration

Provides a single, type-safe configuration object for the migration
subsystem. Values are read from environment variables, with a local
``.env`` file loaded first via python-dotenv.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote_plus

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ConfigurationError(Exception):
    """Raised when required configuration is missing or malformed."""

    pass


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


@dataclass
class MigrationConfig:
    """Database and filesystem settings used by the migration tooling."""

    db_host: str = "localhost"
    db_port: int = 3306
    db_user: str = "root"
    db_password: str = ""
    db_name: str | None = None

    migrations_dir: Path = Path("migrations")
    backups_dir: Path = Path("backups")
    entities_dir: Path = Path("entities")

    backup_retention_days: int = 30
    lock_timeout_seconds: int = 3600
    log_level: str = "INFO"

    @classmethod
    def from_environment(cls, env_file: str | Path | None = None) -> "MigrationConfig":
        """
        Create configuration from environment variables.

        Args:
            env_file: Optional path of a dotenv file to load before reading
                the environment. Defaults to ``.env`` in the working directory.

        Returns:
            Populated MigrationConfig instance

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        if env_file is not None:
            load_dotenv(env_file)
        else:
            load_dotenv()

        return cls(
            db_host=os.getenv("DB_HOST", "localhost"),
            db_port=_int_from_env("DB_PORT", 3306),
            db_user=os.getenv("DB_USER", "root"),
            db_password=os.getenv("DB_PASSWORD", ""),
            db_name=os.getenv("DB_NAME") or None,
            migrations_dir=Path(os.getenv("MIGRATIONS_DIR", "migrations")),
            backups_dir=Path(os.getenv("BACKUPS_DIR", "backups")),
            entities_dir=Path(os.getenv("ENTITIES_DIR", "entities")),
            backup_retention_days=_int_from_env("BACKUP_RETENTION_DAYS", 30),
            lock_timeout_seconds=_int_from_env("MIGRATION_LOCK_TIMEOUT", 3600),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def require_database_name(self) -> str:
        """
        Return the configured database name.

        Raises:
            ConfigurationError: If DB_NAME is not set
        """
        if not self.db_name:
            raise ConfigurationError(
                "DB_NAME environment variable is required for this operation"
            )
        return self.db_name

    @property
    def database_url(self) -> str:
        """SQLAlchemy URL for the configured MySQL database."""
        database = self.require_database_name()
        credentials = quote_plus(self.db_user)
        if self.db_password:
            credentials += f":{quote_plus(self.db_password)}"
        return f"mysql+pymysql://{credentials}@{self.db_host}:{self.db_port}/{database}"


def configure_logging(level: str = "INFO") -> None:
    """
    Configure root logging for command line use.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ...)
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ConfigurationError(f"Unknown log level: {level}")

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)

    # SQLAlchemy's engine logger is very chatty at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger.debug(f"Logging configured: level={level.upper()}")
