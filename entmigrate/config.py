"""
Configuration management for entmigrate.

A migration run is configured by one explicit MigrateConfig value with
named toggles. The CLI additionally reads database and logging settings.
Every section can be loaded from environment variables.

Invariants:
    - Defaults are safe: additive-only migration, no id tagging
    - Destructive operations require an explicit toggle
    - Database URLs are never logged with credentials

How to change safely:
    - Add new toggles with defaults that keep existing behavior
    - Keep env var names stable; CI pipelines depend on them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class MigrateConfig:
    """Toggles for one migration run.

    Attributes:
        global_unique_id: Tag every table's identifiers with a per-type block
        drop_column: Permit dropping live columns absent from the schema
        drop_index: Permit dropping live indexes absent from the schema
        verify: Re-inspect after execution and fail on remaining drift
        timeout_seconds: Stop between operations once this much time passed
    """

    global_unique_id: bool = False
    drop_column: bool = False
    drop_index: bool = False
    verify: bool = True
    timeout_seconds: Optional[float] = None

    @classmethod
    def from_env(cls) -> MigrateConfig:
        """Load configuration from environment variables."""
        timeout = os.getenv("ENTMIGRATE_TIMEOUT_SECONDS")
        return cls(
            global_unique_id=_env_bool("ENTMIGRATE_GLOBAL_UNIQUE_ID", False),
            drop_column=_env_bool("ENTMIGRATE_DROP_COLUMN", False),
            drop_index=_env_bool("ENTMIGRATE_DROP_INDEX", False),
            verify=_env_bool("ENTMIGRATE_VERIFY", True),
            timeout_seconds=float(timeout) if timeout else None,
        )


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection settings.

    Attributes:
        url: SQLAlchemy database URL (sqlite, mysql+pymysql, postgresql)
        echo: Log every SQL statement through SQLAlchemy
    """

    url: str = "sqlite:///entmigrate.db"
    echo: bool = False

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("ENTMIGRATE_DATABASE_URL", "sqlite:///entmigrate.db"),
            echo=_env_bool("ENTMIGRATE_ECHO_SQL", False),
        )

    @property
    def safe_url(self) -> str:
        """URL with the password masked, for log messages."""
        scheme, sep, rest = self.url.partition("://")
        if not sep or "@" not in rest:
            return self.url
        credentials, _, host = rest.rpartition("@")
        user = credentials.split(":", 1)[0]
        return f"{scheme}://{user}:***@{host}"


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class ToolConfig:
    """Complete configuration of the command line tool.

    Attributes:
        database: Connection settings
        migrate: Migration toggles
        observability: Logging settings
    """

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    migrate: MigrateConfig = field(default_factory=MigrateConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ToolConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            database=DatabaseConfig.from_env(),
            migrate=MigrateConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.database.url:
            raise ValueError("ENTMIGRATE_DATABASE_URL is required")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )
        timeout = self.migrate.timeout_seconds
        if timeout is not None and timeout <= 0:
            raise ValueError(f"ENTMIGRATE_TIMEOUT_SECONDS must be positive, got {timeout}")
