"""entitykit configuration parsing."""

from __future__ import annotations

import configparser
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from entitykit.executor import SqliteExecutor, create_engine
from entitykit.logging import LOG_FORMATS, LOG_LEVELS, configure_logging

CONFIG_FILENAME = "entitykit.ini"
SECTION = "entitykit"


@dataclass
class EntityKitConfig:
    """Engine and logging settings.

    Example entitykit.ini:
        [entitykit]
        database_url = sqlite:///app.db
        echo = true
        log_level = DEBUG
        log_format = json
    """

    database_url: str = "sqlite::memory:"
    """Database URL passed to create_engine()."""

    echo: bool = False
    """Whether the engine logs every statement."""

    log_level: str = "INFO"
    """Level for configure_logging()."""

    log_format: str = "console"
    """Renderer for configure_logging(): 'console' or 'json'."""

    def __post_init__(self) -> None:
        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"Unknown log_level: {self.log_level}")
        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"Unknown log_format: {self.log_format}")

    @classmethod
    def from_ini(cls, path: Path | str) -> EntityKitConfig:
        """Load configuration from an entitykit.ini file.

        Args:
            path: Path to the ini file

        Returns:
            Parsed EntityKitConfig

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If the [entitykit] section is missing or a value is invalid
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        config = configparser.ConfigParser()
        config.read(path)

        if SECTION not in config:
            raise ValueError(f"No [{SECTION}] section in {path}")

        section = config[SECTION]

        return cls(
            database_url=section.get("database_url", "sqlite::memory:"),
            echo=section.getboolean("echo", False),
            log_level=section.get("log_level", "INFO"),
            log_format=section.get("log_format", "console"),
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EntityKitConfig:
        """Load configuration from environment variables.

        Reads DATABASE_URL, ENTITYKIT_ECHO, ENTITYKIT_LOG_LEVEL and
        ENTITYKIT_LOG_FORMAT; unset variables keep their defaults.
        """
        environ = os.environ if environ is None else environ
        return cls(
            database_url=environ.get("DATABASE_URL", "sqlite::memory:"),
            echo=environ.get("ENTITYKIT_ECHO", "").lower() in ("1", "true", "yes", "on"),
            log_level=environ.get("ENTITYKIT_LOG_LEVEL", "INFO"),
            log_format=environ.get("ENTITYKIT_LOG_FORMAT", "console"),
        )

    @classmethod
    def auto_detect(cls, start_path: Path | str | None = None) -> EntityKitConfig | None:
        """Find entitykit.ini by searching up from start_path.

        Args:
            start_path: Directory to start searching from (default: cwd)

        Returns:
            EntityKitConfig if found, None otherwise
        """
        start_path = Path.cwd() if start_path is None else Path(start_path)

        current = start_path
        while current != current.parent:
            ini_path = current / CONFIG_FILENAME
            if ini_path.exists():
                return cls.from_ini(ini_path)
            current = current.parent

        return None

    def create_engine(self) -> SqliteExecutor:
        """Create the executor described by this configuration."""
        return create_engine(self.database_url, echo=self.echo)

    def configure_logging(self) -> None:
        """Apply the configured log level and format."""
        configure_logging(self.log_level, self.log_format)
