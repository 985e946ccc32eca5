"""Tests for configuration loading and logging setup."""

from __future__ import annotations

import logging
from pathlib import Path
from textwrap import dedent

import pytest
import structlog

from entitykit import EntityKitConfig, SqliteExecutor, configure_logging


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write an entitykit.ini with every option set."""
    path = tmp_path / "entitykit.ini"
    path.write_text(
        dedent("""
            [entitykit]
            database_url = sqlite:///app.db
            echo = true
            log_level = debug
            log_format = json
            pool_name = primary
        """)
    )
    return path


@pytest.fixture
def restore_logging():
    """Undo configure_logging() after the test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


class TestIniConfig:
    def test_defaults(self) -> None:
        config = EntityKitConfig()
        assert config.database_url == "sqlite::memory:"
        assert config.echo is False
        assert config.log_level == "INFO"
        assert config.log_format == "console"

    def test_unknown_keys_are_ignored(self, config_file: Path) -> None:
        config = EntityKitConfig.from_ini(config_file)
        assert not hasattr(config, "pool_name")

    def test_from_ini(self, config_file: Path) -> None:
        config = EntityKitConfig.from_ini(config_file)
        assert config.database_url == "sqlite:///app.db"
        assert config.echo is True
        assert config.log_level == "DEBUG"
        assert config.log_format == "json"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            EntityKitConfig.from_ini(tmp_path / "nope.ini")

    def test_missing_section(self, tmp_path: Path) -> None:
        path = tmp_path / "entitykit.ini"
        path.write_text("[other]\nkey = value\n")
        with pytest.raises(ValueError, match=r"No \[entitykit\] section"):
            EntityKitConfig.from_ini(path)

    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValueError, match="Unknown log_level"):
            EntityKitConfig(log_level="LOUD")

    def test_invalid_log_format(self) -> None:
        with pytest.raises(ValueError, match="Unknown log_format"):
            EntityKitConfig(log_format="xml")

    def test_auto_detect(self, config_file: Path) -> None:
        nested = config_file.parent / "src" / "app"
        nested.mkdir(parents=True)
        config = EntityKitConfig.auto_detect(nested)
        assert config is not None
        assert config.database_url == "sqlite:///app.db"

    def test_auto_detect_not_found(self, tmp_path: Path) -> None:
        assert EntityKitConfig.auto_detect(tmp_path) is None


class TestEnvConfig:
    def test_from_env(self) -> None:
        config = EntityKitConfig.from_env(
            {
                "DATABASE_URL": "sqlite:///env.db",
                "ENTITYKIT_ECHO": "yes",
                "ENTITYKIT_LOG_LEVEL": "warning",
                "ENTITYKIT_LOG_FORMAT": "json",
            }
        )
        assert config.database_url == "sqlite:///env.db"
        assert config.echo is True
        assert config.log_level == "WARNING"
        assert config.log_format == "json"

    def test_from_env_defaults(self) -> None:
        assert EntityKitConfig.from_env({}) == EntityKitConfig()

    def test_from_process_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        monkeypatch.setenv("ENTITYKIT_ECHO", "0")
        config = EntityKitConfig.from_env()
        assert config.database_url == "sqlite://"
        assert config.echo is False


class TestApply:
    def test_create_engine(self) -> None:
        engine = EntityKitConfig(echo=True).create_engine()
        assert isinstance(engine, SqliteExecutor)
        assert engine.echo is True
        engine.close()

    def test_configure_logging_json(self, capsys, restore_logging) -> None:
        EntityKitConfig(log_level="DEBUG", log_format="json").configure_logging()
        structlog.get_logger("entitykit.test").debug("engine_ready", database=":memory:")
        out = capsys.readouterr().out
        assert '"event": "engine_ready"' in out
        assert '"database": ":memory:"' in out
        assert '"level": "debug"' in out

    def test_configure_logging_level(self, capsys, restore_logging) -> None:
        configure_logging("WARNING")
        log = structlog.get_logger("entitykit.test")
        log.info("hidden_event")
        log.warning("shown_event")
        out = capsys.readouterr().out
        assert "hidden_event" not in out
        assert "shown_event" in out
