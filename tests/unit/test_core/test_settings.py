"""Unit tests for modular Pydantic Settings v2."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from tree_index.core.settings.database import DatabaseSettings
from tree_index.core.settings.loader import (
    clear_all_caches,
    get_db_settings,
    get_logging_settings,
    get_tree_settings,
)
from tree_index.core.settings.logs import LoggingSettings
from tree_index.core.settings.tree import TreeSettings


@pytest.mark.unit
class TestTreeSettings:
    """Test suite for TreeSettings."""

    def test_tree_settings_defaults(self, monkeypatch):
        """Test TreeSettings default values without environment overrides."""
        monkeypatch.delenv("TREE_INTEGRITY_CHECK", raising=False)
        settings = TreeSettings()

        assert settings.integrity_check == "basic"
        assert settings.lock_table is True
        assert settings.lock_mode == "SHARE ROW EXCLUSIVE"
        assert settings.rebuild_order == "id"
        assert settings.empty_parent_is_root is True
        assert settings.verifies_intervals is True

    def test_tree_settings_from_env(self):
        """Test TREE_ environment variables (set in conftest)."""
        settings = TreeSettings()

        assert settings.integrity_check == "full"

    def test_tree_settings_frozen(self):
        """Test that TreeSettings instances are frozen (immutable)."""
        settings = TreeSettings()

        with pytest.raises(ValidationError):
            settings.lock_table = False

    def test_lock_mode_normalized(self):
        """Test lock mode is upper-cased and whitespace collapsed."""
        settings = TreeSettings(lock_mode="  access   exclusive ")

        assert settings.lock_mode == "ACCESS EXCLUSIVE"

    def test_lock_mode_rejects_unknown(self):
        """Test lock modes outside PostgreSQL's table locks are rejected."""
        with pytest.raises(ValidationError):
            TreeSettings(lock_mode="ROW SHARE; DROP TABLE categories")

    def test_integrity_check_values(self):
        """Test integrity_check only accepts off/basic/full."""
        assert TreeSettings(integrity_check="off").verifies_intervals is False

        with pytest.raises(ValidationError):
            TreeSettings(integrity_check="paranoid")

    def test_yaml_conf_d_overrides(self, tmp_path, monkeypatch):
        """Test conf.d files override the main YAML file."""
        (tmp_path / "tree.yaml").write_text("rebuild_order: lft\nlock_table: false\n")
        (tmp_path / "tree.d").mkdir()
        (tmp_path / "tree.d" / "10-local.yaml").write_text("lock_table: true\n")
        monkeypatch.setenv("TREE_CONFIG_DIR", str(tmp_path))

        settings = TreeSettings()

        assert settings.rebuild_order == "lft"
        assert settings.lock_table is True

    def test_init_kwargs_beat_yaml(self, tmp_path, monkeypatch):
        """Test init kwargs take precedence over YAML."""
        (tmp_path / "tree.yaml").write_text("rebuild_order: lft\n")
        monkeypatch.setenv("TREE_CONFIG_DIR", str(tmp_path))

        assert TreeSettings(rebuild_order="id").rebuild_order == "id"


@pytest.mark.unit
class TestDatabaseSettings:
    """Test suite for DatabaseSettings."""

    def test_database_settings_from_env(self):
        """Test DB_URL from conftest."""
        settings = DatabaseSettings()

        assert settings.url == "sqlite+aiosqlite:///:memory:"
        assert settings.is_sqlite is True
        assert settings.sqlite_begin_mode == "IMMEDIATE"

    def test_postgres_url_is_not_sqlite(self):
        """Test is_sqlite for other dialects."""
        settings = DatabaseSettings(url="postgresql+psycopg://localhost/tree")

        assert settings.is_sqlite is False

    def test_begin_mode_validation(self):
        """Test only SQLite BEGIN variants are accepted."""
        with pytest.raises(ValidationError):
            DatabaseSettings(sqlite_begin_mode="CONCURRENT")


@pytest.mark.unit
class TestLoggingSettings:
    """Test suite for LoggingSettings."""

    def test_logging_settings_defaults(self, monkeypatch):
        """Test LoggingSettings default values."""
        monkeypatch.delenv("LOG_CONSOLE_ENABLED", raising=False)
        settings = LoggingSettings()

        assert settings.level == "INFO"
        assert settings.json_logs is True
        assert settings.console_enabled is True
        assert settings.file_path is None

    def test_level_normalized(self):
        """Test log levels are upper-cased."""
        settings = LoggingSettings(level="debug")

        assert settings.level == "DEBUG"
        assert settings.to_logging_kwargs()["log_level"] == "DEBUG"

    def test_json_alias(self, monkeypatch):
        """Test LOG_JSON env var maps to json_logs."""
        monkeypatch.setenv("LOG_JSON", "false")

        assert LoggingSettings().json_logs is False

    def test_to_logging_kwargs(self, tmp_path):
        """Test conversion to configure_logging kwargs."""
        settings = LoggingSettings(level="WARNING", file_path=tmp_path / "tree.jsonl")
        kwargs = settings.to_logging_kwargs()

        assert kwargs["log_level"] == "WARNING"
        assert kwargs["json_logs"] is True
        assert kwargs["file_path"] == str(tmp_path / "tree.jsonl")
        assert kwargs["service_name"] == "tree-index"


@pytest.mark.unit
class TestSettingsLoaders:
    """Test suite for cached loaders."""

    def test_loaders_cache_instances(self):
        """Test loaders return the same instance until cleared."""
        assert get_tree_settings() is get_tree_settings()
        assert get_db_settings() is get_db_settings()
        assert get_logging_settings() is get_logging_settings()

    def test_clear_all_caches(self, monkeypatch):
        """Test clearing caches picks up new environment values."""
        first = get_tree_settings()
        monkeypatch.setenv("TREE_REBUILD_ORDER", "lft")
        clear_all_caches()

        second = get_tree_settings()

        assert first is not second
        assert second.rebuild_order == "lft"
