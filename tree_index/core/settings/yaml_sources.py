"""Custom YAML config source with conf.d directory support.

Extends pydantic-settings YamlConfigSettingsSource to support:
- Main YAML file (e.g., conf/tree.yaml)
- conf.d directory merging (e.g., conf/tree.d/*.yaml)
- Alphabetical file ordering in conf.d

Environment variables to override config directories:
    TREE_CONFIG_DIR, DB_CONFIG_DIR, LOGGING_CONFIG_DIR
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic_settings import YamlConfigSettingsSource

if TYPE_CHECKING:
    from pydantic_settings import BaseSettings


class ConfDYamlConfigSettingsSource(YamlConfigSettingsSource):
    """YAML settings source with conf.d directory support.

    Supports the standard Linux conf.d pattern:
    - conf/tree.yaml        (base configuration)
    - conf/tree.d/*.yaml    (override files, merged alphabetically)

    Example:
        class TreeSettings(BaseSettings):
            @classmethod
            def settings_customise_sources(cls, settings_cls, ...):
                return (
                    init_settings,
                    create_tree_yaml_source(settings_cls),
                    env_settings,
                    dotenv_settings,
                    file_secret_settings,
                )
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file: str = "tree.yaml",
        confd_dir: str | None = "tree.d",
        config_dir_env: str = "CONFIG_DIR",
        base_dir: str = "conf",
        yaml_file_encoding: str | None = "utf-8",
    ) -> None:
        """Initialize the conf.d YAML source.

        Args:
            settings_cls: The settings class being configured.
            yaml_file: Main YAML file name (e.g., "tree.yaml").
            confd_dir: conf.d subdirectory name (e.g., "tree.d"), or None to disable.
            config_dir_env: Environment variable to override base directory.
            base_dir: Default base directory for config files.
            yaml_file_encoding: File encoding for YAML files.
        """
        config_base = Path(os.getenv(config_dir_env, base_dir))

        yaml_files: list[Path] = []

        main_file = config_base / yaml_file
        if main_file.exists():
            yaml_files.append(main_file)

        # conf.d files load after the main file, sorted for deterministic order
        if confd_dir:
            confd_path = config_base / confd_dir
            if confd_path.is_dir():
                yaml_files.extend(sorted(confd_path.glob("*.yaml")))
                yaml_files.extend(sorted(confd_path.glob("*.yml")))

        self._yaml_files = yaml_files

        super().__init__(
            settings_cls=settings_cls,
            yaml_file=yaml_files if yaml_files else None,
            yaml_file_encoding=yaml_file_encoding,
        )

    def __repr__(self) -> str:
        """Return human-readable summary of configured YAML files."""
        files_str = ", ".join(str(f) for f in self._yaml_files)
        return f"{self.__class__.__name__}(yaml_files=[{files_str}])"


def create_tree_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for TreeSettings.

    Loads from:
    - conf/tree.yaml (base)
    - conf/tree.d/*.yaml (overrides)

    Override directory with: TREE_CONFIG_DIR=/custom/path
    """
    return ConfDYamlConfigSettingsSource(
        settings_cls,
        yaml_file="tree.yaml",
        confd_dir="tree.d",
        config_dir_env="TREE_CONFIG_DIR",
    )


def create_db_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for DatabaseSettings.

    Loads from conf/db.yaml and conf/db.d/*.yaml.
    Override directory with: DB_CONFIG_DIR=/custom/path
    """
    return ConfDYamlConfigSettingsSource(
        settings_cls,
        yaml_file="db.yaml",
        confd_dir="db.d",
        config_dir_env="DB_CONFIG_DIR",
    )


def create_logging_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for LoggingSettings.

    Loads from conf/logging.yaml and conf/logging.d/*.yaml.
    Override directory with: LOGGING_CONFIG_DIR=/custom/path
    """
    return ConfDYamlConfigSettingsSource(
        settings_cls,
        yaml_file="logging.yaml",
        confd_dir="logging.d",
        config_dir_env="LOGGING_CONFIG_DIR",
    )
