"""Nested-set engine settings."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_tree_yaml_source

IntegrityCheck = Literal["off", "basic", "full"]
RebuildOrder = Literal["id", "lft"]


class TreeSettings(BaseSettings):
    """Behaviour of the nested-set index and tree facade.

    Environment variables use TREE_ prefix.
    Example: TREE_INTEGRITY_CHECK=full, TREE_LOCK_TABLE=false
    """

    # ──────────────────────────────────────────────────────────────
    # Integrity checks
    # ──────────────────────────────────────────────────────────────

    integrity_check: IntegrityCheck = Field(
        default="basic",
        description=(
            "Check run before each mutation commits. 'basic' rejects inverted or "
            "negative intervals with one COUNT query; 'full' loads every interval "
            "and validates nesting and gap-free numbering (O(n log n))."
        ),
    )

    # ──────────────────────────────────────────────────────────────
    # Write locking
    # ──────────────────────────────────────────────────────────────

    lock_table: bool = Field(
        default=True,
        description="Issue LOCK TABLE inside each mutation on dialects that support it (PostgreSQL).",
    )

    lock_mode: str = Field(
        default="SHARE ROW EXCLUSIVE",
        description="PostgreSQL lock mode. Must conflict with itself so writers serialize.",
    )

    # ──────────────────────────────────────────────────────────────
    # Rebuild and parent references
    # ──────────────────────────────────────────────────────────────

    rebuild_order: RebuildOrder = Field(
        default="id",
        description=(
            "Sibling order used by rebuild_from_parent_pointers: 'id' sorts children by id, "
            "'lft' keeps the current sibling order (id breaks ties)."
        ),
    )

    empty_parent_is_root: bool = Field(
        default=True,
        description="Treat an empty-string parent reference the same as NULL on string columns.",
    )

    @field_validator("lock_mode")
    @classmethod
    def normalize_lock_mode(cls, v: str) -> str:
        """Normalize lock mode to upper case and reject unknown modes."""
        mode = " ".join(v.upper().split())
        allowed = {
            "SHARE UPDATE EXCLUSIVE",
            "SHARE",
            "SHARE ROW EXCLUSIVE",
            "EXCLUSIVE",
            "ACCESS EXCLUSIVE",
        }
        if mode not in allowed:
            msg = f"lock_mode must be one of {sorted(allowed)}"
            raise ValueError(msg)
        return mode

    @property
    def verifies_intervals(self) -> bool:
        """Whether any integrity check runs after mutations."""
        return self.integrity_check != "off"

    model_config = SettingsConfigDict(
        env_prefix="TREE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_tree_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )
