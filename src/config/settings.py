"""
Application Settings - Pydantic Settings for configuration management.

Supports environment variables and .env file loading.
"""

import re
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import BeforeValidator, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# WordPress core taxonomies registered on every install
DEFAULT_REGISTERED_TAXONOMIES = [
    "category",
    "post_tag",
    "nav_menu",
    "link_category",
    "post_format",
    "wp_theme",
    "wp_template_part_area",
    "wp_pattern_category",
]

_TABLE_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_]*$")


def normalize_to_lowercase(v: str) -> str:
    """Normalize string to lowercase."""
    if isinstance(v, str):
        return v.lower()
    return v


class DatabaseSettings(BaseSettings):
    """Relational store connection settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = Field(
        default="sqlite+aiosqlite:///./taxonomy.db",
        description="SQLAlchemy async database URL",
    )
    table_prefix: str = Field(default="wp_", description="Table name prefix (e.g. wp_)")
    echo: bool = Field(default=False, description="Echo SQL statements")

    @field_validator("table_prefix")
    @classmethod
    def validate_table_prefix(cls, v: str) -> str:
        if not _TABLE_PREFIX_PATTERN.match(v):
            raise ValueError(f"Invalid table prefix: {v!r}")
        return v


class AuditSettings(BaseSettings):
    """Audit engine settings."""

    model_config = SettingsConfigDict(env_prefix="AUDIT_")

    registered_taxonomies: list[str] = Field(
        default_factory=lambda: list(DEFAULT_REGISTERED_TAXONOMIES),
        description="Taxonomy names currently registered by the host",
    )
    live_recount: bool = Field(
        default=True,
        description="Recount relationships per row against the live store "
                    "instead of the loaded snapshot",
    )


class ObservabilitySettings(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="OBSERVABILITY_")

    log_format: Annotated[
        Literal["json", "console"],
        BeforeValidator(normalize_to_lowercase),
    ] = Field(
        default="json", description="Log format (json for production, console for development)"
    )


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application metadata
    app_name: str = Field(default="Taxonomy Repair Tool", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
