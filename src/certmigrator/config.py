"""
Application configuration and environment variables.

This module unifies configuration using pydantic-settings.
Variables can come from:
1. .env file
2. System environment variables (have priority)
3. Default values

Naming convention:
- In Python code: snake_case (log_level)
- In .env or ENV vars: MIGRATOR_ prefix + UPPER_CASE (MIGRATOR_LOG_LEVEL)

Backend configuration (the "storage" object of the -config file) is NOT
read from here: each backend decodes it into its own settings model.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Unified migrator configuration.

    Example:
        # In .env or as environment variable:
        MIGRATOR_LOG_LEVEL=DEBUG
        MIGRATOR_CONFIG_FILE=/etc/caddy/migrator.json
    """

    model_config = SettingsConfigDict(
        env_prefix="MIGRATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================================================
    # PROJECT SETTINGS
    # ============================================================================
    project_name: str = Field(default="certmigrator", description="Project name")
    project_version: str = Field(default="1.0.0", description="Project version")

    # ============================================================================
    # LOGGING SETTINGS
    # ============================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_format: str = Field(
        default="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | run_id={extra[run_id]} | {message}",  # noqa: E501
        description="Log format",
    )
    log_colorize: bool = Field(default=True, description="Colorize log output")
    logger_enqueue: bool = Field(
        default=False, description="Enqueue logs using multiprocessing"
    )

    # ============================================================================
    # MIGRATOR SETTINGS
    # ============================================================================
    config_file: str | None = Field(
        default=None,
        description="Default JSON config file used when -config is not given",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get migrator settings (LRU cached).

    This function is cached, so the .env file is only read once.
    To refresh the configuration, clear the cache:
        get_settings.cache_clear()

    Returns:
        Settings: Application configuration instance.
    """
    return Settings()


settings = get_settings()
