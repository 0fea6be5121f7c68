"""
Configuration models.

These models define the structure of the -config file and the settings
every storage backend decodes its "storage" object into.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MigratorConfigFile(BaseModel):
    """
    Top-level object of the -config JSON file.

    Only the "storage" key is consumed; other keys (for instance the rest
    of a Caddy JSON config) are ignored.

    Example:
        {
            "storage": {
                "host": "redis.internal",
                "port": 6379,
                "key_prefix": "caddytls"
            }
        }
    """

    model_config = ConfigDict(extra="ignore")

    storage: dict[str, Any] = Field(
        description="Backend configuration passed verbatim to the storage"
    )


class BackendSettings(BaseModel):
    """
    Base settings model for storage backends.

    Decoding is strict (no "5" -> 5 coercion) and tolerant of unknown keys.

    Attributes:
        lock_timeout: Seconds to wait for a lock before giving up.
        lock_poll_interval: Seconds between lock acquisition attempts.
    """

    model_config = ConfigDict(strict=True, extra="ignore")

    lock_timeout: float = Field(default=30.0, ge=0)
    lock_poll_interval: float = Field(default=0.5, gt=0)


class ProvisionConfig(BaseModel):
    """
    Enclosing configuration handed to backends during provisioning.

    Intentionally empty: backends get everything they need through their
    own settings and must not rely on ambient configuration.
    """

    model_config = ConfigDict(frozen=True)
