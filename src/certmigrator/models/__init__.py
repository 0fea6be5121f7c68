"""
Models package.

Contains the pydantic models shared by the CLI and the storage backends.
"""

from certmigrator.models.config import (
    BackendSettings,
    MigratorConfigFile,
    ProvisionConfig,
)

__all__ = [
    "BackendSettings",
    "MigratorConfigFile",
    "ProvisionConfig",
]
