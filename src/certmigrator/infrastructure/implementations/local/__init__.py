"""Local file-based storage backend."""

from certmigrator.infrastructure.implementations.local.storage import (
    FileSystemSettings,
    FileSystemStorage,
)

__all__ = [
    "FileSystemSettings",
    "FileSystemStorage",
]
