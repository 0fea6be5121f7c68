"""AWS S3 storage backend."""

from certmigrator.infrastructure.implementations.aws.storage import (
    S3Settings,
    S3Storage,
)

__all__ = [
    "S3Settings",
    "S3Storage",
]
