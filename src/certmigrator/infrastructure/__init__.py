"""
Infrastructure layer: storage interface, backend registry and backends.

Supports multiple backends via the registry:
- local: File-based storage
- redis: Redis (caddy-tlsredis layout)
- s3: AWS S3 and S3-compatible stores
"""

from certmigrator.infrastructure.factory import (
    StorageRegistry,
    default_registry,
    init_storage,
)

__all__ = ["StorageRegistry", "default_registry", "init_storage"]
