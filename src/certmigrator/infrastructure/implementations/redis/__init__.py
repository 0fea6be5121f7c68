"""Redis storage backend (caddy-tlsredis compatible)."""

from certmigrator.infrastructure.implementations.redis.storage import (
    RedisSettings,
    RedisStorage,
)

__all__ = [
    "RedisSettings",
    "RedisStorage",
]
