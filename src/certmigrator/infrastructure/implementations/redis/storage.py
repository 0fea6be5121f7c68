"""
Redis storage backend.

Compatible with the caddy-tlsredis storage module:
- Keys are stored as "{key_prefix}/{key}"
- Values are a JSON envelope {"value": <base64>, "modified": <RFC 3339>}
  prefixed with value_prefix, optionally encrypted with AES-256-GCM
- Locks live under "{lock_prefix}/{key}", outside the key namespace
"""

import base64
import json
import os
import posixpath
from datetime import UTC, datetime

import redis
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import Field

from certmigrator.core.exceptions import (
    KeyNotFoundError,
    LockError,
    StorageIOError,
)
from certmigrator.core.logging import logger
from certmigrator.infrastructure.repositories import (
    KeyInfo,
    ProvisionContext,
    SettingsStorage,
)
from certmigrator.models.config import BackendSettings

# Keys returned per SCAN round trip
SCAN_COUNT = 100
# AES-GCM nonce size in bytes
NONCE_SIZE = 12


class RedisSettings(BackendSettings):
    """
    Settings for RedisStorage.

    Attributes:
        address: "host:port" (takes precedence over host and port)
        host: Redis host
        port: Redis port (number or numeric string)
        db: Redis database index
        username: ACL username (optional)
        password: Redis password (optional)
        timeout: Socket timeout in seconds
        key_prefix: Prefix for every key
        lock_prefix: Prefix for lock entries (kept apart from key_prefix)
        value_prefix: Marker prepended to every stored value
        aes_key: 32-byte key enabling AES-256-GCM encryption of values
        tls_enabled: Connect with TLS
        tls_insecure: Skip server certificate verification
        lock_expiry: Seconds after which a held lock expires on the server
    """

    address: str = ""
    host: str = "127.0.0.1"
    port: int | str = 6379
    db: int = Field(default=0, ge=0)
    username: str = ""
    password: str = ""
    timeout: float = Field(default=5.0, gt=0)
    key_prefix: str = "caddytls"
    lock_prefix: str = "caddytls-locks"
    value_prefix: str = "caddy-storage-redis"
    aes_key: str = ""
    tls_enabled: bool = False
    tls_insecure: bool = True
    lock_expiry: float = Field(default=8 * 3600.0, gt=0)


class RedisStorage(SettingsStorage):
    """Redis implementation of CertificateStorage."""

    settings_model = RedisSettings

    def __init__(self) -> None:
        super().__init__()
        self.client: redis.Redis | None = None
        self._locks: dict[str, redis.lock.Lock] = {}

    def _host_port(self) -> tuple[str, int]:
        host, port = self.settings.host, self.settings.port
        if self.settings.address:
            host, _, address_port = self.settings.address.rpartition(":")
            if not host:
                host, address_port = address_port, str(port)
            port = address_port
        return host.strip("[]"), int(port)

    def provision(self, context: ProvisionContext) -> None:
        """Create the Redis client from settings."""
        host, port = self._host_port()
        kwargs = {
            "host": host,
            "port": port,
            "db": self.settings.db,
            "username": self.settings.username or None,
            "password": self.settings.password or None,
            "socket_timeout": self.settings.timeout,
            "socket_connect_timeout": self.settings.timeout,
        }
        if self.settings.tls_enabled:
            kwargs["ssl"] = True
            kwargs["ssl_cert_reqs"] = "none" if self.settings.tls_insecure else "required"

        self.client = redis.Redis(**kwargs)
        context.logger("storage.redis").info(
            f"Initialized RedisStorage with host={host}, port={port}, "
            f"db={self.settings.db}, key_prefix={self.settings.key_prefix}"
        )

    def validate(self) -> None:
        """Check the AES key, the lock prefix and that the server answers."""
        if self.settings.aes_key and len(self.settings.aes_key.encode()) != 32:
            raise ValueError("aes_key must be exactly 32 bytes long")
        if not self.settings.lock_prefix.strip("/"):
            raise ValueError("lock_prefix must not be empty")
        try:
            self._client().ping()
        except redis.RedisError as e:
            raise ConnectionError(f"Redis ping failed: {e}") from e

    def close(self) -> None:
        """Close the connection pool."""
        if self.client is not None:
            self.client.close()
            self.client = None

    def _client(self) -> redis.Redis:
        if self.client is None:
            raise StorageIOError("RedisStorage used before provision()")
        return self.client

    def _prefix_key(self, key: str) -> str:
        return posixpath.join(self.settings.key_prefix, key.lstrip("/"))

    def _unprefix_key(self, redis_key: bytes | str) -> str:
        if isinstance(redis_key, bytes):
            redis_key = redis_key.decode()
        prefix = self.settings.key_prefix.rstrip("/") + "/"
        return redis_key[len(prefix):] if redis_key.startswith(prefix) else redis_key

    def _lock_name(self, key: str) -> str:
        return posixpath.join(self.settings.lock_prefix.strip("/"), key.lstrip("/"))

    def _is_lock_name(self, redis_key: str) -> bool:
        return redis_key.startswith(self.settings.lock_prefix.strip("/") + "/")

    def _encode(self, value: bytes, modified: datetime) -> bytes:
        """Wrap a value in the storage envelope."""
        payload = json.dumps(
            {
                "value": base64.b64encode(value).decode(),
                "modified": modified.isoformat().replace("+00:00", "Z"),
            }
        ).encode()

        if self.settings.aes_key:
            nonce = os.urandom(NONCE_SIZE)
            aead = AESGCM(self.settings.aes_key.encode())
            payload = nonce + aead.encrypt(nonce, payload, None)

        return self.settings.value_prefix.encode() + payload

    def _decode(self, key: str, raw: bytes) -> tuple[bytes, datetime | None]:
        """Unwrap a stored envelope into (value, modified)."""
        prefix = self.settings.value_prefix.encode()
        if not raw.startswith(prefix):
            raise StorageIOError(f"Value of {key} lacks the '{self.settings.value_prefix}' prefix")
        payload = raw[len(prefix):]

        if self.settings.aes_key:
            nonce, ciphertext = payload[:NONCE_SIZE], payload[NONCE_SIZE:]
            try:
                payload = AESGCM(self.settings.aes_key.encode()).decrypt(
                    nonce, ciphertext, None
                )
            except InvalidTag as e:
                raise StorageIOError(f"Failed to decrypt {key}: wrong aes_key?") from e

        try:
            data = json.loads(payload)
            value = base64.b64decode(data["value"])
        except (ValueError, KeyError, TypeError) as e:
            raise StorageIOError(f"Malformed value for {key}: {e}") from e

        try:
            modified = datetime.fromisoformat(data.get("modified", ""))
        except (TypeError, ValueError):
            modified = None

        return value, modified

    def _load_data(self, key: str) -> tuple[bytes, datetime | None]:
        try:
            raw = self._client().get(self._prefix_key(key))
        except redis.RedisError as e:
            raise StorageIOError(f"Failed to load {key}: {e}") from e
        if raw is None:
            raise KeyNotFoundError(key)
        return self._decode(key, raw)

    def store(self, key: str, value: bytes) -> None:
        """Store a value in its envelope."""
        redis_key = self._prefix_key(key)
        if self._is_lock_name(redis_key):
            raise StorageIOError(
                f"Key {key} would land among lock entries under "
                f"'{self.settings.lock_prefix}'; use a different key_prefix or lock_prefix"
            )

        envelope = self._encode(value, datetime.now(UTC))
        try:
            self._client().set(redis_key, envelope)
        except redis.RedisError as e:
            raise StorageIOError(f"Failed to store {key}: {e}") from e
        logger.debug(f"Stored {key} ({len(value)} bytes) in Redis")

    def load(self, key: str) -> bytes:
        """Load and unwrap a value."""
        value, _ = self._load_data(key)
        return value

    def delete(self, key: str) -> None:
        """Delete a key."""
        try:
            self._client().delete(self._prefix_key(key))
        except redis.RedisError as e:
            raise StorageIOError(f"Failed to delete {key}: {e}") from e
        logger.debug(f"Deleted {key} from Redis")

    def exists(self, key: str) -> bool:
        """Check if a key exists."""
        try:
            return self._client().exists(self._prefix_key(key)) > 0
        except redis.RedisError as e:
            raise StorageIOError(f"Failed to check {key}: {e}") from e

    def stat(self, key: str) -> KeyInfo:
        """Get size and modification time from the stored envelope."""
        value, modified = self._load_data(key)
        return KeyInfo(key=key, modified=modified, size=len(value), is_terminal=True)

    def lock(self, key: str) -> None:
        """Acquire a server-side lock with redis-py's Lock."""
        redis_lock = self._client().lock(
            self._lock_name(key),
            timeout=self.settings.lock_expiry,
            sleep=self.settings.lock_poll_interval,
            blocking_timeout=self.settings.lock_timeout,
        )
        try:
            acquired = redis_lock.acquire()
        except redis.RedisError as e:
            raise LockError(f"Failed to acquire lock on {key}: {e}") from e
        if not acquired:
            raise LockError(f"Timed out waiting for lock on {key}")
        self._locks[key] = redis_lock
        logger.debug(f"Acquired lock on {key}")

    def unlock(self, key: str) -> None:
        """Release a lock held by this instance."""
        redis_lock = self._locks.pop(key, None)
        if redis_lock is None:
            raise LockError(f"Lock on {key} is not held")
        try:
            redis_lock.release()
        except redis.RedisError as e:
            raise LockError(f"Failed to release lock on {key}: {e}") from e
        logger.debug(f"Released lock on {key}")

    def list(self, prefix: str, recursive: bool) -> list[str]:
        """List keys with SCAN, skipping lock entries."""
        base = prefix.strip("/")
        pattern = self._prefix_key(base) + "/*" if base else self._prefix_key("") + "*"

        keys = set()
        try:
            for redis_key in self._client().scan_iter(match=pattern, count=SCAN_COUNT):
                if isinstance(redis_key, bytes):
                    redis_key = redis_key.decode()
                # key_prefix may enclose lock_prefix (e.g. when empty)
                if self._is_lock_name(redis_key):
                    continue
                key = self._unprefix_key(redis_key)
                if recursive:
                    keys.add(key)
                    continue
                rest = key[len(base):].lstrip("/") if base else key
                child = rest.split("/", 1)[0]
                keys.add(f"{base}/{child}" if base else child)
        except redis.RedisError as e:
            raise StorageIOError(f"Failed to list '{prefix}': {e}") from e

        return sorted(keys)

    def __repr__(self) -> str:
        host, port = self._host_port()
        return f"<RedisStorage host={host} port={port} db={self.settings.db}>"
