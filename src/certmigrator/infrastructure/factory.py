"""
Storage registry and factory.

Resolves a backend name to a ready-to-use CertificateStorage:

    construct -> configure -> provision -> validate

Built-in backends:
- local: File-based storage (same layout as Caddy's file storage)
- redis: Redis key-value store (caddy-tlsredis compatible)
- s3: AWS S3 or any S3-compatible object store

Usage:
    from certmigrator.infrastructure import init_storage

    storage = init_storage("redis", b'{"host": "10.0.0.5"}')
    storage.store("certificates/example.com.crt", pem_bytes)

Tests register their own backends on a separate registry:

    registry = StorageRegistry()
    registry.register("dummy", DummyStorage)
    storage = init_storage("dummy", registry=registry)
"""

import json
from collections.abc import Callable, Iterator, Mapping
from typing import Any

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from certmigrator.core.exceptions import (
    BackendNotFoundError,
    ConfigParseError,
    ProvisionError,
    ValidationError,
)
from certmigrator.infrastructure.repositories import (
    CertificateStorage,
    Configurable,
    ProvisionContext,
    Provisioner,
    Validator,
)

StorageConstructor = Callable[[], CertificateStorage]
StorageConfig = bytes | str | Mapping[str, Any] | None


class StorageRegistry:
    """
    Name -> constructor mapping for storage backends.

    Entries are added once, at startup or in test setup, and never replaced.
    """

    def __init__(self, entries: Mapping[str, StorageConstructor] | None = None):
        self._entries: dict[str, StorageConstructor] = {}
        for name, constructor in (entries or {}).items():
            self.register(name, constructor)

    def register(self, name: str, constructor: StorageConstructor) -> None:
        """
        Register a backend constructor.

        Args:
            name: Backend name used on the command line
            constructor: Zero-argument callable returning a new backend

        Raises:
            ValueError: If the name is empty or already registered
        """
        if not name:
            raise ValueError("Storage backend name must not be empty")
        if name in self._entries:
            raise ValueError(f"Storage backend '{name}' is already registered")
        self._entries[name] = constructor

    def get(self, name: str) -> StorageConstructor:
        """
        Get the constructor registered under a name.

        Raises:
            BackendNotFoundError: If no backend has that name
        """
        try:
            return self._entries[name]
        except KeyError:
            raise BackendNotFoundError(name, self.names()) from None

    def names(self) -> list[str]:
        """Registered backend names, sorted."""
        return sorted(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._entries)


def _local_storage() -> CertificateStorage:
    from certmigrator.infrastructure.implementations.local import (
        FileSystemStorage,
    )

    return FileSystemStorage()


def _redis_storage() -> CertificateStorage:
    from certmigrator.infrastructure.implementations.redis import RedisStorage

    return RedisStorage()


def _s3_storage() -> CertificateStorage:
    from certmigrator.infrastructure.implementations.aws import S3Storage

    return S3Storage()


default_registry = StorageRegistry(
    {
        "local": _local_storage,
        "redis": _redis_storage,
        "s3": _s3_storage,
    }
)


def decode_config(config: StorageConfig) -> dict[str, Any]:
    """
    Decode backend configuration into a mapping.

    Args:
        config: JSON object as bytes/str, an already decoded mapping, or None

    Returns:
        The configuration as a dict (empty when no configuration was given)

    Raises:
        ConfigParseError: If the JSON is malformed or not an object
    """
    if not config:
        return {}

    if isinstance(config, Mapping):
        return dict(config)

    try:
        decoded = json.loads(config)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigParseError(f"Couldn't decode storage config: {e}") from e

    if not isinstance(decoded, dict):
        raise ConfigParseError(
            f"Storage config must be a JSON object, got {type(decoded).__name__}"
        )

    return decoded


def init_storage(
    name: str,
    config: StorageConfig = None,
    registry: StorageRegistry | None = None,
) -> CertificateStorage:
    """
    Create and fully initialize a storage backend.

    Args:
        name: Registered backend name
        config: Backend configuration (JSON object bytes/str or mapping)
        registry: Registry to resolve the name in (default_registry if None)

    Returns:
        Configured, provisioned and validated backend

    Raises:
        BackendNotFoundError: If the name is not registered
        ConfigParseError: If the configuration cannot be decoded
        ProvisionError: If the backend fails to provision
        ValidationError: If the backend rejects its configuration
    """
    registry = registry if registry is not None else default_registry

    constructor = registry.get(name)
    storage = constructor()

    values = decode_config(config)
    if values:
        if isinstance(storage, Configurable):
            try:
                storage.configure(values)
            except (PydanticValidationError, TypeError, ValueError) as e:
                raise ConfigParseError(
                    f"Couldn't apply config to storage '{name}': {e}"
                ) from e
        else:
            logger.warning(
                f"Storage '{name}' takes no configuration, ignoring "
                f"{len(values)} key(s)"
            )

    if isinstance(storage, Provisioner):
        try:
            storage.provision(ProvisionContext())
        except Exception as e:
            raise ProvisionError(f"Error during provision of '{name}': {e}") from e

    if isinstance(storage, Validator):
        try:
            storage.validate()
        except Exception as e:
            raise ValidationError(f"Error during validate of '{name}': {e}") from e

    logger.debug(f"Initialized storage '{name}': {storage!r}")

    return storage
