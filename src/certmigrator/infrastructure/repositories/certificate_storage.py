"""
Abstract interface for certificate storage backends.

A backend is a key-value store for TLS material (certificates, private
keys, ACME account data, OCSP staples). Keys are slash-separated paths
such as "certificates/acme-v02/example.com/example.com.crt".

Besides the mandatory operations on CertificateStorage, a backend may
implement any of the optional capabilities below. The factory probes
for them with isinstance() and runs them in this order:
    configure -> provision -> validate
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Protocol, runtime_checkable

from loguru import logger

from certmigrator.models.config import BackendSettings, ProvisionConfig


@dataclass
class KeyInfo:
    """
    Metadata about a stored key.

    Attributes:
        key: The key this information describes
        modified: Last modification time, if known
        size: Size of the stored value in bytes
        is_terminal: True for a value, False for a "directory" prefix
    """

    key: str
    modified: datetime | None = None
    size: int = 0
    is_terminal: bool = True


@dataclass
class ProvisionContext:
    """
    Context passed to Provisioner.provision().

    Attributes:
        config: Enclosing configuration (empty by default)
    """

    config: ProvisionConfig = field(default_factory=ProvisionConfig)

    def logger(self, module: str):
        """Get a logger bound to the given backend module name."""
        return logger.bind(module=module)


class CertificateStorage(ABC):
    """
    Abstract interface for certificate storage operations.

    Implementations must provide:
    - Store/load/delete of opaque byte values
    - Existence checks and metadata lookup
    - Prefix listing (recursive or one level)
    - Advisory locking for concurrent certificate issuers
    """

    @abstractmethod
    def store(self, key: str, value: bytes) -> None:
        """
        Store a value, overwriting any existing one.

        Args:
            key: Storage key
            value: Raw bytes to store

        Raises:
            StorageIOError: If the backend write fails
        """
        pass

    @abstractmethod
    def load(self, key: str) -> bytes:
        """
        Load a value.

        Args:
            key: Storage key

        Returns:
            The stored bytes

        Raises:
            KeyNotFoundError: If the key does not exist
            StorageIOError: If the backend read fails
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """
        Delete a key. Deleting a missing key is not an error.

        Args:
            key: Storage key
        """
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        """
        Check if a key exists.

        Args:
            key: Storage key

        Returns:
            True if the key exists, False otherwise
        """
        pass

    @abstractmethod
    def list(self, prefix: str, recursive: bool) -> list[str]:
        """
        List keys under a prefix.

        Args:
            prefix: Key prefix ("" lists everything)
            recursive: If True, return every terminal key below the prefix.
                       Otherwise return only the direct children of the
                       prefix (values and "directories").

        Returns:
            Matching keys, in no guaranteed order

        Raises:
            StorageIOError: If the backend listing fails
        """
        pass

    @abstractmethod
    def stat(self, key: str) -> KeyInfo:
        """
        Get metadata about a key.

        Args:
            key: Storage key

        Returns:
            KeyInfo for the key

        Raises:
            KeyNotFoundError: If the key does not exist
        """
        pass

    @abstractmethod
    def lock(self, key: str) -> None:
        """
        Acquire an advisory lock on a key, blocking until it is free.

        Raises:
            LockError: If the lock cannot be acquired in time
        """
        pass

    @abstractmethod
    def unlock(self, key: str) -> None:
        """
        Release a lock previously acquired with lock().

        Raises:
            LockError: If this instance does not hold the lock
        """
        pass

    def close(self) -> None:
        """Release backend resources (connections, clients)."""
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class SettingsStorage(CertificateStorage):
    """
    Base class for backends configured through a pydantic settings model.

    Subclasses set settings_model; a fresh instance starts from the model's
    defaults and configure() overlays the decoded "storage" object on top.
    """

    settings_model: ClassVar[type[BackendSettings]] = BackendSettings

    def __init__(self) -> None:
        self.settings = self.settings_model()

    def configure(self, config: Mapping[str, Any]) -> None:
        """
        Overlay configuration values onto the current settings.

        Args:
            config: Decoded configuration object

        Raises:
            pydantic.ValidationError: If a value has the wrong type
        """
        merged = {**self.settings.model_dump(), **dict(config)}
        self.settings = self.settings_model.model_validate(merged)


@runtime_checkable
class Configurable(Protocol):
    """Backend that accepts a decoded configuration object."""

    def configure(self, config: Mapping[str, Any]) -> None: ...


@runtime_checkable
class Provisioner(Protocol):
    """Backend with a setup step (open clients, apply defaults)."""

    def provision(self, context: ProvisionContext) -> None: ...


@runtime_checkable
class Validator(Protocol):
    """Backend that checks its configuration after provisioning."""

    def validate(self) -> None: ...
