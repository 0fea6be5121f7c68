"""
Exception hierarchy for the migrator.

Every error raised by the registry, the backends or the transfer service
derives from MigratorError, so the CLI can report any of them with a
single handler and a non-zero exit status.
"""


class MigratorError(Exception):
    """Base class for all migrator errors."""


class BackendNotFoundError(MigratorError):
    """No backend is registered under the requested name."""

    def __init__(self, name: str, available: list[str] | None = None):
        self.name = name
        self.available = sorted(available or [])
        message = f"storage backend '{name}' not found"
        if self.available:
            message += f" (available: {', '.join(self.available)})"
        super().__init__(message)


class ConfigParseError(MigratorError):
    """Backend configuration could not be decoded into its settings."""


class ConfigFileError(ConfigParseError):
    """The -config file is unreadable, malformed or has no 'storage' key."""


class ProvisionError(MigratorError):
    """A backend failed during provisioning."""


class ValidationError(MigratorError):
    """A backend rejected its configuration during validation."""


class FilesystemError(MigratorError):
    """Reading, writing or walking the local filesystem failed."""


class StorageIOError(MigratorError):
    """A backend load, store, list or delete operation failed."""


class KeyNotFoundError(StorageIOError):
    """The requested key does not exist in the backend."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"key not found: {key}")


class LockError(StorageIOError):
    """A backend lock could not be acquired or released."""
