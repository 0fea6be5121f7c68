"""
Local file-based storage backend.

Stores values in a local directory structure that mirrors the keys:
    {path}/
        certificates/
            acme-v02.api.letsencrypt.org-directory/
                example.com/
                    example.com.crt
    {lock_path}/
        {safe_key}.lock

Keys use the same layout as Caddy's file storage. Lock files live in a
directory next to the root (default "{path}.locks") so that every entry
below the root is a stored key.
"""

import json
import os
import time
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger
from pydantic import Field

from certmigrator.core.exceptions import (
    KeyNotFoundError,
    LockError,
    StorageIOError,
)
from certmigrator.infrastructure.repositories import (
    KeyInfo,
    ProvisionContext,
    SettingsStorage,
)
from certmigrator.models.config import BackendSettings

LOCKS_SUFFIX = ".locks"


class FileSystemSettings(BackendSettings):
    """
    Settings for FileSystemStorage.

    Attributes:
        path: Root directory of the storage
        lock_path: Directory for lock files, outside path
            ("{path}.locks" if empty)
        stale_lock_seconds: Age after which a lock file is considered abandoned
    """

    path: str = Field(default="./.certmigrator/storage")
    lock_path: str = ""
    stale_lock_seconds: float = Field(default=7200.0, gt=0)


class FileSystemStorage(SettingsStorage):
    """File-based storage rooted at settings.path."""

    settings_model = FileSystemSettings

    def __init__(self) -> None:
        super().__init__()
        self.root: Path | None = None
        self.lock_dir: Path | None = None

    def provision(self, context: ProvisionContext) -> None:
        """Resolve the root and lock directories and create the root."""
        self.root = Path(self.settings.path).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

        if self.settings.lock_path:
            self.lock_dir = Path(self.settings.lock_path).expanduser().resolve()
        else:
            self.lock_dir = self.root.parent / f"{self.root.name}{LOCKS_SUFFIX}"

        context.logger("storage.local").info(
            f"Initialized FileSystemStorage at {self.root} (locks in {self.lock_dir})"
        )

    def validate(self) -> None:
        """Check that the root is a writable directory not sharing its locks."""
        root = self._root()
        if not root.is_dir():
            raise ValueError(f"{root} is not a directory")
        if not os.access(root, os.W_OK):
            raise ValueError(f"{root} is not writable")

        lock_dir = self.lock_dir
        if lock_dir == root or root in lock_dir.parents:
            raise ValueError(f"lock_path {lock_dir} must be outside {root}")

    def _root(self) -> Path:
        if self.root is None or self.lock_dir is None:
            raise StorageIOError("FileSystemStorage used before provision()")
        return self.root

    def _file_path(self, key: str) -> Path:
        """
        Get path to the file holding a key.

        Handles nested keys by mapping each segment to a subdirectory.
        """
        root = self._root()
        full_path = (root / key.strip("/")).resolve()
        if full_path != root and root not in full_path.parents:
            raise StorageIOError(f"Key '{key}' would escape storage directory")
        return full_path

    def _lock_path(self, key: str) -> Path:
        self._root()
        safe_name = key.strip("/").replace("/", "_").replace(os.sep, "_")
        return self.lock_dir / f"{safe_name}.lock"

    def store(self, key: str, value: bytes) -> None:
        """Write a value to its file, creating parent directories."""
        file_path = self._file_path(key)

        try:
            file_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            file_path.write_bytes(value)
        except OSError as e:
            raise StorageIOError(f"Failed to store {key}: {e}") from e

        try:
            file_path.chmod(0o600)
        except OSError as e:
            logger.warning(f"Could not set file permissions on {file_path}: {e}")

        logger.debug(f"Stored {key} ({len(value)} bytes)")

    def load(self, key: str) -> bytes:
        """Read a value from its file."""
        file_path = self._file_path(key)

        if not file_path.is_file():
            raise KeyNotFoundError(key)

        try:
            return file_path.read_bytes()
        except OSError as e:
            raise StorageIOError(f"Failed to load {key}: {e}") from e

    def delete(self, key: str) -> None:
        """Delete a value file (or an empty "directory")."""
        file_path = self._file_path(key)

        try:
            if file_path.is_dir():
                file_path.rmdir()
            else:
                file_path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to delete {key}: {e}") from e

        logger.debug(f"Deleted {key}")

    def exists(self, key: str) -> bool:
        """Check if a key exists."""
        return self._file_path(key).exists()

    def stat(self, key: str) -> KeyInfo:
        """Get size and modification time of a key."""
        file_path = self._file_path(key)

        try:
            st = file_path.stat()
        except FileNotFoundError:
            raise KeyNotFoundError(key) from None
        except OSError as e:
            raise StorageIOError(f"Failed to stat {key}: {e}") from e

        return KeyInfo(
            key=key,
            modified=datetime.fromtimestamp(st.st_mtime, UTC),
            size=st.st_size,
            is_terminal=file_path.is_file(),
        )

    def lock(self, key: str) -> None:
        """
        Acquire a lock by exclusively creating a lock file.

        Lock files older than stale_lock_seconds are assumed to belong to a
        crashed process and are removed.
        """
        lock_path = self._lock_path(key)
        lock_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        deadline = time.monotonic() + self.settings.lock_timeout

        while True:
            try:
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
            except FileExistsError:
                self._break_stale_lock(lock_path)
            except OSError as e:
                raise LockError(f"Failed to create lock for {key}: {e}") from e
            else:
                with os.fdopen(fd, "w") as f:
                    json.dump({"created": datetime.now(UTC).isoformat()}, f)
                logger.debug(f"Acquired lock on {key}")
                return

            if time.monotonic() >= deadline:
                raise LockError(f"Timed out waiting for lock on {key}")
            time.sleep(self.settings.lock_poll_interval)

    def _break_stale_lock(self, lock_path: Path) -> None:
        try:
            age = time.time() - lock_path.stat().st_mtime
        except FileNotFoundError:
            return
        if age > self.settings.stale_lock_seconds:
            logger.warning(f"Removing stale lock {lock_path} ({age:.0f}s old)")
            lock_path.unlink(missing_ok=True)

    def unlock(self, key: str) -> None:
        """Release a lock by removing its lock file."""
        try:
            self._lock_path(key).unlink()
        except FileNotFoundError:
            raise LockError(f"Lock on {key} is not held") from None
        except OSError as e:
            raise LockError(f"Failed to release lock on {key}: {e}") from e
        logger.debug(f"Released lock on {key}")

    def list(self, prefix: str, recursive: bool) -> list[str]:
        """List keys below a prefix directory."""
        root = self._root()
        base = self._file_path(prefix) if prefix.strip("/") else root

        if not base.exists():
            return []
        if base.is_file():
            return [prefix]

        keys = []
        try:
            if recursive:
                for dirpath, _dirnames, filenames in os.walk(base):
                    for filename in filenames:
                        keys.append((Path(dirpath) / filename).relative_to(root).as_posix())
            else:
                for entry in base.iterdir():
                    keys.append(entry.relative_to(root).as_posix())
        except OSError as e:
            raise StorageIOError(f"Failed to list '{prefix}': {e}") from e

        return keys

    def __repr__(self) -> str:
        return f"<FileSystemStorage path={self.settings.path}>"
