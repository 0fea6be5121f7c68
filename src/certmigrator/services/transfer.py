"""
Bulk transfer between a local directory and a storage backend.

- import_files: every regular file below a directory -> storage
- export_files: every key in storage -> files below a directory

Keys are derived from file paths by stripping the source directory, so a
file "<root>/certificates/example.com.crt" is stored under
"/certificates/example.com.crt". Export maps key segments back to
subdirectories, so import followed by export reproduces the tree.

Both directions copy one item at a time and stop at the first error.
There is no atomicity across items and no retry.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from certmigrator.core.exceptions import FilesystemError, StorageIOError
from certmigrator.infrastructure.repositories import CertificateStorage


@dataclass
class TransferSummary:
    """
    Result of a bulk transfer.

    Attributes:
        keys: Keys transferred, in transfer order
        total_bytes: Sum of the transferred payload sizes
        dry_run: True if nothing was written to the destination side
    """

    keys: list[str] = field(default_factory=list)
    total_bytes: int = 0
    dry_run: bool = False

    @property
    def items(self) -> int:
        return len(self.keys)

    def add(self, key: str, size: int) -> None:
        self.keys.append(key)
        self.total_bytes += size


def _walk_files(root: str) -> list[str]:
    """Collect the path of every non-directory entry below root."""

    def on_error(error: OSError) -> None:
        logger.warning(f"Error occurred in {error.filename}: {error}")

    paths = []
    for dirpath, _dirnames, filenames in os.walk(root, onerror=on_error):
        for filename in filenames:
            paths.append(os.path.join(dirpath, filename))
    return paths


def import_files(
    storage: CertificateStorage, root_dir: str | os.PathLike, dry_run: bool = False
) -> TransferSummary:
    """
    Copy every file below root_dir into storage.

    Args:
        storage: Initialized storage backend
        root_dir: Source directory (resolved to an absolute path)
        dry_run: Read files but do not store them

    Returns:
        TransferSummary of the imported keys

    Raises:
        FilesystemError: If root_dir is not a directory or a file can't be read
        StorageIOError: If the backend rejects a store
    """
    root = os.path.abspath(root_dir)
    if not os.path.isdir(root):
        raise FilesystemError(f"Source directory not found: {root}")

    summary = TransferSummary(dry_run=dry_run)
    paths = _walk_files(root)
    logger.info(f"Found {len(paths)} file(s) in {root}")

    for full_path in paths:
        key = full_path[len(root):]
        logger.info(f"Importing {key}...")

        try:
            with open(full_path, "rb") as f:
                content = f.read()
        except OSError as e:
            raise FilesystemError(f"Failed to read {full_path}: {e}") from e

        if not dry_run:
            try:
                storage.store(key, content)
            except StorageIOError:
                raise
            except Exception as e:
                raise StorageIOError(f"Failed to store {key}: {e}") from e

        summary.add(key, len(content))

    return summary


def _destination_path(dest: Path, key: str) -> Path:
    """
    Map a key to a path below dest.

    Raises:
        FilesystemError: If the key is empty, contains NUL or would escape dest
    """
    if "\x00" in key:
        raise FilesystemError(f"Key {key!r} contains a NUL byte")

    segments = [segment for segment in key.replace("\\", "/").split("/") if segment]
    if not segments:
        raise FilesystemError(f"Key '{key}' does not name a file")

    path = Path(os.path.normpath(dest.joinpath(*segments)))
    if dest not in path.parents:
        raise FilesystemError(f"Key '{key}' would escape {dest}")
    return path


def export_files(
    storage: CertificateStorage, dest_dir: str | os.PathLike, dry_run: bool = False
) -> TransferSummary:
    """
    Copy every key in storage to a file below dest_dir.

    Existing files are overwritten. Parent directories are created with
    mode 0o700 and files are written with mode 0o600.

    Args:
        storage: Initialized storage backend
        dest_dir: Destination directory (resolved to an absolute path)
        dry_run: Load values but do not write files

    Returns:
        TransferSummary of the exported keys

    Raises:
        StorageIOError: If listing or loading fails
        FilesystemError: If a directory or file can't be written
    """
    dest = Path(os.path.abspath(dest_dir))
    summary = TransferSummary(dry_run=dry_run)

    try:
        keys = storage.list("", True)
    except StorageIOError:
        raise
    except Exception as e:
        raise StorageIOError(f"Failed to list storage: {e}") from e

    logger.info(f"Found {len(keys)} key(s) in storage")

    for key in keys:
        logger.info(f"Exporting {key}...")

        try:
            value = storage.load(key)
        except StorageIOError:
            raise
        except Exception as e:
            raise StorageIOError(f"Failed to load {key}: {e}") from e

        path = _destination_path(dest, key)

        if not dry_run:
            try:
                path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
                with os.fdopen(fd, "wb") as f:
                    f.write(value)
            except OSError as e:
                logger.error(f"Failed to write {path}: {e}")
                raise FilesystemError(f"Failed to write {path}: {e}") from e

        summary.add(key, len(value))

    return summary
