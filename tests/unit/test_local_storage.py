"""Tests for the local file-based storage backend."""

import os
import time

import pytest

from certmigrator.core.exceptions import (
    KeyNotFoundError,
    LockError,
    StorageIOError,
    ValidationError,
)
from certmigrator.infrastructure import init_storage
from certmigrator.infrastructure.implementations.local import FileSystemStorage
from certmigrator.services import export_files, import_files


@pytest.fixture
def storage_repo(temp_dir):
    """Create a provisioned local storage instance."""
    return init_storage("local", {"path": str(temp_dir / "storage"), "lock_timeout": 0.2, "lock_poll_interval": 0.05})


def test_init_storage_creates_root(storage_repo, temp_dir):
    """Test provisioning creates the storage directory."""
    assert isinstance(storage_repo, FileSystemStorage)
    assert (temp_dir / "storage").is_dir()
    assert storage_repo.root == (temp_dir / "storage").resolve()


def test_store_and_load(storage_repo):
    """Test storing and loading a value."""
    storage_repo.store("certificates/example.com/example.com.crt", b"CERT")

    assert storage_repo.load("certificates/example.com/example.com.crt") == b"CERT"
    assert (storage_repo.root / "certificates" / "example.com" / "example.com.crt").exists()


def test_store_leading_slash_key(storage_repo):
    """Test keys produced by import (leading slash) stay inside the root."""
    storage_repo.store("/key1", b"AAAA")

    assert (storage_repo.root / "key1").read_bytes() == b"AAAA"
    assert storage_repo.load("/key1") == b"AAAA"


def test_store_sets_private_mode(storage_repo):
    """Test stored files are only readable by the owner."""
    storage_repo.store("site.key", b"KEY")

    assert (storage_repo.root / "site.key").stat().st_mode & 0o777 == 0o600


def test_load_nonexistent(storage_repo):
    """Test loading a missing key."""
    with pytest.raises(KeyNotFoundError):
        storage_repo.load("nonexistent.crt")


def test_exists_and_delete(storage_repo):
    """Test exists() follows store() and delete()."""
    assert storage_repo.exists("a.txt") is False

    storage_repo.store("a.txt", b"content")
    assert storage_repo.exists("a.txt") is True

    storage_repo.delete("a.txt")
    assert storage_repo.exists("a.txt") is False


def test_delete_nonexistent_is_noop(storage_repo):
    """Test deleting a missing key is not an error."""
    storage_repo.delete("nonexistent.txt")


def test_escaping_key_is_rejected(storage_repo):
    """Test keys cannot reach outside the root."""
    with pytest.raises(StorageIOError, match="escape"):
        storage_repo.store("../outside", b"x")


def test_stat(storage_repo):
    """Test stat() reports size, mtime and terminal flag."""
    storage_repo.store("dir/file", b"12345")

    info = storage_repo.stat("dir/file")
    assert info.key == "dir/file"
    assert info.size == 5
    assert info.is_terminal is True
    assert info.modified is not None

    assert storage_repo.stat("dir").is_terminal is False

    with pytest.raises(KeyNotFoundError):
        storage_repo.stat("missing")


def test_list_recursive_and_flat(storage_repo):
    """Test recursive and one-level listings."""
    storage_repo.store("certificates/a/a.crt", b"1")
    storage_repo.store("certificates/b/b.crt", b"2")
    storage_repo.store("top.json", b"3")

    assert sorted(storage_repo.list("", True)) == [
        "certificates/a/a.crt",
        "certificates/b/b.crt",
        "top.json",
    ]
    assert sorted(storage_repo.list("", False)) == ["certificates", "top.json"]
    assert sorted(storage_repo.list("certificates", False)) == [
        "certificates/a",
        "certificates/b",
    ]
    assert storage_repo.list("nothing-here", True) == []


def test_lock_and_unlock(storage_repo):
    """Test a lock blocks a second acquisition until released."""
    storage_repo.lock("certificates/example.com")

    with pytest.raises(LockError, match="Timed out"):
        storage_repo.lock("certificates/example.com")

    storage_repo.unlock("certificates/example.com")
    storage_repo.lock("certificates/example.com")
    storage_repo.unlock("certificates/example.com")


def test_unlock_without_lock_fails(storage_repo):
    """Test releasing a lock that isn't held."""
    with pytest.raises(LockError):
        storage_repo.unlock("never-locked")


def test_stale_lock_is_broken(storage_repo):
    """Test a lock file older than stale_lock_seconds is removed."""
    storage_repo.lock("site")
    lock_path = storage_repo._lock_path("site")
    old = time.time() - storage_repo.settings.stale_lock_seconds - 10
    os.utime(lock_path, (old, old))

    storage_repo.lock("site")

    assert lock_path.exists()


def test_locks_live_outside_root(storage_repo, temp_dir):
    """Test lock files are kept next to the root, not below it."""
    storage_repo.store("cert", b"x")
    storage_repo.lock("cert")

    assert storage_repo._lock_path("cert").parent == (temp_dir / "storage.locks").resolve()
    assert storage_repo.list("", True) == ["cert"]
    assert storage_repo.list("", False) == ["cert"]


def test_locks_key_prefix_is_ordinary_data(storage_repo, temp_dir):
    """Test keys under "locks/" survive a round trip while a lock is held."""
    source = temp_dir / "src"
    (source / "locks").mkdir(parents=True)
    (source / "locks" / "notes.txt").write_bytes(b"NOTES")
    (source / "a.crt").write_bytes(b"CERT")
    storage_repo.lock("a.crt")

    imported = import_files(storage_repo, source)
    exported = export_files(storage_repo, temp_dir / "out")

    assert sorted(k.lstrip("/") for k in imported.keys) == sorted(exported.keys)
    assert (temp_dir / "out" / "locks" / "notes.txt").read_bytes() == b"NOTES"
    assert (temp_dir / "out" / "a.crt").read_bytes() == b"CERT"


def test_lock_path_inside_root_fails_validation(temp_dir):
    """Test lock files can't be configured to mix with stored keys."""
    root = temp_dir / "storage"

    with pytest.raises(ValidationError, match="lock_path"):
        init_storage("local", {"path": str(root), "lock_path": str(root / "locks")})


def test_custom_lock_path(temp_dir):
    """Test lock_path overrides the default lock directory."""
    storage = init_storage(
        "local",
        {"path": str(temp_dir / "storage"), "lock_path": str(temp_dir / "elsewhere")},
    )

    storage.lock("site")

    assert (temp_dir / "elsewhere" / "site.lock").exists()


def test_used_before_provision():
    """Test operations fail clearly without provisioning."""
    with pytest.raises(StorageIOError, match="provision"):
        FileSystemStorage().load("x")


def test_round_trip_through_local_backend(storage_repo, temp_dir):
    """Test import into and export out of the local backend."""
    source = temp_dir / "caddy"
    (source / "certificates" / "example.com").mkdir(parents=True)
    (source / "certificates" / "example.com" / "example.com.crt").write_bytes(b"CERT")
    (source / "acme.json").write_bytes(b"{}")

    import_files(storage_repo, source)
    export_files(storage_repo, temp_dir / "restored")

    restored = temp_dir / "restored"
    assert (restored / "certificates" / "example.com" / "example.com.crt").read_bytes() == b"CERT"
    assert (restored / "acme.json").read_bytes() == b"{}"
