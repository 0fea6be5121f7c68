"""Global pytest configuration and fixtures for all tests."""

import os
import shutil
import tempfile
from pathlib import Path

import pytest
from loguru import logger

from certmigrator.core.exceptions import KeyNotFoundError, LockError
from certmigrator.core.trace_context import run_id_context
from certmigrator.infrastructure import StorageRegistry
from certmigrator.infrastructure.repositories import (
    KeyInfo,
    ProvisionContext,
    SettingsStorage,
)
from certmigrator.models.config import BackendSettings


@pytest.fixture(scope="session", autouse=True)
def set_test_env_vars():
    """
    Set environment variables for testing.

    Keeps a developer's MIGRATOR_* environment from leaking into tests.
    """
    original_env = {}

    test_env_vars = {
        "MIGRATOR_LOG_LEVEL": "DEBUG",
        "MIGRATOR_LOG_COLORIZE": "false",
        "MIGRATOR_CONFIG_FILE": "",
    }

    for key, value in test_env_vars.items():
        original_env[key] = os.environ.get(key)
        os.environ[key] = value

    yield

    for key, original_value in original_env.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


@pytest.fixture(autouse=True)
def isolate_run_id():
    """Keep a run id bound by one test from leaking into the next."""
    token = run_id_context.set(None)
    yield
    run_id_context.reset(token)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    # Cleanup
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def log_messages():
    """Capture loguru messages emitted during a test."""
    messages = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]))
    yield messages
    logger.remove(handler_id)


class DummySettings(BackendSettings):
    """Settings for DummyStorage."""

    value: str = ""
    retries: int = 0


class DummyStorage(SettingsStorage):
    """In-memory storage recording its lifecycle calls."""

    settings_model = DummySettings

    def __init__(self, stored: dict[str, bytes] | None = None):
        super().__init__()
        self.stored = dict(stored or {})
        self.calls: list[str] = []
        self.held: set[str] = set()
        self.closed = False

    def provision(self, context: ProvisionContext) -> None:
        self.calls.append("provision")

    def validate(self) -> None:
        self.calls.append("validate")

    def close(self) -> None:
        self.closed = True

    def store(self, key: str, value: bytes) -> None:
        self.stored[key] = value

    def load(self, key: str) -> bytes:
        try:
            return self.stored[key]
        except KeyError:
            raise KeyNotFoundError(key) from None

    def delete(self, key: str) -> None:
        self.stored.pop(key, None)

    def exists(self, key: str) -> bool:
        return key in self.stored

    def stat(self, key: str) -> KeyInfo:
        if key not in self.stored:
            raise KeyNotFoundError(key)
        return KeyInfo(key=key, size=len(self.stored[key]))

    def lock(self, key: str) -> None:
        if key in self.held:
            raise LockError(f"{key} already locked")
        self.held.add(key)

    def unlock(self, key: str) -> None:
        self.held.discard(key)

    def list(self, prefix: str, recursive: bool) -> list[str]:
        return [key for key in self.stored if key.startswith(prefix)]


@pytest.fixture
def dummy_storage_cls():
    """The DummyStorage class, for tests that build their own registry."""
    return DummyStorage


@pytest.fixture
def dummy_storage():
    """A fresh, unconfigured DummyStorage."""
    return DummyStorage()


@pytest.fixture
def registry():
    """A test-owned registry with a "dummy" backend."""
    return StorageRegistry({"dummy": DummyStorage})
