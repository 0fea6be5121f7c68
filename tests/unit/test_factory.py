"""Tests for the storage registry and init_storage."""

import json
from unittest.mock import MagicMock

import pytest

from certmigrator.core.exceptions import (
    BackendNotFoundError,
    ConfigParseError,
    ProvisionError,
    ValidationError,
)
from certmigrator.infrastructure import StorageRegistry, default_registry, init_storage
from certmigrator.infrastructure.factory import decode_config
from certmigrator.infrastructure.repositories import (
    Configurable,
    ProvisionContext,
    Provisioner,
    Validator,
)


def test_default_registry_has_builtin_backends():
    """Test the built-in backends are registered."""
    assert default_registry.names() == ["local", "redis", "s3"]
    assert "redis" in default_registry
    assert "dummy" not in default_registry


def test_register_duplicate_name_fails(registry, dummy_storage_cls):
    """Test a name can only be registered once."""
    with pytest.raises(ValueError, match="already registered"):
        registry.register("dummy", dummy_storage_cls)


def test_register_empty_name_fails(dummy_storage_cls):
    """Test registering an empty name is rejected."""
    with pytest.raises(ValueError):
        StorageRegistry().register("", dummy_storage_cls)


def test_unknown_backend_fails_without_instantiation():
    """Test an unknown name raises BackendNotFoundError and builds nothing."""
    constructor = MagicMock()
    registry = StorageRegistry({"dummy": constructor})

    with pytest.raises(BackendNotFoundError) as exc_info:
        init_storage("dumy", b"", registry=registry)

    assert exc_info.value.name == "dumy"
    assert "dumy" in str(exc_info.value)
    assert "dummy" in str(exc_info.value)
    constructor.assert_not_called()


def test_init_storage_applies_config_and_lifecycle(registry):
    """Test config decoding, then provision and validate once, in order."""
    config = b'{"value": "test json unmarshal"}'

    storage = init_storage("dummy", config, registry=registry)

    assert storage.settings.value == "test json unmarshal"
    assert storage.calls == ["provision", "validate"]


def test_init_storage_config_file_scenario(registry):
    """Test the "storage" object of a config file reaches the backend."""
    config_file = {"storage": {"value": "x"}}

    storage = init_storage(
        "dummy", json.dumps(config_file["storage"]).encode(), registry=registry
    )

    assert storage.settings.value == "x"


def test_init_storage_accepts_mapping(registry):
    """Test an already decoded mapping is accepted."""
    storage = init_storage("dummy", {"value": "from dict", "retries": 3}, registry=registry)

    assert storage.settings.value == "from dict"
    assert storage.settings.retries == 3


def test_init_storage_without_config_keeps_defaults(registry):
    """Test empty config leaves the zero values in place."""
    storage = init_storage("dummy", b"", registry=registry)

    assert storage.settings.value == ""
    assert storage.settings.retries == 0
    assert storage.calls == ["provision", "validate"]


def test_init_storage_each_call_builds_new_instance(registry):
    """Test instances are never shared between calls."""
    first = init_storage("dummy", registry=registry)
    second = init_storage("dummy", registry=registry)

    assert first is not second


def test_unknown_config_fields_are_tolerated(registry):
    """Test keys the backend doesn't know are ignored."""
    storage = init_storage(
        "dummy", b'{"value": "ok", "unrelated": [1, 2]}', registry=registry
    )

    assert storage.settings.value == "ok"
    assert not hasattr(storage.settings, "unrelated")


def test_type_mismatch_fails(registry):
    """Test a wrongly typed value raises ConfigParseError."""
    with pytest.raises(ConfigParseError):
        init_storage("dummy", b'{"retries": "3"}', registry=registry)


def test_malformed_json_fails(registry):
    """Test malformed JSON raises ConfigParseError."""
    with pytest.raises(ConfigParseError):
        init_storage("dummy", b'{"value": ', registry=registry)


def test_non_object_json_fails(registry):
    """Test a JSON array is not a valid configuration."""
    with pytest.raises(ConfigParseError, match="JSON object"):
        init_storage("dummy", b"[1, 2]", registry=registry)


def test_config_error_happens_before_provision(dummy_storage_cls):
    """Test a config error stops the lifecycle before provisioning."""
    instances = []

    def constructor():
        instance = dummy_storage_cls()
        instances.append(instance)
        return instance

    registry = StorageRegistry({"dummy": constructor})

    with pytest.raises(ConfigParseError):
        init_storage("dummy", {"retries": "many"}, registry=registry)

    assert instances[0].calls == []


def test_provision_failure_is_wrapped(dummy_storage_cls):
    """Test provision errors surface as ProvisionError."""

    class FailingProvision(dummy_storage_cls):
        def provision(self, context):
            raise ConnectionError("connection refused")

    registry = StorageRegistry({"failing": FailingProvision})

    with pytest.raises(ProvisionError, match="connection refused") as exc_info:
        init_storage("failing", registry=registry)

    assert isinstance(exc_info.value.__cause__, ConnectionError)


def test_validate_failure_is_wrapped(dummy_storage_cls):
    """Test validate errors surface as ValidationError."""

    class FailingValidate(dummy_storage_cls):
        def validate(self):
            raise ValueError("bucket is required")

    registry = StorageRegistry({"failing": FailingValidate})

    with pytest.raises(ValidationError, match="bucket is required"):
        init_storage("failing", registry=registry)


def test_provision_receives_default_context(dummy_storage_cls):
    """Test provision gets a ProvisionContext with an empty config."""
    received = []

    class Recording(dummy_storage_cls):
        def provision(self, context):
            received.append(context)

    init_storage("rec", registry=StorageRegistry({"rec": Recording}))

    assert len(received) == 1
    assert isinstance(received[0], ProvisionContext)
    assert received[0].config.model_dump() == {}


def test_backend_without_optional_capabilities(log_messages):
    """Test a bare backend is returned as-is and config is ignored."""

    class Bare:
        def store(self, key, value):
            pass

    storage = init_storage("bare", {"value": "x"}, registry=StorageRegistry({"bare": Bare}))

    assert isinstance(storage, Bare)
    assert not isinstance(storage, Configurable)
    assert not isinstance(storage, Provisioner)
    assert not isinstance(storage, Validator)
    assert any("takes no configuration" in message for message in log_messages)


@pytest.mark.parametrize(
    "config, expected",
    [
        (None, {}),
        (b"", {}),
        ("", {}),
        ({}, {}),
        ('{"a": 1}', {"a": 1}),
        (b'{"a": {"b": true}}', {"a": {"b": True}}),
    ],
)
def test_decode_config(config, expected):
    """Test the accepted configuration forms."""
    assert decode_config(config) == expected
