"""Abstract storage interface and optional backend capabilities."""

from certmigrator.infrastructure.repositories.certificate_storage import (
    CertificateStorage,
    Configurable,
    KeyInfo,
    ProvisionContext,
    Provisioner,
    SettingsStorage,
    Validator,
)

__all__ = [
    "CertificateStorage",
    "Configurable",
    "KeyInfo",
    "ProvisionContext",
    "Provisioner",
    "SettingsStorage",
    "Validator",
]
