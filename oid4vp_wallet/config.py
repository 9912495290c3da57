"""Retrieve configuration values."""

import json
from dataclasses import dataclass, field
from os import getenv
from pathlib import Path
from typing import Any, Dict, List, Optional

from acapy_agent.config.base import BaseSettings
from acapy_agent.config.settings import Settings
from cryptography import x509

from .error import CodecValidationError
from .x509 import load_pem_certificates

DEFAULT_SPECS_VERSION = "1.0"


class ConfigError(ValueError):
    """Base class for configuration errors."""

    def __init__(self, var: str, env: str):
        """Initialize a ConfigError."""
        super().__init__(
            f"Invalid {var} specified for OID4VP wallet; use either "
            f"oid4vp_wallet.{var} plugin config value or environment variable {env}"
        )


def _split_types(value) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [name.strip() for name in value if name and name.strip()]


def _issuer_jwk(value) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            value = None
    if not isinstance(value, dict):
        raise ConfigError("issuer_jwk", "OID4VP_WALLET_ISSUER_JWK")
    return value


@dataclass
class Config:
    """Configuration for the OID4VP wallet plugin."""

    credentials_dir: Optional[str] = None
    credential_types: List[str] = field(default_factory=list)
    specs_version: str = DEFAULT_SPECS_VERSION
    issuer_jwk: Optional[Dict[str, Any]] = None
    ca_cert_path: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: BaseSettings) -> "Config":
        """Retrieve configuration from context."""
        assert isinstance(settings, Settings)
        plugin_settings = settings.for_plugin("oid4vp_wallet")
        credentials_dir = plugin_settings.get("credentials_dir") or getenv(
            "OID4VP_WALLET_CREDENTIALS_DIR"
        )
        credential_types = _split_types(
            plugin_settings.get("credential_types")
            or getenv("OID4VP_WALLET_CREDENTIAL_TYPES")
        )
        specs_version = plugin_settings.get("specs_version") or getenv(
            "OID4VP_WALLET_SPECS_VERSION", DEFAULT_SPECS_VERSION
        )
        issuer_jwk = _issuer_jwk(
            plugin_settings.get("issuer_jwk") or getenv("OID4VP_WALLET_ISSUER_JWK")
        )
        ca_cert_path = plugin_settings.get("ca_cert_path") or getenv(
            "OID4VP_WALLET_CA_CERT_PATH"
        )

        if not isinstance(specs_version, str) or not specs_version.strip():
            raise ConfigError("specs_version", "OID4VP_WALLET_SPECS_VERSION")

        return cls(
            credentials_dir,
            credential_types,
            specs_version.strip(),
            issuer_jwk,
            ca_cert_path,
        )

    @property
    def credentials_path(self) -> Path:
        """Return the directory holding credentials for the specs version.

        Raises:
            ConfigError: if no credentials directory is configured
        """
        if not self.credentials_dir:
            raise ConfigError("credentials_dir", "OID4VP_WALLET_CREDENTIALS_DIR")
        return Path(self.credentials_dir) / self.specs_version

    def trust_anchors(self) -> Optional[List[x509.Certificate]]:
        """Load the CA certificates mdoc issuers must chain to, if configured.

        Raises:
            ConfigError: if the certificate file cannot be read or holds no
                PEM certificate
        """
        if not self.ca_cert_path:
            return None
        try:
            return load_pem_certificates(Path(self.ca_cert_path).read_bytes())
        except (OSError, CodecValidationError) as err:
            raise ConfigError(
                "ca_cert_path", "OID4VP_WALLET_CA_CERT_PATH"
            ) from err
