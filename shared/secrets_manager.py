"""
Secrets management for the commerce services.

Configuration is resolved once at process start by walking an ordered list
of providers. Each provider either returns a flat mapping or raises
``ProviderUnavailable``; the first mapping wins. When every provider fails
the service cannot start and ``ConfigurationUnavailableError`` is raised.
"""

import base64
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from shared.errors import ConfigurationUnavailableError
from shared.logging import get_logger

logger = get_logger("shared.secrets")

ENV_PREFIX = "COMMERCE_"


class ProviderUnavailable(Exception):
    """Raised by a provider that cannot supply configuration."""


class SecretsProvider:
    """Base class for configuration providers."""

    name = "base"

    def load(self) -> Dict[str, Any]:
        raise NotImplementedError


class MountedSecretsProvider(SecretsProvider):
    """
    Reads secrets mounted into the container.

    The mount may be a directory where every regular file is one secret
    (file name is the key, stripped content is the value) or a single JSON
    object file.
    """

    name = "mounted"

    def __init__(self, path: Optional[str]):
        self.path = Path(path) if path else None

    def load(self) -> Dict[str, Any]:
        if self.path is None or not self.path.exists():
            raise ProviderUnavailable(f"secrets mount not found: {self.path}")

        if self.path.is_dir():
            values = {
                entry.name.upper(): entry.read_text().strip()
                for entry in sorted(self.path.iterdir())
                if entry.is_file() and not entry.name.startswith(".")
            }
        else:
            try:
                data = json.loads(self.path.read_text())
            except (OSError, json.JSONDecodeError) as e:
                raise ProviderUnavailable(f"unreadable secrets mount: {e}") from e
            if not isinstance(data, dict):
                raise ProviderUnavailable("secrets mount must contain a JSON object")
            values = {str(key).upper(): value for key, value in data.items()}

        if not values:
            raise ProviderUnavailable("secrets mount is empty")
        return values


class EncryptedSecretsFileProvider(SecretsProvider):
    """
    Reads a JSON file whose values are Fernet-encrypted with a key derived
    from the master key.
    """

    name = "encrypted_file"

    def __init__(self, path: Optional[str], master_key: Optional[str]):
        self.path = Path(path) if path else None
        self.master_key = master_key
        self._fernet: Optional[Fernet] = None

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            if not self.master_key:
                raise ProviderUnavailable("master key is required for encrypted secrets")
            self._fernet = _create_fernet(self.master_key)
        return self._fernet

    def encrypt_secret(self, secret: str) -> str:
        """Encrypt a secret."""
        encrypted = self._get_fernet().encrypt(secret.encode())
        return base64.urlsafe_b64encode(encrypted).decode()

    def decrypt_secret(self, encrypted_secret: str) -> str:
        """Decrypt a secret."""
        decoded = base64.urlsafe_b64decode(encrypted_secret.encode())
        return self._get_fernet().decrypt(decoded).decode()

    def write(self, secrets: Dict[str, str]) -> None:
        """Encrypt and write secrets to the file, replacing its content."""
        if self.path is None:
            raise ValueError("secrets file path is not configured")
        payload = {key: self.encrypt_secret(value) for key, value in secrets.items()}
        self.path.write_text(json.dumps(payload, indent=2))
        logger.info("Secrets file written", path=str(self.path), count=len(payload))

    def load(self) -> Dict[str, Any]:
        if self.path is None or not self.path.exists():
            raise ProviderUnavailable(f"secrets file not found: {self.path}")

        try:
            encrypted = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ProviderUnavailable(f"unreadable secrets file: {e}") from e

        values = {}
        for key, value in encrypted.items():
            try:
                values[str(key).upper()] = self.decrypt_secret(value)
            except (InvalidToken, ValueError) as e:
                raise ProviderUnavailable(f"cannot decrypt secret '{key}': {e}") from e
        return values


class EnvironmentProvider(SecretsProvider):
    """Reads ``COMMERCE_*`` environment variables."""

    name = "environment"

    def __init__(self, required: Sequence[str] = (), environ: Optional[Dict[str, str]] = None):
        self.required = [key.upper() for key in required]
        self.environ = environ if environ is not None else os.environ

    def load(self) -> Dict[str, Any]:
        values = {
            key[len(ENV_PREFIX):]: value
            for key, value in self.environ.items()
            if key.startswith(ENV_PREFIX)
        }
        missing = [key for key in self.required if not values.get(key)]
        if missing:
            raise ProviderUnavailable(f"missing environment variables: {missing}")
        return values


class SecretsManager:
    """Resolves configuration by trying providers in order."""

    def __init__(self, providers: Iterable[SecretsProvider]):
        self.providers: List[SecretsProvider] = list(providers)
        self._resolved: Optional[Dict[str, Any]] = None

    def resolve(self) -> Dict[str, Any]:
        """Return the first configuration any provider can supply."""
        if self._resolved is not None:
            return self._resolved

        failures = {}
        for provider in self.providers:
            try:
                values = provider.load()
            except ProviderUnavailable as e:
                logger.warning("Configuration provider unavailable", provider=provider.name, error=str(e))
                failures[provider.name] = str(e)
                continue

            logger.info("Configuration loaded", provider=provider.name, keys=len(values))
            self._resolved = values
            return values

        logger.error("No configuration provider succeeded", failures=failures)
        raise ConfigurationUnavailableError(details={"providers": failures})


def _create_fernet(master_key: str) -> Fernet:
    """Derive a Fernet cipher from the master key."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b'commerce_secrets_salt',
        iterations=100000,
    )
    key = base64.urlsafe_b64encode(kdf.derive(master_key.encode()))
    return Fernet(key)


def build_default_manager(
    mount_path: Optional[str],
    secrets_file: Optional[str],
    master_key: Optional[str],
    env: str = "local",
) -> SecretsManager:
    """Mounted secrets, then the encrypted secrets file, then the environment.

    Outside the local environment the environment provider insists on a
    signing secret so a service never starts with the development default.
    """
    required = () if env == "local" else ("JWT_SECRET",)
    return SecretsManager([
        MountedSecretsProvider(mount_path),
        EncryptedSecretsFileProvider(secrets_file, master_key),
        EnvironmentProvider(required=required),
    ])
