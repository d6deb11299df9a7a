"""
Unit tests for configuration loading and the secrets provider chain.
"""

import json

import pytest

from shared.config import get_config
from shared.errors import ConfigurationUnavailableError
from shared.secrets_manager import (
    EncryptedSecretsFileProvider,
    EnvironmentProvider,
    MountedSecretsProvider,
    ProviderUnavailable,
    SecretsManager,
    build_default_manager,
)


class TestSecretsProviders:
    """Test cases for individual providers."""

    def test_mounted_directory(self, tmp_path):
        (tmp_path / "jwt_secret").write_text("mounted-secret\n")
        (tmp_path / "redis_url").write_text("redis://cache:6379/0")

        values = MountedSecretsProvider(str(tmp_path)).load()

        assert values == {"JWT_SECRET": "mounted-secret", "REDIS_URL": "redis://cache:6379/0"}

    def test_mounted_json_file(self, tmp_path):
        path = tmp_path / "secrets.json"
        path.write_text(json.dumps({"jwt_secret": "json-secret"}))

        assert MountedSecretsProvider(str(path)).load() == {"JWT_SECRET": "json-secret"}

    def test_missing_mount_is_unavailable(self, tmp_path):
        with pytest.raises(ProviderUnavailable):
            MountedSecretsProvider(str(tmp_path / "absent")).load()
        with pytest.raises(ProviderUnavailable):
            MountedSecretsProvider(None).load()

    def test_encrypted_file_round_trip(self, tmp_path):
        path = tmp_path / "secrets.enc.json"
        writer = EncryptedSecretsFileProvider(str(path), "master-key")
        writer.write({"jwt_secret": "encrypted-secret"})

        assert "encrypted-secret" not in path.read_text()
        assert EncryptedSecretsFileProvider(str(path), "master-key").load() == {"JWT_SECRET": "encrypted-secret"}

    def test_encrypted_file_with_wrong_key_is_unavailable(self, tmp_path):
        path = tmp_path / "secrets.enc.json"
        EncryptedSecretsFileProvider(str(path), "master-key").write({"jwt_secret": "encrypted-secret"})

        with pytest.raises(ProviderUnavailable):
            EncryptedSecretsFileProvider(str(path), "other-key").load()

    def test_encrypted_file_requires_master_key(self, tmp_path):
        path = tmp_path / "secrets.enc.json"
        path.write_text("{}")

        with pytest.raises(ProviderUnavailable):
            EncryptedSecretsFileProvider(str(path), None).encrypt_secret("x")

    def test_environment_strips_prefix(self):
        provider = EnvironmentProvider(environ={"COMMERCE_JWT_SECRET": "env-secret", "PATH": "/bin"})

        assert provider.load() == {"JWT_SECRET": "env-secret"}

    def test_environment_required_keys(self):
        with pytest.raises(ProviderUnavailable):
            EnvironmentProvider(required=["jwt_secret"], environ={}).load()


class TestSecretsManager:
    """Test cases for provider chain resolution."""

    class StaticProvider:
        def __init__(self, name, values=None):
            self.name = name
            self.values = values
            self.calls = 0

        def load(self):
            self.calls += 1
            if self.values is None:
                raise ProviderUnavailable(f"{self.name} down")
            return self.values

    def test_first_success_wins(self):
        first = self.StaticProvider("first")
        second = self.StaticProvider("second", {"JWT_SECRET": "from-second"})
        third = self.StaticProvider("third", {"JWT_SECRET": "from-third"})

        manager = SecretsManager([first, second, third])

        assert manager.resolve() == {"JWT_SECRET": "from-second"}
        assert third.calls == 0

    def test_resolution_is_cached(self):
        provider = self.StaticProvider("only", {"A": "1"})
        manager = SecretsManager([provider])

        manager.resolve()
        manager.resolve()

        assert provider.calls == 1

    def test_all_failures_are_fatal(self):
        manager = SecretsManager([self.StaticProvider("a"), self.StaticProvider("b")])

        with pytest.raises(ConfigurationUnavailableError) as exc_info:
            manager.resolve()

        assert exc_info.value.code == "CONFIGURATION_UNAVAILABLE"
        assert set(exc_info.value.details["providers"]) == {"a", "b"}

    def test_default_chain_prefers_mount(self, tmp_path):
        (tmp_path / "jwt_secret").write_text("mounted-secret")

        manager = build_default_manager(str(tmp_path), None, None)

        assert manager.resolve()["JWT_SECRET"] == "mounted-secret"
        assert [p.name for p in manager.providers] == ["mounted", "encrypted_file", "environment"]

    def test_default_chain_requires_secret_outside_local(self, monkeypatch):
        monkeypatch.delenv("COMMERCE_JWT_SECRET", raising=False)

        manager = build_default_manager(None, None, None, env="production")

        with pytest.raises(ConfigurationUnavailableError):
            manager.resolve()


class TestServiceConfig:
    """Test cases for get_config."""

    def test_defaults(self):
        config = get_config("commerce", 3000)

        assert config.service_name == "commerce"
        assert config.port == 3000
        assert config.jwt_algorithm == "HS256"
        assert config.rate_limit_window_seconds == 900
        assert config.rate_limit_max_requests == 100

    def test_overrides_are_matched_case_insensitively(self):
        config = get_config("commerce", 3000, overrides={
            "JWT_SECRET": "resolved-secret",
            "RATE_LIMIT_MAX_REQUESTS": "25",
            "UNRELATED_KEY": "ignored",
        })

        assert config.jwt_secret == "resolved-secret"
        assert config.rate_limit_max_requests == 25
        assert not hasattr(config, "unrelated_key")

    def test_environment_variables_use_prefix(self, monkeypatch):
        monkeypatch.setenv("COMMERCE_JWT_EXPIRES_IN_SECONDS", "120")

        assert get_config("commerce", 3000).jwt_expires_in_seconds == 120
