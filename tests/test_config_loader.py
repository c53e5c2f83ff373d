"""Tests for yaquest.config_loader.

Tests cover:
- Loading profiles from YAML
- ${ENV_VAR} substitution (including missing variables)
- Error cases: missing file, invalid YAML, wrong structure, unknown profile
"""

from pathlib import Path

import pytest

from yaquest.config_loader import (
    DEFAULT_PROFILE,
    ConfigError,
    get_profile,
    load_client_config,
)

SAMPLE_CONFIG = """
profiles:
  default:
    base_url: http://localhost:8080
  staging:
    base_url: https://staging.example.com/api
    timeout_ms: 5000
    binary: true
    headers:
      X-Api-Key: ${TEST_YAQUEST_KEY}
    auth:
      username: bob
      password: pw-${TEST_YAQUEST_KEY}
    tls:
      verify_ssl: false
"""


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "client.yaml"
    path.write_text(SAMPLE_CONFIG)
    return path


class TestLoadClientConfig:
    def test_loads_profiles(self, config_file, monkeypatch):
        monkeypatch.setenv("TEST_YAQUEST_KEY", "secret")
        config = load_client_config(config_file)
        assert set(config.profiles) == {"default", "staging"}

        staging = config.profiles["staging"]
        assert staging.base_url == "https://staging.example.com/api"
        assert staging.timeout_ms == 5000
        assert staging.binary is True
        assert staging.headers == {"X-Api-Key": "secret"}
        assert staging.auth.password == "pw-secret"
        assert staging.tls.verify_ssl is False

    def test_missing_env_var(self, config_file, monkeypatch):
        monkeypatch.delenv("TEST_YAQUEST_KEY", raising=False)
        with pytest.raises(ConfigError, match="TEST_YAQUEST_KEY"):
            load_client_config(config_file)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Config file not found"):
            load_client_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("profiles: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_client_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="must be a YAML mapping"):
            load_client_config(path)

    def test_invalid_structure(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("profiles:\n  default:\n    timeout_ms: -1\n")
        with pytest.raises(ConfigError, match="Invalid config structure"):
            load_client_config(path)


class TestGetProfile:
    def test_default_profile(self, config_file, monkeypatch):
        monkeypatch.setenv("TEST_YAQUEST_KEY", "k")
        config = load_client_config(config_file)
        assert get_profile(config).base_url == "http://localhost:8080"
        assert DEFAULT_PROFILE == "default"

    def test_unknown_profile_lists_available(self, config_file, monkeypatch):
        monkeypatch.setenv("TEST_YAQUEST_KEY", "k")
        config = load_client_config(config_file)
        with pytest.raises(ConfigError, match="Available: default, staging"):
            get_profile(config, "prod")
