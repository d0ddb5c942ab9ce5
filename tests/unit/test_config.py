"""Tests for engine configuration loading."""

from pathlib import Path

import pytest

from restful.config import (
    ClientConfig,
    EngineConfig,
    RetryConfig,
    SecurityConfig,
    SecurityType,
    load_config,
)


class TestEngineConfig:
    """Test configuration parsing from mappings, files and the environment."""

    def test_from_dict(self):
        config = EngineConfig.from_dict(
            {
                "client": {"base_url": "https://api.example.com", "timeout": 5},
                "security": {"type": "http_token", "token": "abc"},
                "retry": {"enabled": True, "status_codes": [429, 503]},
                "defaults": {"update_method": "PATCH"},
                "logging": {"level": "DEBUG", "file": "/tmp/restful.log"},
            }
        )

        assert config.client == ClientConfig(base_url="https://api.example.com", timeout=5)
        assert config.security.type == SecurityType.HTTP_TOKEN
        assert config.retry.status_codes == [429, 503]
        assert config.defaults.update_method == "PATCH"
        assert config.logging.file == Path("/tmp/restful.log")

    def test_empty_mapping_uses_defaults(self):
        config = EngineConfig.from_dict({})

        assert config.client is None
        assert config.security == SecurityConfig()
        assert config.retry == RetryConfig()
        assert config.defaults.create_method == "POST"

    def test_unknown_key_is_rejected(self):
        with pytest.raises(ValueError, match="Invalid configuration"):
            EngineConfig.from_dict({"client": {"base_url": "x", "nope": 1}})

    def test_unknown_security_type(self):
        with pytest.raises(ValueError):
            EngineConfig.from_dict({"security": {"type": "kerberos"}})

    def test_file_round_trip(self, tmp_path):
        config = EngineConfig.from_dict(
            {
                "client": {"base_url": "https://api.example.com"},
                "security": {"type": "http_basic", "username": "u", "password": "p"},
                "defaults": {"header": {"X-A": "a"}},
            }
        )
        path = tmp_path / "nested" / "config.yaml"

        config.to_file(path)

        assert EngineConfig.from_file(path) == config

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("client: [unclosed")

        with pytest.raises(ValueError, match="Invalid YAML"):
            EngineConfig.from_file(path)

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="expected dictionary"):
            EngineConfig.from_file(path)


class TestFromEnv:
    def test_token(self, monkeypatch):
        monkeypatch.setenv("RESTFUL_BASE_URL", "https://api.example.com")
        monkeypatch.setenv("RESTFUL_TOKEN", "abc")
        monkeypatch.setenv("RESTFUL_VERIFY_SSL", "false")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        config = EngineConfig.from_env()

        assert config.client.base_url == "https://api.example.com"
        assert config.client.verify_ssl is False
        assert config.security.type == SecurityType.HTTP_TOKEN
        assert config.logging.level == "DEBUG"

    def test_basic_credentials(self, monkeypatch):
        monkeypatch.delenv("RESTFUL_TOKEN", raising=False)
        monkeypatch.setenv("RESTFUL_USERNAME", "u")
        monkeypatch.setenv("RESTFUL_PASSWORD", "p")

        config = EngineConfig.from_env()

        assert config.security.type == SecurityType.HTTP_BASIC
        assert config.security.username == "u"

    def test_incomplete_basic_credentials(self, monkeypatch):
        monkeypatch.delenv("RESTFUL_TOKEN", raising=False)
        monkeypatch.setenv("RESTFUL_USERNAME", "u")
        monkeypatch.delenv("RESTFUL_PASSWORD", raising=False)

        with pytest.raises(ValueError, match="RESTFUL_PASSWORD"):
            EngineConfig.from_env()

    def test_no_base_url(self, monkeypatch):
        for name in ("RESTFUL_BASE_URL", "RESTFUL_TOKEN", "RESTFUL_USERNAME", "RESTFUL_PASSWORD"):
            monkeypatch.delenv(name, raising=False)

        config = EngineConfig.from_env()

        assert config.client is None
        assert config.security.type == SecurityType.NONE


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_file(self, engine_config_file):
        config = load_config(engine_config_file)
        assert config.client.base_url == "https://api.example.com"

    def test_env_fallback(self, monkeypatch):
        monkeypatch.setenv("RESTFUL_BASE_URL", "https://env.example.com")
        assert load_config(None).client.base_url == "https://env.example.com"
