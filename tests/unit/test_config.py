"""Unit tests for configuration management."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from accountbook.core.config import DEFAULT_SERVER_PORT, SECRET_KEY_ENV, Config

pytestmark = pytest.mark.unit


class TestConfigDefaults:
    """Test default configuration."""

    def test_creates_config_file(self, test_config_dir: Path) -> None:
        Config(config_dir=test_config_dir)
        assert (test_config_dir / "config.json").exists()

    def test_default_values(self, test_config: Config, test_config_dir: Path) -> None:
        assert test_config.get_server_port() == DEFAULT_SERVER_PORT
        assert test_config.get_server_host() == "127.0.0.1"
        assert test_config.get_server_url() == "http://localhost:3001"
        assert test_config.get_request_timeout() == 30
        assert test_config.get_token_expiry_seconds() == 7 * 24 * 60 * 60
        assert test_config.get_database_file() == test_config_dir / "server.db"
        assert test_config.get_local_database_file() == test_config_dir / "local.db"
        assert test_config.get_token() is None

    def test_invalid_json_falls_back_to_defaults(self, test_config_dir: Path) -> None:
        (test_config_dir / "config.json").write_text("{not json", encoding="utf-8")
        config = Config(config_dir=test_config_dir)
        assert config.get_server_port() == DEFAULT_SERVER_PORT

    def test_partial_file_is_merged_with_defaults(self, test_config_dir: Path) -> None:
        (test_config_dir / "config.json").write_text(
            json.dumps({"server": {"port": 4000}}), encoding="utf-8"
        )
        config = Config(config_dir=test_config_dir)
        assert config.get_server_port() == 4000
        assert config.get_server_host() == "127.0.0.1"


class TestConfigPersistence:
    """Test values written through the config API."""

    def test_credentials_round_trip(self, test_config_dir: Path) -> None:
        config = Config(config_dir=test_config_dir)
        config.set_credentials("alice", "token-123")

        reloaded = Config(config_dir=test_config_dir)
        assert reloaded.get_username() == "alice"
        assert reloaded.get_token() == "token-123"

        reloaded.clear_credentials()
        assert Config(config_dir=test_config_dir).get_token() is None

    def test_server_url_trailing_slash_is_stripped(self, test_config: Config) -> None:
        test_config.set_server_url("http://sync.example.com:3001/")
        assert test_config.get_server_url() == "http://sync.example.com:3001"


class TestSecretKey:
    """Test the token signing key."""

    def test_generated_once_and_persisted(self, test_config_dir: Path) -> None:
        key = Config(config_dir=test_config_dir).get_secret_key()
        assert key
        assert Config(config_dir=test_config_dir).get_secret_key() == key

    def test_environment_overrides(
        self, test_config: Config, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(SECRET_KEY_ENV, "from-env")
        assert test_config.get_secret_key() == "from-env"
