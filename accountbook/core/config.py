"""Configuration management for Account Book.

This module handles loading and saving application configuration to/from
a JSON file. The config directory can be customized via CLI argument.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import secrets
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

__all__ = ["Config", "DEFAULT_SERVER_PORT"]

DEFAULT_SERVER_PORT = 3001
DEFAULT_TOKEN_EXPIRY_DAYS = 7
DEFAULT_REQUEST_TIMEOUT = 30
SECRET_KEY_ENV = "ACCOUNTBOOK_SECRET_KEY"


class Config:
    """Manages application configuration stored in JSON format.

    Attributes:
        config_dir: Path to the configuration directory
        config_file: Path to config.json
        config_data: The loaded configuration
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_dir: Custom config directory path. If None, uses ~/.config/accountbook/
        """
        if config_dir is None:
            config_dir = Path.home() / ".config" / "accountbook"
        self.config_dir = Path(config_dir)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file = self.config_dir / "config.json"
        self.config_data = self.load_config()

    def _default_config(self) -> Dict[str, Any]:
        return {
            "database_file": str(self.config_dir / "server.db"),
            "local_database_file": str(self.config_dir / "local.db"),
            "server": {
                "host": "127.0.0.1",
                "port": DEFAULT_SERVER_PORT,
                "secret_key": None,
                "token_expiry_days": DEFAULT_TOKEN_EXPIRY_DAYS,
            },
            "client": {
                "server_url": f"http://localhost:{DEFAULT_SERVER_PORT}",
                "username": None,
                "token": None,
                "request_timeout": DEFAULT_REQUEST_TIMEOUT,
            },
        }

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file, creating it with defaults if missing.

        Missing keys are filled from the defaults. Invalid JSON is logged and
        replaced by the defaults.
        """
        config = self._default_config()
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    loaded = json.load(f)
                if not isinstance(loaded, dict):
                    raise ValueError("top-level value must be an object")
                for key, value in loaded.items():
                    if isinstance(value, dict) and isinstance(config.get(key), dict):
                        config[key].update(value)
                    else:
                        config[key] = value
                return config
            except (OSError, ValueError) as e:
                logger.warning(f"Invalid config file {self.config_file}, using defaults: {e}")
        self.save_config(config)
        return config

    def save_config(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Write configuration to file."""
        if config is not None:
            self.config_data = config
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(self.config_data, f, indent=2)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a top-level configuration value."""
        value = self.config_data.get(key)
        return copy.deepcopy(value) if value is not None else default

    def set(self, key: str, value: Any) -> None:
        """Set a top-level configuration value and save to file."""
        self.config_data[key] = value
        self.save_config()

    def get_config_dir(self) -> Path:
        """Get the configuration directory path."""
        return self.config_dir

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.config_data.get(name)
        if not isinstance(section, dict):
            section = self._default_config()[name]
            self.config_data[name] = section
        return section

    # ===== Server Configuration Methods =====

    def get_database_file(self) -> Path:
        """Get the server database path."""
        return Path(self.config_data["database_file"])

    def get_server_host(self) -> str:
        """Get the host the server binds to."""
        return self._section("server").get("host") or "127.0.0.1"

    def get_server_port(self) -> int:
        """Get the server port."""
        return int(self._section("server").get("port") or DEFAULT_SERVER_PORT)

    def set_server_port(self, port: int) -> None:
        """Set the server port."""
        self._section("server")["port"] = int(port)
        self.save_config()

    def get_secret_key(self) -> str:
        """Get the token signing key.

        The environment variable wins over the config file. A random key is
        generated and saved the first time one is needed.
        """
        env_key = os.environ.get(SECRET_KEY_ENV)
        if env_key:
            return env_key
        server = self._section("server")
        if not server.get("secret_key"):
            server["secret_key"] = secrets.token_hex(32)
            self.save_config()
            logger.info("Generated new token signing key")
        return server["secret_key"]

    def get_token_expiry_seconds(self) -> int:
        """Get the lifetime of issued tokens in seconds."""
        days = self._section("server").get("token_expiry_days") or DEFAULT_TOKEN_EXPIRY_DAYS
        return int(float(days) * 24 * 60 * 60)

    # ===== Client Configuration Methods =====

    def get_local_database_file(self) -> Path:
        """Get the client-side record store path."""
        return Path(self.config_data["local_database_file"])

    def get_server_url(self) -> str:
        """Get the base URL of the sync server (no trailing slash)."""
        url = self._section("client").get("server_url") or f"http://localhost:{DEFAULT_SERVER_PORT}"
        return url.rstrip("/")

    def set_server_url(self, url: str) -> None:
        """Set the sync server URL."""
        self._section("client")["server_url"] = url.rstrip("/")
        self.save_config()

    def get_request_timeout(self) -> float:
        """Get the client request timeout in seconds."""
        return float(self._section("client").get("request_timeout") or DEFAULT_REQUEST_TIMEOUT)

    def get_token(self) -> Optional[str]:
        """Get the stored bearer token, if logged in."""
        return self._section("client").get("token")

    def get_username(self) -> Optional[str]:
        """Get the username of the logged-in account."""
        return self._section("client").get("username")

    def set_credentials(self, username: str, token: str) -> None:
        """Store the account name and bearer token after login."""
        client = self._section("client")
        client["username"] = username
        client["token"] = token
        self.save_config()

    def clear_credentials(self) -> None:
        """Forget the stored token (logout)."""
        client = self._section("client")
        client["username"] = None
        client["token"] = None
        self.save_config()
