"""Pytest fixtures for Account Book tests.

This module provides fixtures for test configuration, the server database,
the client record store, and the sync server's Flask test client.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Generator

import pytest
from flask import Flask
from flask.testing import FlaskClient

from accountbook.core.config import Config
from accountbook.core.database import Database
from accountbook.core.record_store import RecordStore
from accountbook.core.sync import create_sync_server

TEST_PASSWORD = "correct horse battery staple"


@pytest.fixture(autouse=True)
def no_secret_key_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's ACCOUNTBOOK_SECRET_KEY out of the tests."""
    monkeypatch.delenv("ACCOUNTBOOK_SECRET_KEY", raising=False)


@pytest.fixture
def test_config_dir(tmp_path: Path) -> Path:
    """Create temporary config directory for tests.

    Args:
        tmp_path: pytest temporary directory fixture

    Returns:
        Path to temporary config directory.
    """
    config_dir = tmp_path / "accountbook_test"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


@pytest.fixture
def test_config(test_config_dir: Path) -> Config:
    """Create test configuration."""
    return Config(config_dir=test_config_dir)


@pytest.fixture
def server_db(test_config_dir: Path) -> Generator[Database, None, None]:
    """Create an empty server database.

    Yields:
        Database instance backed by a temporary file.
    """
    db = Database(test_config_dir / "server_test.db")
    yield db
    db.close()


@pytest.fixture
def user_id(server_db: Database) -> int:
    """Create a user directly in the server database."""
    return server_db.create_user("alice", "not-a-real-hash")


@pytest.fixture
def other_user_id(server_db: Database) -> int:
    """Create a second user directly in the server database."""
    return server_db.create_user("bob", "not-a-real-hash")


@pytest.fixture
def record_store(test_config_dir: Path) -> Generator[RecordStore, None, None]:
    """Create an empty client record store.

    Yields:
        RecordStore backed by a temporary file.
    """
    store = RecordStore(test_config_dir / "local_test.db")
    yield store
    store.close()


@pytest.fixture
def sync_app(server_db: Database, test_config: Config) -> Flask:
    """Create the sync server Flask app for testing."""
    app = create_sync_server(server_db, test_config)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(sync_app: Flask) -> FlaskClient:
    """Create Flask test client."""
    return sync_app.test_client()


@pytest.fixture
def login_user(client: FlaskClient) -> Callable[[str], Dict[str, str]]:
    """Return a function that registers and logs in a user.

    The function returns the Authorization header for that user.
    """
    def _login(username: str = "alice") -> Dict[str, str]:
        credentials = {"username": username, "password": TEST_PASSWORD}
        response = client.post("/api/register", json=credentials)
        assert response.status_code == 200, response.get_json()
        response = client.post("/api/login", json=credentials)
        assert response.status_code == 200, response.get_json()
        token = response.get_json()["data"]["token"]
        return {"Authorization": f"Bearer {token}"}
    return _login


@pytest.fixture
def auth_headers(login_user: Callable[[str], Dict[str, str]]) -> Dict[str, str]:
    """Authorization header for a registered user named alice."""
    return login_user("alice")
