"""Pytest fixtures for end-to-end sync tests.

This module provides fixtures for:
- Running the sync server on a real socket in a background thread
- Creating client devices, each with its own record store
"""

from __future__ import annotations

import socket
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generator, List

import pytest
from flask import Flask
from werkzeug.serving import make_server

from accountbook.core.record_store import RecordStore
from accountbook.core.sync_client import SyncClient

TEST_PASSWORD = "correct horse battery staple"


@dataclass
class LiveServer:
    """A sync server listening on localhost."""

    url: str
    port: int


@dataclass
class Device:
    """One client install: a record store and its sync client."""

    name: str
    store: RecordStore
    client: SyncClient


@pytest.fixture
def live_server(sync_app: Flask) -> Generator[LiveServer, None, None]:
    """Serve the sync app on a free port for the duration of a test."""
    server = make_server("127.0.0.1", 0, sync_app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield LiveServer(url=f"http://127.0.0.1:{server.server_port}", port=server.server_port)
    finally:
        server.shutdown()
        thread.join(timeout=5)


@pytest.fixture
def make_device(
    live_server: LiveServer, tmp_path: Path
) -> Generator[Callable[[str], Device], None, None]:
    """Return a function that creates a device logged in as a given user.

    The user is registered on first use.
    """
    devices: List[Device] = []
    registered: set = set()

    def _make(name: str, username: str = "alice") -> Device:
        store = RecordStore(tmp_path / f"{name}.db")
        client = SyncClient(store, live_server.url, timeout=5)
        if username not in registered:
            client.register(username, TEST_PASSWORD)
            registered.add(username)
        client.login(username, TEST_PASSWORD)
        device = Device(name=name, store=store, client=client)
        devices.append(device)
        return device

    yield _make

    for device in devices:
        device.store.close()


@pytest.fixture
def unused_url() -> str:
    """URL of a localhost port with nothing listening."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"http://127.0.0.1:{port}"
