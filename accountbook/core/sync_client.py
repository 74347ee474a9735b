"""Sync client for Account Book.

This module provides the client side of the sync protocol, allowing
this install to:
- Log in to the sync server and keep its bearer token
- Pull records changed since the local watermark and merge them
- Push locally changed records and store the server's confirmation

Every failure aborts only the phase it happens in and leaves the watermark
where it was, so the next sync simply retries.
"""

from __future__ import annotations

import http.client
import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from .auth import AuthError
from .config import DEFAULT_REQUEST_TIMEOUT, Config
from .models import Record
from .record_store import RecordStore
from .validation import ValidationError, validate_record_payload, validate_timestamp

logger = logging.getLogger(__name__)

__all__ = [
    "AuthError",
    "PushResult",
    "RemoteError",
    "SyncClient",
    "SyncError",
    "SyncResult",
    "TransientIOError",
]


class SyncError(Exception):
    """Base class for sync failures."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class TransientIOError(SyncError):
    """Server unreachable, timed out, or failing with a 5xx. Retry later."""


class RemoteError(SyncError):
    """Server answered with a failure envelope (code != 0)."""

    def __init__(self, message: str, status: Optional[int] = None, data: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.data = data


@dataclass
class SyncResult:
    """Result of a sync operation."""

    success: bool
    pulled: int = 0  # Records merged from the server
    pushed: int = 0  # Records accepted by the server
    errors: List[str] = field(default_factory=list)


@dataclass
class PushResult:
    """Result of one upload.

    Attributes:
        records: Server-confirmed records, as stored locally
        errors: Per-record rejections reported by the server
        watermark: Watermark after the push, or None if it was left unchanged
    """

    records: List[Record] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    watermark: Optional[int] = None

    @property
    def applied(self) -> int:
        return len(self.records)


class SyncClient:
    """Client for syncing a RecordStore with the sync server."""

    def __init__(
        self,
        store: RecordStore,
        server_url: str,
        token: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialize sync client.

        Args:
            store: Local record store
            server_url: Base URL of the sync server
            token: Bearer token from a previous login
            timeout: Request timeout in seconds
        """
        self.store = store
        self.server_url = server_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    @classmethod
    def from_config(cls, store: RecordStore, config: Config) -> "SyncClient":
        """Create a client using the server URL, token and timeout from config."""
        return cls(
            store,
            config.get_server_url(),
            token=config.get_token(),
            timeout=config.get_request_timeout(),
        )

    # ===== Account =====

    def register(self, username: str, password: str) -> int:
        """Create an account on the server.

        Returns:
            The new user id

        Raises:
            RemoteError: If the username is taken or the response has no user id
        """
        envelope = self._make_request(
            "/api/register", {"username": username, "password": password}, auth=False
        )
        user_id = (envelope.get("data") or {}).get("userId")
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise RemoteError("Registration response did not contain a user id")
        return user_id

    def login(self, username: str, password: str) -> str:
        """Log in and keep the returned token for subsequent calls.

        Returns:
            The bearer token

        Raises:
            RemoteError: If the credentials are wrong
        """
        envelope = self._make_request(
            "/api/login", {"username": username, "password": password}, auth=False
        )
        token = (envelope.get("data") or {}).get("token")
        if not isinstance(token, str) or not token:
            raise RemoteError("Login response did not contain a token")
        self.token = token
        logger.info(f"Logged in to {self.server_url} as {username}")
        return token

    def check_server_status(self) -> Dict[str, Any]:
        """Get the server's status payload."""
        envelope = self._make_request("/api/status", method="GET", auth=False)
        return envelope.get("data") or {}

    # ===== Sync =====

    def pull(self, last_version: int) -> List[Record]:
        """Download the user's records with version above last_version.

        Tombstones are included so local copies of deleted records go away.
        """
        envelope = self._make_request(
            "/api/sync/download", {"lastVersion": last_version, "includeDeleted": True}
        )
        data = envelope.get("data")
        if not isinstance(data, list):
            raise RemoteError("Malformed download response: data is not a list")
        records = [self._record_from_server(item) for item in data]
        logger.info(f"Pulled {len(records)} records above version {last_version}")
        return records

    def merge(self, records: List[Record]) -> int:
        """Apply pulled records and advance the watermark in one transaction."""
        return self.store.merge(records)

    def select_dirty(self, last_version: int) -> List[Record]:
        """Get local records that need to be pushed."""
        return self.store.select_dirty(last_version)

    def push(self, records: List[Record]) -> PushResult:
        """Upload records and store the server's confirmation.

        The watermark moves to the highest echoed version only when the echoed
        versions are exactly watermark+1, watermark+2, ... Any gap means other
        writes happened in between, which the next pull has to fetch first.

        Raises:
            TransientIOError: If the server could not be reached
            RemoteError: If the server rejected the whole batch
            AuthError: If the token is missing or no longer valid
        """
        if not records:
            return PushResult(watermark=self.store.get_watermark())

        watermark = self.store.get_watermark()
        envelope = self._make_request(
            "/api/sync/upload", {"records": [self._to_wire(r) for r in records]}
        )
        data = envelope.get("data") or {}
        confirmed = [self._record_from_server(item) for item in data.get("records") or []]
        errors = list(data.get("errors") or [])

        versions = sorted(r.version for r in confirmed)
        expected = list(range(watermark + 1, watermark + 1 + len(versions)))
        new_watermark = versions[-1] if versions and versions == expected else None
        if versions and new_watermark is None:
            logger.info(
                f"Pushed versions {versions[0]}..{versions[-1]} do not follow "
                f"watermark {watermark}; leaving it for the next pull"
            )

        self.store.store_confirmed(confirmed, new_watermark)
        logger.info(f"Pushed {len(confirmed)} records, {len(errors)} rejected")
        return PushResult(
            records=confirmed,
            errors=errors,
            watermark=new_watermark if new_watermark is not None else watermark,
        )

    def auto_sync(self) -> SyncResult:
        """Pull and merge, then push local changes.

        A transient or remote failure while pulling is recorded and the push
        still runs. AuthError is not caught: the user has to log in again.

        Returns:
            SyncResult with summary of sync operation
        """
        result = SyncResult(success=True)

        try:
            records = self.pull(self.store.get_watermark())
            result.pulled = self.merge(records)
        except (TransientIOError, RemoteError) as e:
            logger.warning(f"Pull failed: {e}")
            result.errors.append(f"Pull failed: {e}")

        try:
            push_result = self.push(self.select_dirty(self.store.get_watermark()))
            result.pushed = push_result.applied
            for error in push_result.errors:
                result.errors.append(f"Record {error.get('id')!r} rejected: {error.get('error')}")
        except (TransientIOError, RemoteError) as e:
            logger.warning(f"Push failed: {e}")
            result.errors.append(f"Push failed: {e}")

        result.success = not result.errors
        logger.info(
            f"Sync complete: pulled={result.pulled}, pushed={result.pushed}, "
            f"errors={len(result.errors)}"
        )
        return result

    # ===== Wire helpers =====

    @staticmethod
    def _to_wire(record: Record) -> Dict[str, Any]:
        data = record.to_dict()
        # Local ids are text; confirmed server ids go back as integers
        if isinstance(record.id, str) and record.id.isdigit():
            data["id"] = int(record.id)
        return data

    @staticmethod
    def _record_from_server(item: Any) -> Record:
        """Validate a record dict sent by the server."""
        try:
            record = validate_record_payload(item)
            update_time = validate_timestamp(
                item.get("update_time", item.get("updateTime")), "update_time"
            )
        except ValidationError as e:
            raise RemoteError(f"Server sent a malformed record: {e}") from None

        version = item.get("version")
        if isinstance(version, bool) or not isinstance(version, int) or record.id is None:
            raise RemoteError(f"Server sent a record without id or version: {item!r}")

        create_time = record.create_time or update_time
        client_id = item.get("client_id")
        return replace(
            record,
            create_time=create_time,
            update_time=update_time or create_time,
            version=version,
            client_id=str(client_id) if client_id is not None else None,
        )

    def _make_request(
        self,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        method: str = "POST",
        auth: bool = True,
    ) -> Dict[str, Any]:
        """Make an HTTP request to the sync server.

        Args:
            path: URL path below the server URL
            data: JSON data to send
            method: HTTP method
            auth: Send the bearer token

        Returns:
            The response envelope (code == 0)

        Raises:
            AuthError: If no token is available or the server answered 401
            TransientIOError: On connection failures, timeouts and 5xx
            RemoteError: If the server answered with code != 0
        """
        url = f"{self.server_url}{path}"
        headers = {"Accept": "application/json"}
        body = None
        if data is not None:
            body = json.dumps(data).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if auth:
            if not self.token:
                raise AuthError()
            headers["Authorization"] = f"Bearer {self.token}"

        request = urllib.request.Request(url, data=body, method=method, headers=headers)
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status = response.status
                raw = response.read()
        except urllib.error.HTTPError as e:
            status = e.code
            raw = e.read()
        except (OSError, http.client.HTTPException) as e:
            # URLError, connection resets, socket timeouts and broken responses
            reason = getattr(e, "reason", e)
            logger.warning(f"Request to {url} failed: {reason}")
            raise TransientIOError(f"Connection failed to {url}: {reason}") from e

        try:
            envelope = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            envelope = None
        msg = envelope.get("msg") if isinstance(envelope, dict) else None

        if status == 401:
            raise AuthError(msg or "Not logged in, please log in first")
        if status >= 500:
            logger.error(f"Request to {url} failed: HTTP {status} {msg or ''}")
            raise TransientIOError(f"Server error {status}: {msg or 'no details'}")
        if not isinstance(envelope, dict):
            raise RemoteError(f"Invalid response from {url} (HTTP {status})", status=status)
        if envelope.get("code") != 0:
            logger.error(f"Request to {url} rejected: {msg}")
            raise RemoteError(msg or f"Request failed (HTTP {status})", status, envelope.get("data"))
        return envelope
