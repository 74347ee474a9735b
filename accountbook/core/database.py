"""Server-side database operations for Account Book.

This module owns the sync server's SQLite database: user accounts and the
per-user cloud record table. Every accepted write stamps the record with
the next version from its user's counter; downloads select records above
a client's watermark.

Version assignment is linearized: all access goes through one connection
guarded by a lock, and uploads run inside BEGIN IMMEDIATE so that other
processes sharing the file are serialized too. The UNIQUE(user_id, version)
constraint backs the guarantee that no two records share a version.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from .models import Record, RecordId
from .timestamp_utils import current_timestamp, later_of
from .validation import ValidationError, validate_record_payload

logger = logging.getLogger(__name__)

__all__ = ["Database", "UploadResult"]

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    username      TEXT    NOT NULL UNIQUE,
    password_hash TEXT    NOT NULL,
    create_time   TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS cloud_records (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER NOT NULL REFERENCES users(id),
    client_id   TEXT,
    type        TEXT    NOT NULL CHECK(type IN ('income', 'expense')),
    amount      TEXT    NOT NULL,
    category    TEXT    NOT NULL DEFAULT '',
    remark      TEXT    NOT NULL DEFAULT '',
    create_time TEXT    NOT NULL,
    update_time TEXT    NOT NULL,
    version     INTEGER NOT NULL,
    is_deleted  INTEGER NOT NULL DEFAULT 0,
    UNIQUE(user_id, version),
    UNIQUE(user_id, client_id)
);

CREATE INDEX IF NOT EXISTS idx_cloud_records_user_version
    ON cloud_records(user_id, version);
"""


@dataclass
class UploadResult:
    """Outcome of one upload batch.

    Attributes:
        records: Records as stored, in processing order, each echoing the
            id the client sent as client_id
        errors: One entry per rejected record: {"index", "id", "error"}
    """

    records: List[Record] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def applied(self) -> int:
        return len(self.records)


class Database:
    """SQLite storage for the sync server."""

    def __init__(self, db_path: Union[Path, str]) -> None:
        """Open (and if needed create) the server database.

        Args:
            db_path: Path to the SQLite database file, or ':memory:' for in-memory
        """
        path_str = str(db_path)
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(
            path_str, check_same_thread=False, isolation_level=None, timeout=30
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        if path_str != ":memory:":
            self.conn.execute("PRAGMA journal_mode = WAL")
        self.conn.executescript(SCHEMA)
        logger.info(f"Opened server database at {path_str}")

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self.conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block in an exclusive write transaction."""
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            self.conn.execute("COMMIT")

    # ===== Users =====

    def create_user(self, username: str, password_hash: str) -> int:
        """Create a user account.

        Raises:
            ValidationError: If the username is already taken
        """
        with self._lock:
            try:
                cursor = self.conn.execute(
                    "INSERT INTO users (username, password_hash, create_time) VALUES (?, ?, ?)",
                    (username, password_hash, current_timestamp()),
                )
            except sqlite3.IntegrityError:
                raise ValidationError("username", "already exists") from None
            return int(cursor.lastrowid)

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        """Get a user by id."""
        with self._lock:
            row = self.conn.execute(
                "SELECT id, username, password_hash, create_time FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        return dict(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        """Get a user by username."""
        with self._lock:
            row = self.conn.execute(
                "SELECT id, username, password_hash, create_time FROM users WHERE username = ?",
                (username,),
            ).fetchone()
        return dict(row) if row else None

    # ===== Records =====

    def get_current_version(self, user_id: int) -> int:
        """Get the highest version assigned for a user (0 if none)."""
        with self._lock:
            return self._current_version(self.conn, user_id)

    @staticmethod
    def _current_version(conn: sqlite3.Connection, user_id: int) -> int:
        row = conn.execute(
            "SELECT COALESCE(MAX(version), 0) FROM cloud_records WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        return int(row[0])

    def get_record(self, user_id: int, record_id: int) -> Optional[Record]:
        """Get one of a user's records by server id (including deleted)."""
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM cloud_records WHERE id = ? AND user_id = ?",
                (record_id, user_id),
            ).fetchone()
        return Record.from_row(row) if row else None

    def upload_records(self, user_id: int, payloads: List[Any]) -> UploadResult:
        """Apply a batch of records pushed by a user's client.

        Each record is validated and written independently: a rejected record
        is reported in the result and does not abort its siblings. Accepted
        records receive consecutive versions in processing order.

        Args:
            user_id: Authenticated user id
            payloads: Raw record dicts from the request body

        Returns:
            UploadResult with the stored records and per-record errors
        """
        result = UploadResult()
        with self._transaction() as conn:
            version = self._current_version(conn, user_id)
            for index, data in enumerate(payloads):
                sent_id = data.get("id") if isinstance(data, Mapping) else None
                try:
                    payload = validate_record_payload(data)
                except ValidationError as e:
                    result.errors.append({"index": index, "id": sent_id, "error": str(e)})
                    continue

                conn.execute("SAVEPOINT record_write")
                try:
                    record = self._write_record(conn, user_id, payload, version + 1)
                except (sqlite3.Error, OverflowError) as e:
                    conn.execute("ROLLBACK TO SAVEPOINT record_write")
                    conn.execute("RELEASE SAVEPOINT record_write")
                    logger.error(f"Failed to store record {sent_id!r} for user {user_id}: {e}")
                    result.errors.append({"index": index, "id": sent_id, "error": str(e)})
                    continue
                conn.execute("RELEASE SAVEPOINT record_write")

                version += 1
                result.records.append(record)
        return result

    def _find_target(
        self, conn: sqlite3.Connection, user_id: int, record_id: Optional[RecordId]
    ) -> Optional[sqlite3.Row]:
        """Find the row an uploaded record should overwrite, if any."""
        if record_id is None:
            return None
        if isinstance(record_id, int):
            row = conn.execute(
                "SELECT * FROM cloud_records WHERE id = ? AND user_id = ?",
                (record_id, user_id),
            ).fetchone()
            if row:
                return row
        # A retried push of a record the server already created from this id
        return conn.execute(
            "SELECT * FROM cloud_records WHERE user_id = ? AND client_id = ?",
            (user_id, str(record_id)),
        ).fetchone()

    def _write_record(
        self, conn: sqlite3.Connection, user_id: int, payload: Record, version: int
    ) -> Record:
        now = current_timestamp()
        existing = self._find_target(conn, user_id, payload.id)

        if existing is not None:
            row_id = existing["id"]
            update_time = later_of(now, existing["create_time"])
            conn.execute(
                """
                UPDATE cloud_records
                SET type = ?, amount = ?, category = ?, remark = ?,
                    update_time = ?, version = ?, is_deleted = ?
                WHERE id = ? AND user_id = ?
                """,
                (
                    payload.type, str(payload.amount), payload.category, payload.remark,
                    update_time, version, int(payload.is_deleted), row_id, user_id,
                ),
            )
        else:
            create_time = payload.create_time or now
            cursor = conn.execute(
                """
                INSERT INTO cloud_records (
                    user_id, client_id, type, amount, category, remark,
                    create_time, update_time, version, is_deleted
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    str(payload.id) if payload.id is not None else None,
                    payload.type, str(payload.amount), payload.category, payload.remark,
                    create_time, later_of(now, create_time), version, int(payload.is_deleted),
                ),
            )
            row_id = cursor.lastrowid

        row = conn.execute("SELECT * FROM cloud_records WHERE id = ?", (row_id,)).fetchone()
        sent_id = str(payload.id) if payload.id is not None else None
        return replace(Record.from_row(row), client_id=sent_id)

    def download_records(
        self, user_id: int, last_version: int, include_deleted: bool = False
    ) -> List[Record]:
        """Get a user's records with version greater than last_version.

        Args:
            user_id: Authenticated user id
            last_version: The client's watermark
            include_deleted: Also return soft-deleted records (tombstones)

        Returns:
            Records ordered by update_time, newest first
        """
        sql = "SELECT * FROM cloud_records WHERE user_id = ? AND version > ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        sql += " ORDER BY update_time DESC, version DESC"
        with self._lock:
            rows = self.conn.execute(sql, (user_id, last_version)).fetchall()
        return [Record.from_row(row) for row in rows]
