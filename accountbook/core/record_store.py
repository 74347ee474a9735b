"""Local record storage for Account Book clients.

RecordStore keeps this install's copy of the user's records in SQLite,
together with the sync watermark (the highest server version this client
has incorporated). Keeping both in one database lets a merged batch and its
watermark commit in a single transaction.

Local ids are strings: server ids are stored as their decimal text, records
created here get a temporary id until the server confirms them.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from .models import Record, is_temp_id, new_temp_id
from .timestamp_utils import current_timestamp, later_of
from .validation import (
    validate_amount,
    validate_category,
    validate_record_type,
    validate_remark,
    validate_timestamp,
)

logger = logging.getLogger(__name__)

__all__ = ["RecordStore", "WATERMARK_KEY"]

WATERMARK_KEY = "last_sync_version"

SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    id          TEXT    PRIMARY KEY,
    type        TEXT    NOT NULL CHECK(type IN ('income', 'expense')),
    amount      TEXT    NOT NULL,
    category    TEXT    NOT NULL DEFAULT '',
    remark      TEXT    NOT NULL DEFAULT '',
    create_time TEXT    NOT NULL,
    update_time TEXT    NOT NULL,
    version     INTEGER,
    is_deleted  INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_records_version ON records(version);
CREATE INDEX IF NOT EXISTS idx_records_create_time ON records(create_time);

CREATE TABLE IF NOT EXISTS sync_state (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class RecordStore:
    """SQLite-backed record store for one client install."""

    def __init__(self, db_path: Union[Path, str]) -> None:
        """Open (and if needed create) the local store.

        Args:
            db_path: Path to the SQLite database file, or ':memory:' for in-memory
        """
        path_str = str(db_path)
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(
            path_str, check_same_thread=False, isolation_level=None, timeout=30
        )
        self.conn.row_factory = sqlite3.Row
        if path_str != ":memory:":
            self.conn.execute("PRAGMA journal_mode = WAL")
        self.conn.executescript(SCHEMA)
        logger.debug(f"Opened record store at {path_str}")

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self.conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            self.conn.execute("COMMIT")

    # ===== Local CRUD =====

    def add_record(
        self,
        type: str,
        amount: Any,
        category: Any = "",
        remark: Any = "",
        create_time: Optional[str] = None,
    ) -> Record:
        """Create a record locally with a temporary id and no version.

        Raises:
            ValidationError: If any field is invalid
        """
        now = current_timestamp()
        created = validate_timestamp(create_time, "create_time") or now
        record = Record(
            id=new_temp_id(),
            type=validate_record_type(type),
            amount=validate_amount(amount),
            category=validate_category(category),
            remark=validate_remark(remark),
            create_time=created,
            update_time=later_of(now, created),
        )
        with self._transaction() as conn:
            self._upsert(conn, record)
        return record

    def update_record(self, record_id: str, **changes: Any) -> Optional[Record]:
        """Edit a record's type, amount, category or remark.

        The version is cleared so the record is pushed on the next sync.

        Returns:
            The updated record, or None if no such record exists

        Raises:
            ValidationError: If a changed field is invalid
            TypeError: If an unknown field is given
        """
        validators = {
            "type": validate_record_type,
            "amount": validate_amount,
            "category": validate_category,
            "remark": validate_remark,
        }
        unknown = set(changes) - set(validators)
        if unknown:
            raise TypeError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        values = {name: validators[name](value) for name, value in changes.items()}

        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM records WHERE id = ? AND is_deleted = 0", (str(record_id),)
            ).fetchone()
            if row is None:
                return None
            current = Record.from_row(row)
            updated = Record(
                id=current.id,
                type=values.get("type", current.type),
                amount=values.get("amount", current.amount),
                category=values.get("category", current.category),
                remark=values.get("remark", current.remark),
                create_time=current.create_time,
                update_time=later_of(current_timestamp(), current.create_time),
                version=None,
            )
            self._upsert(conn, updated)
        return updated

    def get(self, record_id: str) -> Optional[Record]:
        """Get a record by id (deleted records are not returned)."""
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM records WHERE id = ? AND is_deleted = 0", (str(record_id),)
            ).fetchone()
        return Record.from_row(row) if row else None

    def get_all(self) -> List[Record]:
        """Get all non-deleted records, newest first."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM records WHERE is_deleted = 0 ORDER BY create_time DESC, id DESC"
            ).fetchall()
        return [Record.from_row(row) for row in rows]

    def upsert(self, record: Record) -> None:
        """Insert or replace a record by id."""
        with self._transaction() as conn:
            self._upsert(conn, record)

    @staticmethod
    def _upsert(conn: sqlite3.Connection, record: Record) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO records (
                id, type, amount, category, remark,
                create_time, update_time, version, is_deleted
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(record.id), record.type, str(record.amount), record.category,
                record.remark, record.create_time, record.update_time,
                record.version, int(record.is_deleted),
            ),
        )

    def delete(self, record_id: str) -> bool:
        """Delete a record.

        A record the server has never confirmed is removed outright. Any other
        record becomes a tombstone (deleted, version cleared) so the deletion
        is pushed on the next sync.

        Returns:
            True if a record was deleted
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, version, create_time FROM records WHERE id = ? AND is_deleted = 0",
                (str(record_id),),
            ).fetchone()
            if row is None:
                return False
            if row["version"] is None and is_temp_id(row["id"]):
                conn.execute("DELETE FROM records WHERE id = ?", (row["id"],))
            else:
                conn.execute(
                    "UPDATE records SET is_deleted = 1, version = NULL, update_time = ? WHERE id = ?",
                    (later_of(current_timestamp(), row["create_time"]), row["id"]),
                )
        return True

    def get_stats(self) -> Dict[str, float]:
        """Get total income, total expense and balance of non-deleted records."""
        totals = {"income": Decimal(0), "expense": Decimal(0)}
        with self._lock:
            rows = self.conn.execute(
                "SELECT type, amount FROM records WHERE is_deleted = 0"
            ).fetchall()
        # Amounts are stored as text and summed exactly
        for row in rows:
            if row["type"] in totals:
                totals[row["type"]] += Decimal(str(row["amount"]))
        return {
            "total_income": float(totals["income"]),
            "total_expense": float(totals["expense"]),
            "balance": float(totals["income"] - totals["expense"]),
        }

    # ===== Sync support =====

    def get_watermark(self) -> int:
        """Get the last synced version (0 if never synced)."""
        with self._lock:
            return self._get_watermark(self.conn)

    @staticmethod
    def _get_watermark(conn: sqlite3.Connection) -> int:
        row = conn.execute(
            "SELECT value FROM sync_state WHERE key = ?", (WATERMARK_KEY,)
        ).fetchone()
        if row is None:
            return 0
        try:
            return int(row["value"])
        except ValueError:
            logger.warning(f"Ignoring corrupt {WATERMARK_KEY} value: {row['value']!r}")
            return 0

    def set_watermark(self, version: int) -> int:
        """Raise the watermark to version. It never moves backwards.

        Returns:
            The watermark after the call
        """
        with self._transaction() as conn:
            return self._raise_watermark(conn, version)

    def _raise_watermark(self, conn: sqlite3.Connection, version: int) -> int:
        current = self._get_watermark(conn)
        if version <= current:
            return current
        conn.execute(
            "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
            (WATERMARK_KEY, str(version)),
        )
        return version

    def select_dirty(self, last_version: int) -> List[Record]:
        """Get records the server may not have seen.

        These are records (tombstones included) whose version is unset or
        above last_version.
        """
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT * FROM records
                WHERE version IS NULL OR version > ?
                ORDER BY create_time ASC, id ASC
                """,
                (last_version,),
            ).fetchall()
        return [Record.from_row(row) for row in rows]

    def merge(self, records: Iterable[Record]) -> int:
        """Apply records received from the server as one atomic batch.

        Each record replaces the local row with the same id; a record whose
        client_id names a different local row replaces that row too; deleted
        records are removed. Afterwards the watermark is raised to the highest
        version in the batch.

        Returns:
            Number of records applied
        """
        records = list(records)
        with self._transaction() as conn:
            self._apply(conn, records)
            versions = [r.version for r in records if r.version is not None]
            if versions:
                self._raise_watermark(conn, max(versions))
        return len(records)

    def store_confirmed(self, records: Iterable[Record], watermark: Optional[int]) -> None:
        """Store records echoed by the server after a push.

        Args:
            records: Server-confirmed records (with client_id)
            watermark: New watermark, or None to leave it unchanged
        """
        records = list(records)
        with self._transaction() as conn:
            self._apply(conn, records)
            if watermark is not None:
                self._raise_watermark(conn, watermark)

    def _apply(self, conn: sqlite3.Connection, records: List[Record]) -> None:
        for record in records:
            record_id = str(record.id)
            if record.client_id and record.client_id != record_id:
                conn.execute("DELETE FROM records WHERE id = ?", (record.client_id,))
            if record.is_deleted:
                conn.execute("DELETE FROM records WHERE id = ?", (record_id,))
            else:
                self._upsert(conn, record)
