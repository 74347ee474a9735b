"""Timestamp utilities for Account Book.

All stored timestamps are UTC strings in SQLite's CURRENT_TIMESTAMP format
("YYYY-MM-DD HH:MM:SS") so they compare correctly as plain strings.
"""

from datetime import datetime, timezone
from typing import Optional

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def current_timestamp() -> str:
    """Get the current UTC time as a storage timestamp string."""
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def normalize_timestamp(value: str) -> str:
    """Convert an ISO-8601 timestamp to the storage format.

    Accepts both "2024-01-02 03:04:05" and JavaScript's toISOString() output
    ("2024-01-02T03:04:05.678Z"). Aware datetimes are converted to UTC;
    naive ones are assumed to already be UTC.

    Raises:
        ValueError: If the value cannot be parsed
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.strftime(TIMESTAMP_FORMAT)


def format_timestamp(ts: Optional[str]) -> str:
    """Format a stored UTC timestamp in the local timezone for display.

    Args:
        ts: Storage timestamp string or None

    Returns:
        Formatted string "YYYY-MM-DD HH:MM:SS" in local timezone,
        or empty string if ts is None
    """
    if not ts:
        return ""
    utc_dt = datetime.strptime(ts, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    return utc_dt.astimezone().strftime(TIMESTAMP_FORMAT)


def later_of(first: str, second: str) -> str:
    """Return the later of two storage timestamps."""
    return first if first >= second else second
