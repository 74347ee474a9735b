"""Input validation for Account Book.

This module provides validation functions for records arriving from users,
import files and the other side of a sync. All validators raise ValidationError with
descriptive messages.
"""

from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from .models import Record, RecordId, RecordType
from .timestamp_utils import normalize_timestamp


class ValidationError(ValueError):
    """Validation error with field and message attributes."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"

    def __repr__(self) -> str:
        return f"ValidationError(field='{self.field}', message='{self.message}')"


__all__ = [
    "ValidationError",
    "validate_record_type",
    "validate_amount",
    "validate_category",
    "validate_remark",
    "validate_timestamp",
    "validate_record_id",
    "validate_record_payload",
    "validate_last_version",
    "validate_username",
    "validate_password",
]

MAX_CATEGORY_LENGTH = 50
MAX_REMARK_LENGTH = 500
MAX_RECORD_ID_LENGTH = 64
MAX_USERNAME_LENGTH = 50
MAX_PASSWORD_LENGTH = 200
MAX_AMOUNT = Decimal("1000000000000")
AMOUNT_PLACES = Decimal("0.01")
# Largest value SQLite stores in an INTEGER column
MAX_INTEGER = 2**63 - 1

_DIGITS = re.compile(r"[0-9]+")


def validate_record_type(value: Any) -> str:
    """Validate a record type, returning its canonical value."""
    if value is None or value == "":
        raise ValidationError("type", "is required")
    if not isinstance(value, str):
        raise ValidationError("type", f"must be a string, got {type(value).__name__}")
    try:
        return RecordType(value.strip().lower()).value
    except ValueError:
        allowed = ", ".join(t.value for t in RecordType)
        raise ValidationError("type", f"unknown type '{value}' (expected {allowed})") from None


def validate_amount(value: Any) -> Decimal:
    """Validate an amount: a finite, non-negative number or numeric string.

    The result is rounded to cents.
    """
    if value is None or value == "":
        raise ValidationError("amount", "is required")
    if isinstance(value, bool):
        raise ValidationError("amount", "must be a number, got bool")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError("amount", "must be a finite number")
    if not isinstance(value, (int, float, str, Decimal)):
        raise ValidationError("amount", f"must be a number, got {type(value).__name__}")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError("amount", f"'{value}' is not a number") from None
    if not amount.is_finite():
        raise ValidationError("amount", "must be a finite number")
    if amount < 0:
        raise ValidationError("amount", "cannot be negative")
    if amount > MAX_AMOUNT:
        raise ValidationError("amount", f"cannot exceed {MAX_AMOUNT}")
    return amount.quantize(AMOUNT_PLACES, rounding=ROUND_HALF_UP)


def validate_category(value: Any) -> str:
    """Validate a category value. Missing categories become empty strings."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("category", f"must be a string, got {type(value).__name__}")
    category = value.strip()
    if len(category) > MAX_CATEGORY_LENGTH:
        raise ValidationError(
            "category", f"cannot exceed {MAX_CATEGORY_LENGTH} characters (got {len(category)})"
        )
    return category


def validate_remark(value: Any) -> str:
    """Validate an optional remark."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("remark", f"must be a string, got {type(value).__name__}")
    if len(value) > MAX_REMARK_LENGTH:
        raise ValidationError(
            "remark", f"cannot exceed {MAX_REMARK_LENGTH} characters (got {len(value)})"
        )
    return value


def validate_timestamp(value: Any, field_name: str) -> Optional[str]:
    """Validate an optional ISO-8601 timestamp, returning storage format."""
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(field_name, f"must be a string, got {type(value).__name__}")
    try:
        return normalize_timestamp(value)
    except ValueError:
        raise ValidationError(field_name, f"invalid timestamp '{value}'") from None


def validate_record_id(value: Any) -> Optional[RecordId]:
    """Validate a record id.

    Returns:
        None for a missing id, an int for server ids (including numeric
        strings), or the stripped string for client-side ids.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError("id", "must be an integer or string, got bool")
    if isinstance(value, int):
        if value <= 0:
            raise ValidationError("id", "must be positive")
        if value > MAX_INTEGER:
            raise ValidationError("id", f"cannot exceed {MAX_INTEGER}")
        return value
    if not isinstance(value, str):
        raise ValidationError("id", f"must be an integer or string, got {type(value).__name__}")
    record_id = value.strip()
    if not record_id:
        return None
    if len(record_id) > MAX_RECORD_ID_LENGTH:
        raise ValidationError("id", f"cannot exceed {MAX_RECORD_ID_LENGTH} characters")
    if _DIGITS.fullmatch(record_id):
        return validate_record_id(int(record_id))
    return record_id


def _first_present(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def validate_record_payload(data: Any) -> Record:
    """Validate a record dict from the wire or an import file.

    The returned Record carries no version and no update time: those are
    assigned by whoever stores it. Unknown keys are ignored.

    Raises:
        ValidationError: If a required field is missing or malformed
    """
    if not isinstance(data, Mapping):
        raise ValidationError("record", f"must be an object, got {type(data).__name__}")

    is_deleted = _first_present(data, "is_deleted", "isDeleted")
    if is_deleted not in (None, True, False, 0, 1):
        raise ValidationError("is_deleted", "must be a boolean")

    return Record(
        id=validate_record_id(data.get("id")),
        type=validate_record_type(data.get("type")),
        amount=validate_amount(data.get("amount")),
        category=validate_category(data.get("category")),
        remark=validate_remark(data.get("remark")),
        create_time=validate_timestamp(
            _first_present(data, "create_time", "createTime"), "create_time"
        ),
        is_deleted=bool(is_deleted),
    )


def validate_last_version(value: Any) -> int:
    """Validate a sync watermark sent by a client. Missing means 0."""
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValidationError("lastVersion", "must be an integer, got bool")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and _DIGITS.fullmatch(value.strip()):
        value = int(value.strip())
    if not isinstance(value, int):
        raise ValidationError("lastVersion", f"must be an integer, got {value!r}")
    if value < 0:
        raise ValidationError("lastVersion", "cannot be negative")
    if value > MAX_INTEGER:
        raise ValidationError("lastVersion", f"cannot exceed {MAX_INTEGER}")
    return value


def validate_username(value: Any) -> str:
    """Validate a username."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("username", "is required")
    username = value.strip()
    if len(username) > MAX_USERNAME_LENGTH:
        raise ValidationError(
            "username", f"cannot exceed {MAX_USERNAME_LENGTH} characters (got {len(username)})"
        )
    return username


def validate_password(value: Any) -> str:
    """Validate a password (returned unchanged)."""
    if not isinstance(value, str) or not value:
        raise ValidationError("password", "is required")
    if len(value) > MAX_PASSWORD_LENGTH:
        raise ValidationError("password", f"cannot exceed {MAX_PASSWORD_LENGTH} characters")
    return value
