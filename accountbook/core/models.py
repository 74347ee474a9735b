"""Data models for Account Book.

This module defines the Record dataclass shared by the sync client and the
sync server, plus the record type enum and the category label table.

Server-assigned ids are integers. Records created on a client carry a
temporary string id (TEMP_ID_PREFIX + UUID7 hex) until the server confirms
them.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from uuid6 import uuid7

TEMP_ID_PREFIX = "tmp-"

RecordId = Union[int, str]


class RecordType(Enum):
    """Kinds of account book entries."""

    INCOME = "income"
    EXPENSE = "expense"


# Display labels for the known categories. The core does not restrict
# category values to this table.
CATEGORY_LABELS: Dict[str, Dict[str, str]] = {
    RecordType.INCOME.value: {
        "salary": "Salary",
        "bonus": "Bonus",
        "investment": "Investment income",
        "part-time": "Part-time work",
        "other-income": "Other",
    },
    RecordType.EXPENSE.value: {
        "food": "Food & dining",
        "transportation": "Transportation",
        "shopping": "Shopping",
        "housing": "Housing",
        "entertainment": "Entertainment",
        "health": "Health care",
        "education": "Education",
        "other-expense": "Other",
    },
}


def get_category_label(category: str) -> str:
    """Get the display label for a category, or the raw value if unknown."""
    for labels in CATEGORY_LABELS.values():
        if category in labels:
            return labels[category]
    return category


def new_temp_id() -> str:
    """Generate a temporary id for a record created locally."""
    return f"{TEMP_ID_PREFIX}{uuid7().hex}"


def is_temp_id(record_id: Optional[RecordId]) -> bool:
    """Check whether an id is a client-side temporary id."""
    return isinstance(record_id, str) and record_id.startswith(TEMP_ID_PREFIX)


@dataclass(frozen=True)
class Record:
    """One income/expense entry.

    Attributes:
        id: Server id (int), temporary client id (str), or None before upload
        type: "income" or "expense"
        amount: Non-negative amount
        category: Category value (see CATEGORY_LABELS)
        remark: Free text, empty when absent
        create_time: When the record was created (never changes)
        update_time: When the record was last modified
        version: Server-assigned version, None while the server has not
            confirmed the current contents
        is_deleted: Soft-delete flag
        client_id: Id the client used when the server created this record
    """

    id: Optional[RecordId]
    type: str
    amount: Decimal
    category: str
    remark: str = ""
    create_time: Optional[str] = None
    update_time: Optional[str] = None
    version: Optional[int] = None
    is_deleted: bool = False
    client_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dict (wire format)."""
        data: Dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "amount": float(self.amount),
            "category": self.category,
            "remark": self.remark,
            "create_time": self.create_time,
            "update_time": self.update_time,
            "version": self.version,
            "is_deleted": self.is_deleted,
        }
        if self.client_id is not None:
            data["client_id"] = self.client_id
        return data

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Record":
        """Build a Record from a database row or a trusted wire dict."""
        keys = row.keys()
        return cls(
            id=row["id"],
            type=row["type"],
            amount=Decimal(str(row["amount"])),
            category=row["category"],
            remark=row["remark"] or "",
            create_time=row["create_time"],
            update_time=row["update_time"],
            version=row["version"],
            is_deleted=bool(row["is_deleted"]),
            client_id=row["client_id"] if "client_id" in keys else None,
        )
