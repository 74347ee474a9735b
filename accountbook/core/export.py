"""JSON export and import of local records."""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Union

from .models import new_temp_id
from .record_store import RecordStore
from .timestamp_utils import current_timestamp, later_of
from .validation import ValidationError, validate_record_payload

logger = logging.getLogger(__name__)


def export_records(store: RecordStore, path: Union[Path, str]) -> int:
    """Write all non-deleted records to a JSON file.

    Returns:
        Number of records written
    """
    records = store.get_all()
    with open(path, "w", encoding="utf-8") as f:
        json.dump([r.to_dict() for r in records], f, indent=2, ensure_ascii=False)
    logger.info(f"Exported {len(records)} records to {path}")
    return len(records)


def import_records(store: RecordStore, path: Union[Path, str]) -> int:
    """Add records from a JSON file written by export_records.

    Entries that fail validation, and entries whose id is already present
    locally, are skipped. Imported records have no version, so the next
    sync pushes them.

    Returns:
        Number of records imported

    Raises:
        ValueError: If the file is not a JSON array
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON array of records")

    imported = 0
    for index, item in enumerate(data):
        try:
            record = validate_record_payload(item)
        except ValidationError as e:
            logger.warning(f"Skipping entry {index} of {path}: {e}")
            continue

        if record.id is not None and store.get(str(record.id)) is not None:
            continue

        create_time = record.create_time or current_timestamp()
        store.upsert(replace(
            record,
            id=str(record.id) if record.id is not None else new_temp_id(),
            create_time=create_time,
            update_time=later_of(current_timestamp(), create_time),
            version=None,
        ))
        imported += 1

    logger.info(f"Imported {imported} of {len(data)} records from {path}")
    return imported
