"""Unit tests for JSON export and import."""

from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path

import pytest

from accountbook.core.export import export_records, import_records
from accountbook.core.record_store import RecordStore

pytestmark = pytest.mark.unit


class TestExport:
    """Test exporting records."""

    def test_writes_json_array(self, record_store: RecordStore, tmp_path: Path) -> None:
        record_store.add_record("income", 100, category="salary")
        record_store.add_record("expense", 20, category="food", remark="Café")
        path = tmp_path / "records.json"

        assert export_records(record_store, path) == 2

        data = json.loads(path.read_text(encoding="utf-8"))
        assert {item["category"] for item in data} == {"salary", "food"}
        assert any(item["remark"] == "Café" for item in data)


class TestImport:
    """Test importing records."""

    def test_round_trip_into_another_store(
        self, record_store: RecordStore, tmp_path: Path
    ) -> None:
        record_store.add_record("income", "100.5", category="salary")
        path = tmp_path / "records.json"
        export_records(record_store, path)

        other = RecordStore(tmp_path / "other.db")
        try:
            assert import_records(other, path) == 1
            imported = other.get_all()[0]
            assert imported.amount == Decimal("100.5")
            assert imported.version is None
            assert other.select_dirty(0) == [imported]
        finally:
            other.close()

    def test_skips_existing_ids(self, record_store: RecordStore, tmp_path: Path) -> None:
        record_store.add_record("income", 1)
        path = tmp_path / "records.json"
        export_records(record_store, path)

        assert import_records(record_store, path) == 0
        assert len(record_store.get_all()) == 1

    def test_skips_invalid_entries(self, record_store: RecordStore, tmp_path: Path) -> None:
        path = tmp_path / "records.json"
        path.write_text(json.dumps([
            {"type": "income", "amount": 10},
            {"type": "transfer", "amount": 10},
            {"type": "expense", "amount": -5},
            "garbage",
        ]), encoding="utf-8")

        assert import_records(record_store, path) == 1
        assert record_store.get_all()[0].type == "income"

    def test_rejects_non_array(self, record_store: RecordStore, tmp_path: Path) -> None:
        path = tmp_path / "records.json"
        path.write_text(json.dumps({"records": []}), encoding="utf-8")

        with pytest.raises(ValueError):
            import_records(record_store, path)
