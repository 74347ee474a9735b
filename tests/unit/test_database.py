"""Unit tests for the server database: versions, uploads and downloads."""

from __future__ import annotations

import threading
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List

import pytest

from accountbook.core.database import Database
from accountbook.core.validation import ValidationError

pytestmark = pytest.mark.unit


def income(amount: float = 100, category: str = "salary", **extra: Any) -> Dict[str, Any]:
    return {"type": "income", "amount": amount, "category": category, **extra}


def expense(amount: float = 20, category: str = "food", **extra: Any) -> Dict[str, Any]:
    return {"type": "expense", "amount": amount, "category": category, **extra}


class TestUsers:
    """Test user accounts."""

    def test_create_and_get_user(self, server_db: Database) -> None:
        user_id = server_db.create_user("carol", "hash")
        user = server_db.get_user(user_id)
        assert user["username"] == "carol"
        assert server_db.get_user_by_username("carol")["id"] == user_id

    def test_duplicate_username_rejected(self, server_db: Database) -> None:
        server_db.create_user("carol", "hash")
        with pytest.raises(ValidationError) as exc_info:
            server_db.create_user("carol", "other")
        assert exc_info.value.field == "username"

    def test_unknown_user(self, server_db: Database) -> None:
        assert server_db.get_user(999) is None
        assert server_db.get_user_by_username("nobody") is None


class TestVersionAssignment:
    """Test per-user version numbering."""

    def test_new_records_get_fresh_ids_and_consecutive_versions(
        self, server_db: Database, user_id: int
    ) -> None:
        result = server_db.upload_records(user_id, [income(), expense(), expense(5)])

        assert result.applied == 3
        assert result.errors == []
        assert [r.version for r in result.records] == [1, 2, 3]
        assert len({r.id for r in result.records}) == 3
        assert all(isinstance(r.id, int) for r in result.records)

    def test_versions_continue_above_previous_maximum(
        self, server_db: Database, user_id: int
    ) -> None:
        server_db.upload_records(user_id, [income(), expense()])
        result = server_db.upload_records(user_id, [expense(1), expense(2)])

        assert [r.version for r in result.records] == [3, 4]
        assert server_db.get_current_version(user_id) == 4

    def test_versions_are_per_user(
        self, server_db: Database, user_id: int, other_user_id: int
    ) -> None:
        server_db.upload_records(user_id, [income(), expense()])
        result = server_db.upload_records(other_user_id, [income()])

        assert result.records[0].version == 1

    def test_update_takes_a_new_version_and_keeps_create_time(
        self, server_db: Database, user_id: int
    ) -> None:
        created = server_db.upload_records(
            user_id, [income(create_time="2024-03-01 08:00:00")]
        ).records[0]

        result = server_db.upload_records(
            user_id,
            [income(amount=150, id=created.id, create_time="2030-01-01 00:00:00")],
        )

        updated = result.records[0]
        assert updated.id == created.id
        assert updated.version == 2
        assert updated.amount == Decimal("150")
        assert updated.create_time == "2024-03-01 08:00:00"
        assert updated.update_time >= updated.create_time

    def test_update_time_is_not_before_create_time(
        self, server_db: Database, user_id: int
    ) -> None:
        record = server_db.upload_records(
            user_id, [income(create_time="2099-01-01 00:00:00")]
        ).records[0]
        assert record.update_time == "2099-01-01 00:00:00"

    def test_concurrent_uploads_never_share_a_version(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "concurrent.db")
        user_id = db.create_user("alice", "hash")
        errors: List[BaseException] = []

        def upload() -> None:
            try:
                for _ in range(10):
                    db.upload_records(user_id, [expense(), expense()])
            except BaseException as e:  # pragma: no cover - reported below
                errors.append(e)

        threads = [threading.Thread(target=upload) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        versions = [r.version for r in db.download_records(user_id, 0)]
        db.close()

        assert errors == []
        assert sorted(versions) == list(range(1, 81))


class TestClientIds:
    """Test idempotent handling of client-side ids."""

    def test_temp_id_is_echoed_as_client_id(self, server_db: Database, user_id: int) -> None:
        record = server_db.upload_records(user_id, [income(id="tmp-abc")]).records[0]
        assert isinstance(record.id, int)
        assert record.client_id == "tmp-abc"

    def test_retried_temp_id_updates_the_same_row(
        self, server_db: Database, user_id: int
    ) -> None:
        first = server_db.upload_records(user_id, [income(id="tmp-abc")]).records[0]
        retry = server_db.upload_records(user_id, [income(amount=120, id="tmp-abc")]).records[0]

        assert retry.id == first.id
        assert retry.version == 2
        assert len(server_db.download_records(user_id, 0)) == 1

    def test_another_users_id_does_not_overwrite_their_record(
        self, server_db: Database, user_id: int, other_user_id: int
    ) -> None:
        theirs = server_db.upload_records(other_user_id, [income(amount=1)]).records[0]

        mine = server_db.upload_records(user_id, [income(amount=999, id=theirs.id)]).records[0]

        assert mine.id != theirs.id
        assert server_db.get_record(other_user_id, theirs.id).amount == Decimal("1")


class TestPerRecordValidation:
    """Test that bad records do not abort their siblings."""

    def test_batch_with_one_invalid_type(self, server_db: Database, user_id: int) -> None:
        result = server_db.upload_records(
            user_id, [income(), {"type": "transfer", "amount": 5}, expense()]
        )

        assert result.applied == 2
        assert len(result.errors) == 1
        assert result.errors[0]["index"] == 1
        assert "type" in result.errors[0]["error"]
        assert [r.version for r in result.records] == [1, 2]

    @pytest.mark.parametrize("bad_id", [2**63, "99999999999999999999"])
    def test_batch_with_one_out_of_range_id(
        self, server_db: Database, user_id: int, bad_id: Any
    ) -> None:
        result = server_db.upload_records(user_id, [income(), income(id=bad_id), expense()])

        assert result.applied == 2
        assert result.errors[0]["index"] == 1
        assert "id" in result.errors[0]["error"]
        assert [r.version for r in result.records] == [1, 2]

    def test_non_ascii_digit_id_is_a_client_id(self, server_db: Database, user_id: int) -> None:
        result = server_db.upload_records(user_id, [income(), income(id="²"), expense()])

        assert result.applied == 3
        assert result.records[1].client_id == "²"

    def test_non_object_entries_are_reported(self, server_db: Database, user_id: int) -> None:
        result = server_db.upload_records(user_id, ["nope", None])
        assert result.applied == 0
        assert [e["index"] for e in result.errors] == [0, 1]


class TestDownload:
    """Test watermark-based downloads."""

    def test_scenario_download_above_version(self, server_db: Database, user_id: int) -> None:
        server_db.upload_records(user_id, [income(100, "salary")])
        server_db.upload_records(user_id, [expense(20, "food")])

        records = server_db.download_records(user_id, 1)

        assert len(records) == 1
        assert records[0].version == 2
        assert records[0].category == "food"

    def test_download_from_latest_version_is_empty(
        self, server_db: Database, user_id: int
    ) -> None:
        server_db.upload_records(user_id, [income(), expense(), expense()])
        records = server_db.download_records(user_id, 0)

        latest = max(r.version for r in records)
        assert server_db.download_records(user_id, latest) == []

    def test_download_never_returns_other_users_records(
        self, server_db: Database, user_id: int, other_user_id: int
    ) -> None:
        server_db.upload_records(other_user_id, [income(), expense()])
        server_db.upload_records(user_id, [income()])

        records = server_db.download_records(user_id, 0)
        assert len(records) == 1
        assert server_db.download_records(999, 0) == []

    def test_tombstones_only_with_include_deleted(
        self, server_db: Database, user_id: int
    ) -> None:
        record = server_db.upload_records(user_id, [income()]).records[0]
        server_db.upload_records(user_id, [income(id=record.id, is_deleted=True)])

        assert server_db.download_records(user_id, 0) == []
        tombstones = server_db.download_records(user_id, 0, include_deleted=True)
        assert len(tombstones) == 1
        assert tombstones[0].is_deleted is True
        assert tombstones[0].version == 2

    def test_ordered_newest_first(self, server_db: Database, user_id: int) -> None:
        server_db.upload_records(user_id, [income(), expense()])
        versions = [r.version for r in server_db.download_records(user_id, 0)]
        assert versions == [2, 1]
