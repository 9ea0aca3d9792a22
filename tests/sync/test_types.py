"""Tests for records exchanged with the remote and cycle reports."""

from __future__ import annotations

import pytest

from eventsync.core.types import Collection
from eventsync.sync.types import (
    DuplicateBinding,
    MalformedRecord,
    RemoteRecord,
    SyncReport,
    UpsertAck,
)


class TestRemoteRecord:
    """Tests for RemoteRecord."""

    def test_from_dict(self) -> None:
        """Should coerce ids and stamps from JSON."""
        record = RemoteRecord.from_dict(
            {"remote_id": 17, "last_modified": "1200", "fields": {"name": "Ana"}}
        )
        assert record.remote_id == "17"
        assert record.last_modified == 1200
        assert record.fields == {"name": "Ana"}
        assert record.client_key is None

    def test_from_dict_null_fields(self) -> None:
        record = RemoteRecord.from_dict({"remote_id": "r1", "last_modified": 5, "fields": None})
        assert record.fields == {}

    @pytest.mark.parametrize(
        "data",
        [
            {"last_modified": 5, "fields": {}},
            {"remote_id": "", "last_modified": 5},
            {"remote_id": "r1", "fields": {}},
            {"remote_id": "r1", "last_modified": "yesterday"},
            {"remote_id": "r1", "last_modified": 5, "fields": ["name"]},
            "r1",
        ],
    )
    def test_from_dict_malformed(self, data) -> None:
        """Entries without identity, stamp or field object are refused."""
        with pytest.raises(MalformedRecord):
            RemoteRecord.from_dict(data)


class TestUpsertAck:
    """Tests for UpsertAck."""

    def test_with_stamp(self) -> None:
        ack = UpsertAck.from_dict({"remote_id": "r1", "last_modified": 99})
        assert ack == UpsertAck(remote_id="r1", last_modified=99)

    def test_without_stamp(self) -> None:
        assert UpsertAck.from_dict({"remote_id": "r1"}).last_modified is None


class TestSyncReport:
    """Tests for SyncReport."""

    def test_summary(self) -> None:
        report = SyncReport(collection=Collection.GUESTS, pushed=2, pulled=3, skipped=1, conflicts=1)
        assert report.summary() == "guests: 2 pushed, 3 pulled, 1 skipped, 1 conflicts"

    def test_summary_cancelled(self) -> None:
        report = SyncReport(collection=Collection.VENUES, cancelled=True)
        assert report.summary().endswith("(cancelled)")

    def test_has_errors(self) -> None:
        report = SyncReport(collection=Collection.VENUES)
        assert not report.has_errors
        report.errors.append("rejected")
        assert report.has_errors


def test_duplicate_binding_message() -> None:
    error = DuplicateBinding(Collection.GUESTS, "r1", [3, 4])
    assert "r1" in str(error)
    assert error.local_ids == [3, 4]
