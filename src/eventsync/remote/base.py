"""Protocol implemented by remote stores."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from eventsync.core.types import Collection
    from eventsync.sync.types import OutgoingRecord, RemoteRecord, UpsertAck


class RemoteStore(Protocol):
    """The canonical store a replica synchronizes with.

    Implementations raise RemoteUnavailable when the store cannot be
    reached and PerRecordSyncFailure when a single record is rejected.
    """

    def fetch_changed_since(self, collection: Collection, cursor: int) -> list[RemoteRecord]:
        """Records of a collection modified after ``cursor`` (epoch millis)."""
        ...

    def upsert(self, collection: Collection, record: OutgoingRecord) -> UpsertAck:
        """Create or update a record.

        Must be idempotent: a record carrying a remote id updates that
        record, otherwise a record with the same client key is reused.
        """
        ...
