"""Per-collection sync cursors and push retry sets.

Cursors are high-water marks of ``last_modified`` stored in the
``sync_state`` table, one per collection and direction:

    cursor:<collection>:push   newest local change acknowledged by the remote
    cursor:<collection>:pull   newest remote change applied locally

A cursor only ever moves forward.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterable
from typing import TYPE_CHECKING

from eventsync.core.types import Collection, SyncDirection

if TYPE_CHECKING:
    from eventsync.store.database import EntityStore
    from eventsync.store.models import SyncedEntity

logger = logging.getLogger(__name__)

REPLICA_ID_KEY = "replica_id"


class ChangeTracker:
    """Persists cursors and retry sets for the sync coordinator."""

    def __init__(self, store: EntityStore) -> None:
        self._store = store
        self._replica_id: str | None = None

    @staticmethod
    def _cursor_key(collection: Collection, direction: SyncDirection) -> str:
        return f"cursor:{collection.value}:{direction.value}"

    @staticmethod
    def _retry_key(collection: Collection) -> str:
        return f"push_retry:{collection.value}"

    def cursor_for(self, collection: Collection, direction: SyncDirection) -> int:
        """Get a cursor; 0 if the collection was never synchronized."""
        value = self._store.get_state(self._cursor_key(collection, direction))
        return int(value) if value else 0

    def candidates(self, collection: Collection, cursor: int) -> list[SyncedEntity]:
        """Local records modified after ``cursor``, oldest first."""
        return self._store.list_modified_since(collection, cursor)

    def advance(self, collection: Collection, direction: SyncDirection, new_cursor: int) -> int:
        """Move a cursor forward.

        A value lower than the stored cursor is ignored.

        Returns:
            The cursor value now stored.
        """
        current = self.cursor_for(collection, direction)
        if new_cursor <= current:
            return current
        self._store.set_state(self._cursor_key(collection, direction), str(new_cursor))
        logger.debug(
            f"Advanced {collection.value} {direction.value} cursor {current} -> {new_cursor}"
        )
        return new_cursor

    def reset(self, collection: Collection) -> None:
        """Forget both cursors and the retry set, forcing a full resync."""
        for direction in SyncDirection:
            self._store.delete_state(self._cursor_key(collection, direction))
        self._store.delete_state(self._retry_key(collection))
        logger.info(f"Reset sync state for {collection.value}")

    # === Push retry set ===

    def pending_retries(self, collection: Collection) -> set[int]:
        """Ids of bound records whose last push failed."""
        value = self._store.get_state(self._retry_key(collection))
        return set(json.loads(value)) if value else set()

    def mark_retry(self, collection: Collection, ids: Iterable[int]) -> None:
        self._write_retries(collection, self.pending_retries(collection) | set(ids))

    def clear_retry(self, collection: Collection, ids: Iterable[int]) -> None:
        self._write_retries(collection, self.pending_retries(collection) - set(ids))

    def _write_retries(self, collection: Collection, ids: set[int]) -> None:
        key = self._retry_key(collection)
        if ids:
            self._store.set_state(key, json.dumps(sorted(ids)))
        else:
            self._store.delete_state(key)

    # === Replica identity ===

    @property
    def replica_id(self) -> str:
        """Random identifier of this replica, generated on first use."""
        if self._replica_id is None:
            stored = self._store.get_state(REPLICA_ID_KEY)
            if stored is None:
                stored = uuid.uuid4().hex
                self._store.set_state(REPLICA_ID_KEY, stored)
                logger.info(f"Generated replica id {stored}")
            self._replica_id = stored
        return self._replica_id

    def client_key(self, collection: Collection, entity_id: int) -> str:
        """Idempotency key of a local record, stable across cycles and restarts."""
        return f"{self.replica_id}:{collection.value}:{entity_id}"

    def parse_client_key(self, collection: Collection, client_key: str | None) -> int | None:
        """Local id encoded in a client key issued by this replica.

        Returns:
            The local id, or None if the key belongs to another replica or
            another collection.
        """
        if not client_key:
            return None
        prefix = f"{self.replica_id}:{collection.value}:"
        if not client_key.startswith(prefix):
            return None
        suffix = client_key[len(prefix):]
        return int(suffix) if suffix.isdigit() else None
