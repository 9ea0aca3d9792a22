"""Shared fixtures: a temporary entity store and an in-memory remote store."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from eventsync.core.types import Collection
from eventsync.store.database import EntityStore
from eventsync.sync.coordinator import SyncCoordinator
from eventsync.sync.types import (
    OutgoingRecord,
    PerRecordSyncFailure,
    RemoteRecord,
    RemoteUnavailable,
    UpsertAck,
)

# Collections whose names the remote keeps unique
UNIQUE_NAME_COLLECTIONS = {Collection.VENUES, Collection.JOB_TYPE_CONFIGS}


class FakeClock:
    """Settable millisecond clock."""

    def __init__(self, now: int = 1_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class FakeRemote:
    """In-memory remote store.

    Upserts are idempotent on remote id, then on client key. Names are
    unique in venues and job type configs, as on the real remote.
    """

    def __init__(self) -> None:
        self.records: dict[Collection, dict[str, RemoteRecord]] = defaultdict(dict)
        self.upserts: list[tuple[Collection, OutgoingRecord]] = []
        self.fetches: list[tuple[Collection, int]] = []
        self.available = True
        self.healthy = True
        self.closed = False
        # Rejects a record with PerRecordSyncFailure when it returns True
        self.reject: Callable[[OutgoingRecord], bool] | None = None
        # Stamp stored for every upsert instead of the pushed one
        self.restamp: int | None = None
        # Raise RemoteUnavailable after storing this many more upserts
        self.crash_after: int | None = None
        # Called after a record is stored, before the ack is returned
        self.on_upsert: Callable[[Collection, OutgoingRecord], None] | None = None
        self._next_id = 1

    def new_remote_id(self) -> str:
        remote_id = f"r{self._next_id}"
        self._next_id += 1
        return remote_id

    def add(
        self,
        collection: Collection,
        fields: dict,
        last_modified: int,
        remote_id: str | None = None,
    ) -> RemoteRecord:
        """Create a record as if another replica had pushed it."""
        record = RemoteRecord(
            remote_id=remote_id or self.new_remote_id(),
            last_modified=last_modified,
            fields=dict(fields),
        )
        self.records[collection][record.remote_id] = record
        return record

    def by_name(self, collection: Collection, name: str) -> list[RemoteRecord]:
        return [r for r in self.records[collection].values() if r.fields.get("name") == name]

    def health_check(self) -> bool:
        return self.healthy

    def close(self) -> None:
        self.closed = True

    def fetch_changed_since(self, collection: Collection, cursor: int) -> list[RemoteRecord]:
        if not self.available:
            raise RemoteUnavailable("remote is down")
        self.fetches.append((collection, cursor))
        return [r for r in self.records[collection].values() if r.last_modified > cursor]

    def upsert(self, collection: Collection, record: OutgoingRecord) -> UpsertAck:
        if not self.available:
            raise RemoteUnavailable("remote is down")
        self.upserts.append((collection, record))
        if self.reject is not None and self.reject(record):
            raise PerRecordSyncFailure(f"rejected {record.client_key}")

        stored = self.records[collection]
        remote_id = record.remote_id
        if remote_id is None:
            remote_id = next(
                (r.remote_id for r in stored.values() if r.client_key == record.client_key),
                None,
            )
        if remote_id is None:
            remote_id = self.new_remote_id()

        name = record.fields.get("name")
        if collection in UNIQUE_NAME_COLLECTIONS and any(
            r.fields.get("name") == name and r.remote_id != remote_id for r in stored.values()
        ):
            raise PerRecordSyncFailure(f"name {name!r} already exists")

        stamp = self.restamp if self.restamp is not None else record.last_modified
        stored[remote_id] = RemoteRecord(
            remote_id=remote_id,
            last_modified=stamp,
            fields=dict(record.fields),
            client_key=record.client_key,
        )

        if self.on_upsert is not None:
            self.on_upsert(collection, record)
        if self.crash_after is not None:
            self.crash_after -= 1
            if self.crash_after <= 0:
                self.crash_after = None
                raise RemoteUnavailable("connection lost")
        return UpsertAck(remote_id=remote_id, last_modified=stamp)


@pytest.fixture
def clock() -> FakeClock:
    """Clock used by the store for new timestamps."""
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> Iterator[EntityStore]:
    """Create a test entity store."""
    entity_store = EntityStore(tmp_path / "eventsync.db", clock=clock)
    yield entity_store
    entity_store.close()


@pytest.fixture
def remote() -> FakeRemote:
    """Create an empty in-memory remote."""
    return FakeRemote()


@pytest.fixture
def coordinator(store: EntityStore, remote: FakeRemote) -> SyncCoordinator:
    """Create a coordinator between the test store and remote."""
    return SyncCoordinator(store, remote)
