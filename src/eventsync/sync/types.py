"""Shared types and dataclasses for sync cycles.

This module provides:
- SyncError and its subclasses: Exception classes raised by a cycle
- RemoteRecord, OutgoingRecord, UpsertAck: Records exchanged with the remote
- SyncReport: Result of one sync cycle
- CancelCheck: Type alias for cancellation callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from eventsync.core.types import Collection


class SyncError(Exception):
    """Base exception for sync errors."""


class RemoteUnavailable(SyncError):
    """The remote store cannot be reached; the whole cycle is aborted."""


class PerRecordSyncFailure(SyncError):
    """The remote rejected a single record; the cycle continues without it."""


class MalformedRecord(PerRecordSyncFailure):
    """A remote record lacks an identity or a version stamp."""


class DuplicateBinding(SyncError):
    """More than one local record matches a remote record.

    Attributes:
        collection: Collection being synchronized.
        remote_id: Remote id of the ambiguous record.
        local_ids: Local ids that all match it.
    """

    def __init__(self, collection: Collection, remote_id: str, local_ids: list[int]) -> None:
        self.collection = collection
        self.remote_id = remote_id
        self.local_ids = local_ids
        super().__init__(
            f"{collection.value}: remote record {remote_id} matches local records {local_ids}"
        )


class CycleInProgressError(SyncError):
    """A sync cycle for this collection is already running."""

    def __init__(self, collection: Collection) -> None:
        self.collection = collection
        super().__init__(f"A sync cycle for {collection.value} is already running")


@dataclass(frozen=True)
class RemoteRecord:
    """A record as returned by the remote store.

    Attributes:
        remote_id: Identity assigned by the remote.
        last_modified: Version stamp (epoch millis).
        fields: Synchronized fields, JSON-compatible.
        client_key: Idempotency key the record was pushed with, if any.
    """

    remote_id: str
    last_modified: int
    fields: dict[str, Any] = field(default_factory=dict)
    client_key: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteRecord:
        """Create from a JSON response entry.

        Raises:
            MalformedRecord: If the entry has no usable remote id, stamp or fields.
        """
        try:
            remote_id = data["remote_id"]
            last_modified = int(data["last_modified"])
            fields = data.get("fields") or {}
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedRecord(f"unreadable remote record {data!r}: {e!r}") from e
        if remote_id is None or remote_id == "" or not isinstance(fields, dict):
            raise MalformedRecord(f"unreadable remote record {data!r}")
        return cls(
            remote_id=str(remote_id),
            last_modified=last_modified,
            fields=dict(fields),
            client_key=data.get("client_key"),
        )


@dataclass(frozen=True)
class OutgoingRecord:
    """A local record being pushed.

    Attributes:
        client_key: Stable idempotency key of the local record.
        last_modified: Local version stamp.
        fields: Synchronized fields, JSON-compatible.
        remote_id: Remote identity, None on the first push.
    """

    client_key: str
    last_modified: int
    fields: dict[str, Any]
    remote_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "remote_id": self.remote_id,
            "client_key": self.client_key,
            "last_modified": self.last_modified,
            "fields": self.fields,
        }


@dataclass(frozen=True)
class UpsertAck:
    """Acknowledgement of a pushed record.

    Attributes:
        remote_id: Identity assigned (or kept) by the remote.
        last_modified: Version stamp stored by the remote, if it re-stamped the record.
    """

    remote_id: str
    last_modified: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UpsertAck:
        stamp = data.get("last_modified")
        return cls(
            remote_id=str(data["remote_id"]),
            last_modified=int(stamp) if stamp is not None else None,
        )


@dataclass
class SyncReport:
    """Result of one sync cycle for one collection.

    Attributes:
        collection: Collection that was synchronized.
        pushed: Records acknowledged by the remote.
        pulled: Remote records written to the local store.
        skipped: Records left for the next cycle after a per-record failure.
        conflicts: Records changed on both sides since the last cycle.
        cancelled: The cycle stopped early on request.
        errors: Messages of the per-record failures.
        push_cursor: Push cursor after the cycle.
        pull_cursor: Pull cursor after the cycle.
    """

    collection: Collection
    pushed: int = 0
    pulled: int = 0
    skipped: int = 0
    conflicts: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)
    push_cursor: int = 0
    pull_cursor: int = 0

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def summary(self) -> str:
        """One-line human readable summary."""
        text = (
            f"{self.collection.value}: {self.pushed} pushed, {self.pulled} pulled, "
            f"{self.skipped} skipped, {self.conflicts} conflicts"
        )
        if self.cancelled:
            text += " (cancelled)"
        return text


# Type alias for cancellation checks; returns True when the cycle should stop
CancelCheck = Callable[[], bool]
