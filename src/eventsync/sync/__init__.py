"""Sync module - Two-way synchronization of the local replica."""

from eventsync.sync.conflict import ConflictResolver, Outcome, Resolution
from eventsync.sync.coordinator import SYNC_ORDER, SyncCoordinator
from eventsync.sync.tracker import ChangeTracker
from eventsync.sync.types import (
    CycleInProgressError,
    DuplicateBinding,
    MalformedRecord,
    OutgoingRecord,
    PerRecordSyncFailure,
    RemoteRecord,
    RemoteUnavailable,
    SyncError,
    SyncReport,
    UpsertAck,
)

__all__ = [
    # Coordinator
    "SyncCoordinator",
    "SYNC_ORDER",
    "ChangeTracker",
    # Conflicts
    "ConflictResolver",
    "Outcome",
    "Resolution",
    # Types
    "SyncReport",
    "RemoteRecord",
    "OutgoingRecord",
    "UpsertAck",
    # Errors
    "SyncError",
    "RemoteUnavailable",
    "PerRecordSyncFailure",
    "DuplicateBinding",
    "MalformedRecord",
    "CycleInProgressError",
]
