"""Sync coordinator for two-way synchronization of collections.

This module provides:
- SyncCoordinator: Runs push-then-pull cycles, one collection at a time
- SYNC_ORDER: Default order in which run_all visits collections

A cycle for one collection:
1. Push: every local record that is unbound, changed since the push cursor
   or left over from a failed push is upserted on the remote
2. Pull: every remote record changed since the pull cursor is matched to a
   local record and resolved (last writer wins)
3. Records that won locally during the pull are pushed again
4. Cursors and the retry set are committed

Failure handling:
    | Failure               | Effect                                         |
    |-----------------------|------------------------------------------------|
    | PerRecordSyncFailure  | Record skipped, retried next cycle             |
    | ConstraintViolation   | Record skipped, retried next cycle             |
    | InvalidFieldValue     | Remote record skipped, pull cursor held        |
    | RemoteUnavailable     | Cycle aborted, no cursor moves                 |
    | DuplicateBinding      | Progress so far committed, then raised         |
    | Cancellation          | Progress so far committed, report.cancelled    |
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from itertools import groupby
from typing import TYPE_CHECKING

from eventsync.core.types import Collection, SyncDirection
from eventsync.store.database import ConstraintViolation, NotFound, StoreError
from eventsync.store.models import InvalidFieldValue, model_for
from eventsync.sync.conflict import ConflictResolver, Outcome
from eventsync.sync.tracker import ChangeTracker
from eventsync.sync.types import (
    CancelCheck,
    CycleInProgressError,
    DuplicateBinding,
    OutgoingRecord,
    PerRecordSyncFailure,
    SyncError,
    SyncReport,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from eventsync.remote.base import RemoteStore
    from eventsync.store.database import EntityStore
    from eventsync.store.models import SyncedEntity
    from eventsync.sync.types import RemoteRecord

logger = logging.getLogger(__name__)

# Referenced collections first
SYNC_ORDER: tuple[Collection, ...] = (
    Collection.VENUES,
    Collection.JOB_TYPE_CONFIGS,
    Collection.VOLUNTEERS,
    Collection.GUESTS,
    Collection.JOBS,
    Collection.COUNTER,
)


def _never_cancelled() -> bool:
    return False


@dataclass
class _CycleState:
    """Bookkeeping of one running cycle."""

    collection: Collection
    report: SyncReport
    push_cursor: int
    pull_cursor: int
    retries: set[int]
    # local id -> last_modified the record was synchronized at
    synced: dict[int, int] = field(default_factory=dict)
    failed: set[int] = field(default_factory=set)
    # Bound ids that must be pushed again next cycle
    retry_ids: set[int] = field(default_factory=set)
    cleared_ids: set[int] = field(default_factory=set)
    # (remote last_modified, applied) per processed remote record
    pull_results: list[tuple[int, bool]] = field(default_factory=list)

    def mark_synced(self, entity_id: int, last_modified: int) -> None:
        self.synced[entity_id] = last_modified
        self.failed.discard(entity_id)
        self.retry_ids.discard(entity_id)
        self.cleared_ids.add(entity_id)

    def mark_failed(self, entity_id: int, bound: bool) -> None:
        self.synced.pop(entity_id, None)
        self.failed.add(entity_id)
        if bound:
            self.retry_ids.add(entity_id)


class SyncCoordinator:
    """Runs sync cycles between the entity store and a remote store.

    Usage:
        store = EntityStore(db_path)
        coordinator = SyncCoordinator(store, HTTPRemote(config))

        report = coordinator.run_cycle(Collection.VENUES)
        results = coordinator.run_all()

    At most one cycle per collection runs at a time; different collections
    may be synchronized from different threads.
    """

    def __init__(
        self,
        store: EntityStore,
        remote: RemoteStore,
        tracker: ChangeTracker | None = None,
        resolver: ConflictResolver | None = None,
    ) -> None:
        self._store = store
        self._remote = remote
        self._tracker = tracker or ChangeTracker(store)
        self._resolver = resolver or ConflictResolver(store, self._tracker)
        self._locks = {collection: threading.Lock() for collection in Collection}

    @property
    def tracker(self) -> ChangeTracker:
        return self._tracker

    def run_all(
        self,
        collections: Iterable[Collection] | None = None,
        cancel_check: CancelCheck | None = None,
    ) -> dict[Collection, SyncReport | SyncError | StoreError]:
        """Run one cycle per collection.

        A failing collection does not stop the others.

        Returns:
            Report, or the error that ended the cycle, per collection.
        """
        results: dict[Collection, SyncReport | SyncError | StoreError] = {}
        for collection in collections or SYNC_ORDER:
            try:
                results[collection] = self.run_cycle(collection, cancel_check)
            except (SyncError, StoreError) as e:
                logger.error(f"Sync of {collection.value} failed: {e}")
                results[collection] = e
        return results

    def run_cycle(self, collection: Collection, cancel_check: CancelCheck | None = None) -> SyncReport:
        """Run one push-then-pull cycle for a collection.

        Args:
            collection: Collection to synchronize.
            cancel_check: Polled between records; returns True to stop.

        Returns:
            Counts of pushed, pulled, skipped and conflicting records.

        Raises:
            CycleInProgressError: If a cycle for the collection is running.
            RemoteUnavailable: If the remote cannot be reached.
            DuplicateBinding: If a remote record matches several local ones.
        """
        lock = self._locks[collection]
        if not lock.acquire(blocking=False):
            raise CycleInProgressError(collection)
        try:
            return self._run_cycle(collection, cancel_check or _never_cancelled)
        finally:
            lock.release()

    def _run_cycle(self, collection: Collection, cancel_check: CancelCheck) -> SyncReport:
        state = _CycleState(
            collection=collection,
            report=SyncReport(collection=collection),
            push_cursor=self._tracker.cursor_for(collection, SyncDirection.PUSH),
            pull_cursor=self._tracker.cursor_for(collection, SyncDirection.PULL),
            retries=self._tracker.pending_retries(collection),
        )
        logger.info(
            f"Starting sync of {collection.value} "
            f"(push cursor {state.push_cursor}, pull cursor {state.pull_cursor})"
        )

        try:
            self._push_phase(state, cancel_check)
            if not state.report.cancelled:
                self._pull_phase(state, cancel_check)
        except DuplicateBinding:
            self._commit(state)
            raise

        self._commit(state)
        logger.info(f"Sync complete: {state.report.summary()}")
        return state.report

    # === Push ===

    def _push_candidates(self, state: _CycleState) -> list[SyncedEntity]:
        collection = state.collection
        candidates: dict[int, SyncedEntity] = {}
        for entity in self._store.list_unbound(collection):
            candidates[entity.id] = entity
        for entity in self._tracker.candidates(collection, state.push_cursor):
            candidates[entity.id] = entity
        for entity in self._store.list_by_ids(collection, state.retries):
            candidates[entity.id] = entity

        # Retry entries of records deleted since
        state.cleared_ids.update(state.retries - candidates.keys())

        return sorted(candidates.values(), key=lambda e: (e.last_modified, e.id))

    def _push_phase(self, state: _CycleState, cancel_check: CancelCheck) -> None:
        candidates = self._push_candidates(state)
        logger.debug(f"{len(candidates)} push candidates for {state.collection.value}")
        for entity in candidates:
            if cancel_check():
                logger.info(f"Sync of {state.collection.value} cancelled during push")
                state.report.cancelled = True
                return
            self._push_record(state, entity)

    def _push_record(self, state: _CycleState, entity: SyncedEntity) -> None:
        """Upsert one local record and bind the acknowledged identity."""
        collection = state.collection
        report = state.report
        record = OutgoingRecord(
            client_key=self._tracker.client_key(collection, entity.id),
            last_modified=entity.last_modified,
            fields=entity.to_fields(),
            remote_id=entity.remote_id,
        )

        try:
            ack = self._remote.upsert(collection, record)
        except PerRecordSyncFailure as e:
            self._record_failure(state, entity, f"push rejected: {e}")
            return

        stamp = entity.last_modified
        if ack.last_modified is not None:
            if ack.last_modified >= entity.last_modified:
                stamp = ack.last_modified
            else:
                logger.warning(
                    f"Remote stamp {ack.last_modified} for {collection.value} #{entity.id} "
                    f"is older than local stamp {entity.last_modified}, keeping local"
                )
        new_stamp = stamp if stamp != entity.last_modified else None

        try:
            if entity.remote_id != ack.remote_id:
                self._store.bind_remote_id(
                    collection,
                    entity.id,
                    ack.remote_id,
                    last_modified=new_stamp,
                    expected=entity.last_modified,
                )
            elif new_stamp is not None:
                self._store.touch_last_modified(
                    collection, entity.id, new_stamp, expected=entity.last_modified
                )
        except NotFound:
            logger.info(f"{collection.value} #{entity.id} was deleted while being pushed")
            report.pushed += 1
            return
        except ConstraintViolation as e:
            self._record_failure(state, entity, f"cannot bind remote id {ack.remote_id}: {e}")
            return

        state.mark_synced(entity.id, stamp)
        report.pushed += 1
        logger.debug(f"Pushed {collection.value} #{entity.id} as {ack.remote_id}")

    def _record_failure(self, state: _CycleState, entity: SyncedEntity, message: str) -> None:
        logger.warning(f"Skipping {state.collection.value} #{entity.id}: {message}")
        state.mark_failed(entity.id, bound=entity.remote_id is not None)
        state.report.skipped += 1
        state.report.errors.append(f"#{entity.id}: {message}")

    # === Pull ===

    def _pull_phase(self, state: _CycleState, cancel_check: CancelCheck) -> None:
        collection = state.collection
        fetched = self._remote.fetch_changed_since(collection, state.pull_cursor)
        records = sorted(
            (r for r in fetched if r.last_modified > state.pull_cursor),
            key=lambda r: (r.last_modified, r.remote_id),
        )
        logger.debug(f"Fetched {len(records)} changed {collection.value} records")

        local_wins: list[int] = []
        for remote in records:
            if cancel_check():
                logger.info(f"Sync of {collection.value} cancelled during pull")
                state.report.cancelled = True
                state.pull_results.append((remote.last_modified, False))
                break
            try:
                applied = self._pull_record(state, remote, local_wins)
            except DuplicateBinding:
                state.pull_results.append((remote.last_modified, False))
                raise
            state.pull_results.append((remote.last_modified, applied))

        # Local versions that won are sent back to the remote
        for entity_id in local_wins:
            if cancel_check():
                state.report.cancelled = True
                break
            entity = self._store.get(collection, entity_id)
            if entity is not None:
                self._push_record(state, entity)

    def _is_dirty(self, state: _CycleState, local: SyncedEntity) -> bool:
        """Whether the local record has changes the remote has not seen."""
        if local.id in state.synced:
            return False
        return (
            local.remote_id is None
            or local.last_modified > state.push_cursor
            or local.id in state.retries
        )

    def _pull_record(self, state: _CycleState, remote: RemoteRecord, local_wins: list[int]) -> bool:
        """Apply one remote record. Returns False if it was skipped."""
        collection = state.collection
        report = state.report
        local = self._resolver.match(collection, remote)

        try:
            if local is None:
                entity = model_for(collection).from_fields(remote.fields)
                entity.remote_id = remote.remote_id
                assigned = self._store.insert(entity, last_modified=remote.last_modified)
                state.mark_synced(assigned.id, remote.last_modified)
                report.pulled += 1
                logger.debug(f"Pulled new {collection.value} {remote.remote_id} as #{assigned.id}")
                return True

            resolution = self._resolver.resolve(local, remote)
            dirty = self._is_dirty(state, local)

            if resolution.outcome is Outcome.REMOTE_WINS:
                local.apply_fields(remote.fields)
                local.remote_id = remote.remote_id
                local.last_modified = remote.last_modified
                self._store.update(local)
                state.mark_synced(local.id, remote.last_modified)
                report.pulled += 1
            else:
                if resolution.bind_remote_id:
                    self._store.bind_remote_id(collection, local.id, remote.remote_id)
                if resolution.outcome is Outcome.LOCAL_WINS:
                    state.retry_ids.add(local.id)
                    local_wins.append(local.id)
                else:
                    state.mark_synced(local.id, local.last_modified)
        except (InvalidFieldValue, ConstraintViolation, NotFound) as e:
            logger.warning(f"Skipping remote {collection.value} {remote.remote_id}: {e}")
            report.skipped += 1
            report.errors.append(f"{remote.remote_id}: {e}")
            return False

        if dirty and resolution.outcome is not Outcome.ALREADY_SYNCED:
            report.conflicts += 1
            logger.info(
                f"Conflict on {collection.value} #{local.id} resolved as {resolution.outcome.name}"
            )
        return True

    # === Commit ===

    def _push_target(self, state: _CycleState) -> int:
        """Highest stamp of a pushed record with nothing unsettled below it.

        Failed records neither advance the cursor nor hold it back: they
        come back next cycle as unbound records or through the retry set.
        A record edited during the push stops the walk.
        """
        target = state.push_cursor
        changed = self._store.list_modified_since(state.collection, state.push_cursor)
        for stamp, records in groupby(changed, key=lambda e: e.last_modified):
            pushed = False
            for entity in records:
                if state.synced.get(entity.id) == entity.last_modified:
                    pushed = True
                elif entity.id not in state.failed:
                    return target
            if pushed:
                target = stamp
        return target

    def _pull_target(self, state: _CycleState) -> int:
        """Highest remote stamp below the first record that was not applied."""
        hold = min((stamp for stamp, applied in state.pull_results if not applied), default=None)
        target = state.pull_cursor
        for stamp, applied in state.pull_results:
            if applied and (hold is None or stamp < hold):
                target = max(target, stamp)
        return target

    def _commit(self, state: _CycleState) -> None:
        collection = state.collection
        self._tracker.mark_retry(collection, state.retry_ids)
        self._tracker.clear_retry(collection, state.cleared_ids - state.retry_ids)
        state.report.push_cursor = self._tracker.advance(
            collection, SyncDirection.PUSH, self._push_target(state)
        )
        state.report.pull_cursor = self._tracker.advance(
            collection, SyncDirection.PULL, self._pull_target(state)
        )
