"""Matching and conflict resolution for pulled records.

Strategy is last-writer-wins by ``last_modified``:
1. Remote newer -> remote values overwrite the local record
2. Local newer -> local record is pushed again
3. Equal stamps -> already converged, nothing to do

Binding a remote id to an unbound local record is independent of which side
wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from eventsync.store.models import Counter, model_for
from eventsync.sync.types import DuplicateBinding

if TYPE_CHECKING:
    from eventsync.core.types import Collection
    from eventsync.store.database import EntityStore
    from eventsync.store.models import SyncedEntity
    from eventsync.sync.tracker import ChangeTracker
    from eventsync.sync.types import RemoteRecord

logger = logging.getLogger(__name__)


class Outcome(Enum):
    """Which side's values survive."""

    REMOTE_WINS = auto()  # Overwrite local with remote values
    LOCAL_WINS = auto()  # Push local values again
    ALREADY_SYNCED = auto()  # Same version on both sides


@dataclass(frozen=True)
class Resolution:
    """Result of resolving a local record against a remote one."""

    outcome: Outcome
    bind_remote_id: bool = False  # Local record is not bound yet


class ConflictResolver:
    """Matches remote records to local ones and picks a winner."""

    def __init__(self, store: EntityStore, tracker: ChangeTracker) -> None:
        self._store = store
        self._tracker = tracker

    def match(self, collection: Collection, remote: RemoteRecord) -> SyncedEntity | None:
        """Find the local record a remote record corresponds to.

        Tried in order: bound remote id, a client key issued by this replica,
        then the natural key among records that are not bound yet.

        Raises:
            DuplicateBinding: If several unbound local records share the
                remote record's natural key.
        """
        local = self._store.get_by_remote_id(collection, remote.remote_id)
        if local is not None:
            return local

        local_id = self._tracker.parse_client_key(collection, remote.client_key)
        if local_id is not None:
            local = self._store.get(collection, local_id)
            if local is not None and local.remote_id is None:
                logger.debug(
                    f"Matched {collection.value} {remote.remote_id} to #{local_id} by client key"
                )
                return local

        model = model_for(collection)
        if model is Counter:
            key = None
        elif model.__natural_key__ is None:
            return None
        else:
            key = remote.fields.get(model.__natural_key__)
            if key is None:
                return None

        matches = self._store.find_by_natural_key(collection, key)
        if len(matches) > 1:
            raise DuplicateBinding(collection, remote.remote_id, [m.id for m in matches])
        return matches[0] if matches else None

    def resolve(self, local: SyncedEntity, remote: RemoteRecord) -> Resolution:
        """Decide which version of a matched record wins."""
        if remote.last_modified > local.last_modified:
            outcome = Outcome.REMOTE_WINS
        elif remote.last_modified < local.last_modified:
            outcome = Outcome.LOCAL_WINS
        else:
            outcome = Outcome.ALREADY_SYNCED
        return Resolution(outcome=outcome, bind_remote_id=local.remote_id is None)
