"""Local identity of stored entities.

An entity either has no local identity yet (it was never inserted) or has
been assigned one by the store. The two cases are distinct types instead of
an overloaded integer sentinel.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from eventsync.store.models import SyncedEntity


@dataclass(frozen=True)
class Unassigned:
    """The entity has not been inserted; the store will assign an id."""


@dataclass(frozen=True)
class Assigned:
    """The entity has a local id."""

    id: int


LocalIdentity = Unassigned | Assigned

UNASSIGNED = Unassigned()


def identity_of(entity: SyncedEntity) -> LocalIdentity:
    """Get the local identity of an entity."""
    if entity.id is None:
        return UNASSIGNED
    return Assigned(entity.id)
