"""Change notifications emitted by the entity store.

Readers that display live data (lists, counters) subscribe to the store and
get one CollectionChanged event per committed mutation. Sync correctness
does not depend on these events.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto

from eventsync.core.types import Collection

logger = logging.getLogger(__name__)


class ChangeAction(Enum):
    """Kind of mutation that was committed."""

    INSERTED = auto()
    UPDATED = auto()
    DELETED = auto()


@dataclass(frozen=True)
class CollectionChanged:
    """A committed change to one collection.

    Attributes:
        collection: The collection that changed.
        action: What kind of mutation was committed.
        ids: Local ids affected; empty when the whole collection was cleared.
    """

    collection: Collection
    action: ChangeAction
    ids: tuple[int, ...] = field(default_factory=tuple)


ChangeListener = Callable[[CollectionChanged], None]


class ChangeNotifier:
    """Thread-safe fan-out of CollectionChanged events to listeners."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: list[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A function that removes the listener again.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: CollectionChanged) -> None:
        """Deliver an event to every listener.

        A failing listener is logged and does not prevent delivery to the
        others.
        """
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Change listener failed for {event.collection.value}")
