"""Shared types for eventsync.

This module defines the enums used by the store, the sync engine and the CLI.
"""

from __future__ import annotations

import time
from enum import Enum


class Collection(str, Enum):
    """An entity collection of the local replica.

    The value is the table name, which is also the collection name
    used on the wire when talking to the remote store.
    """

    GUESTS = "guests"
    VOLUNTEERS = "volunteers"
    JOBS = "jobs"
    JOB_TYPE_CONFIGS = "job_type_configs"
    VENUES = "venues"
    COUNTER = "people_counter"

    @classmethod
    def parse(cls, value: str) -> Collection:
        """Look up a collection by value or by member name (case-insensitive)."""
        normalized = value.strip().lower().replace("-", "_")
        for member in cls:
            if normalized in (member.value, member.name.lower()):
                return member
        raise ValueError(f"Unknown collection: {value}")


class SyncDirection(str, Enum):
    """Direction a sync cursor tracks."""

    PUSH = "push"
    PULL = "pull"


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
