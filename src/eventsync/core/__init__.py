"""Core module - Shared types and configuration."""

from eventsync.core.config import RemoteConfig
from eventsync.core.types import Collection, SyncDirection, now_millis

__all__ = [
    # Config
    "RemoteConfig",
    # Types
    "Collection",
    "SyncDirection",
    "now_millis",
]
