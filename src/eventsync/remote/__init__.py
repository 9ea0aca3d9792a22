"""Remote module - Access to the canonical remote store."""

from eventsync.remote.api import AuthenticationError, HTTPRemote, RateLimitError, RemoteError
from eventsync.remote.base import RemoteStore
from eventsync.remote.retry import retry_with_backoff

__all__ = [
    "RemoteStore",
    "HTTPRemote",
    "RemoteError",
    "AuthenticationError",
    "RateLimitError",
    "retry_with_backoff",
]
