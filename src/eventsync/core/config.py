"""Connection settings for the remote store."""

from __future__ import annotations

from dataclasses import dataclass

from eventsync.core.types import Collection


@dataclass
class RemoteConfig:
    """How to reach the remote canonical store.

    Attributes:
        remote_url: Base URL of the remote API (e.g., "https://sheets-bridge.example.com").
        token: Bearer token sent with every request.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
        rate_limit_retries: Retries after a 429 response before giving up.
        rate_limit_backoff: Initial delay in seconds between rate-limit retries.
    """

    remote_url: str
    token: str
    timeout: float = 30.0
    verify_ssl: bool = True
    rate_limit_retries: int = 2
    rate_limit_backoff: float = 1.0

    def __post_init__(self) -> None:
        self.remote_url = self.remote_url.rstrip("/")
        if not self.remote_url.startswith(("http://", "https://")):
            raise ValueError(f"Remote URL must start with http:// or https://: {self.remote_url}")
        if self.timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {self.timeout}")
        if self.rate_limit_retries < 0:
            raise ValueError(f"Rate limit retries cannot be negative, got {self.rate_limit_retries}")

    @property
    def is_secure(self) -> bool:
        """Whether the token travels over HTTPS."""
        return self.remote_url.startswith("https://")

    def records_path(self, collection: Collection) -> str:
        """API path of a collection's records, relative to ``remote_url``."""
        return f"/api/collections/{collection.value}/records"
