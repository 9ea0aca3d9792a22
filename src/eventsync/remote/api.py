"""HTTP client for the remote store API.

This module provides:
- HTTPRemote: RemoteStore implementation over HTTP/JSON
- RemoteError, AuthenticationError, RateLimitError: API exceptions

Endpoints:
    GET  /health
    GET  /api/collections/{collection}/records?since=<millis>
    POST /api/collections/{collection}/records
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from eventsync.core.config import RemoteConfig
from eventsync.core.types import Collection
from eventsync.remote.retry import DEFAULT_MAX_BACKOFF, retry_with_backoff
from eventsync.sync.types import (
    MalformedRecord,
    OutgoingRecord,
    PerRecordSyncFailure,
    RemoteRecord,
    RemoteUnavailable,
    UpsertAck,
)

logger = logging.getLogger(__name__)


class RemoteError(PerRecordSyncFailure):
    """The remote rejected a request (4xx other than 401 and 429)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(RemoteUnavailable):
    """Authentication failed."""


class RateLimitError(RemoteUnavailable):
    """The remote kept answering 429 Too Many Requests."""


def _detail(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or default
    if isinstance(data, dict):
        return str(data.get("detail", default))
    return default


class HTTPRemote:
    """HTTP client for the remote store."""

    def __init__(self, config: RemoteConfig, transport: httpx.BaseTransport | None = None) -> None:
        """Initialize the client.

        Args:
            config: Remote URL, token and timeouts.
            transport: Optional httpx transport, for tests.
        """
        self._config = config
        self._client = httpx.Client(
            base_url=config.remote_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers={"Authorization": f"Bearer {config.token}"},
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPRemote:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token")
        if response.status_code == 429:
            raise RateLimitError("Rate limit exceeded")
        if response.status_code >= 500:
            raise RemoteUnavailable(
                f"Remote error {response.status_code}: {_detail(response, 'Server error')}"
            )
        if response.status_code >= 400:
            raise RemoteError(_detail(response, "Unknown error"), response.status_code)
        return response

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying while the remote rate-limits us."""

        def send() -> httpx.Response:
            try:
                response = self._client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                raise RemoteUnavailable(f"Cannot reach {self._config.remote_url}: {e}") from e
            return self._handle_response(response)

        return retry_with_backoff(
            send,
            max_retries=self._config.rate_limit_retries,
            initial_backoff=self._config.rate_limit_backoff,
            max_backoff=DEFAULT_MAX_BACKOFF,
            retryable_exceptions=(RateLimitError,),
        )

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the remote is reachable.

        Returns:
            True if the remote answered 200.
        """
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Records ===

    def fetch_changed_since(self, collection: Collection, cursor: int) -> list[RemoteRecord]:
        """Fetch records of a collection modified after ``cursor``.

        Args:
            collection: Collection to fetch.
            cursor: Epoch millis; only newer records are returned.

        Entries without a usable remote id or stamp are logged and left out;
        they can never be matched or ordered.

        Returns:
            Changed records, in the order the remote sent them.
        """
        response = self._request(
            "GET",
            self._config.records_path(collection),
            params={"since": cursor},
        )
        records: list[RemoteRecord] = []
        for item in response.json().get("records", []):
            try:
                records.append(RemoteRecord.from_dict(item))
            except MalformedRecord as e:
                logger.error(f"Ignoring {collection.value} entry: {e}")
        logger.debug(f"Fetched {len(records)} {collection.value} records since {cursor}")
        return records

    def upsert(self, collection: Collection, record: OutgoingRecord) -> UpsertAck:
        """Create or update one record.

        Returns:
            Remote id and the stamp the remote stored.
        """
        response = self._request(
            "POST",
            self._config.records_path(collection),
            json=record.to_dict(),
        )
        return UpsertAck.from_dict(response.json())
