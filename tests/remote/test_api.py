"""Tests for the HTTP remote store client."""

import httpx
import pytest

from eventsync.core.config import RemoteConfig
from eventsync.core.types import Collection
from eventsync.remote.api import AuthenticationError, HTTPRemote, RateLimitError, RemoteError
from eventsync.sync.types import OutgoingRecord, PerRecordSyncFailure, RemoteUnavailable

BASE_URL = "http://remote.test"
RECORDS_URL = f"{BASE_URL}/api/collections/venues/records"


def make_config(retries: int = 2) -> RemoteConfig:
    """Create a RemoteConfig for testing (no backoff delay)."""
    return RemoteConfig(
        remote_url=BASE_URL,
        token="token123",
        rate_limit_retries=retries,
        rate_limit_backoff=0.0,
    )


@pytest.fixture
def client() -> HTTPRemote:
    remote = HTTPRemote(make_config())
    yield remote
    remote.close()


def outgoing(remote_id: str | None = None) -> OutgoingRecord:
    return OutgoingRecord(
        client_key="replica:venues:1",
        last_modified=1_000,
        fields={"name": "Main Hall"},
        remote_id=remote_id,
    )


class TestHealthCheck:
    """Tests for the health endpoint."""

    def test_healthy(self, httpx_mock, client: HTTPRemote) -> None:
        """Should return True on 200."""
        httpx_mock.add_response(url=f"{BASE_URL}/health", json={"status": "ok"})
        assert client.health_check() is True

    def test_unreachable(self, httpx_mock, client: HTTPRemote) -> None:
        """Should return False when the remote cannot be reached."""
        httpx_mock.add_exception(httpx.ConnectError("refused"))
        assert client.health_check() is False


class TestFetchChangedSince:
    """Tests for fetching changed records."""

    def test_fetch_parses_records(self, httpx_mock, client: HTTPRemote) -> None:
        """Should send the cursor and parse each record."""
        httpx_mock.add_response(
            url=f"{RECORDS_URL}?since=500",
            json={
                "records": [
                    {
                        "remote_id": "r1",
                        "last_modified": 600,
                        "client_key": None,
                        "fields": {"name": "Main Hall"},
                    }
                ]
            },
        )

        records = client.fetch_changed_since(Collection.VENUES, 500)

        assert len(records) == 1
        assert records[0].remote_id == "r1"
        assert records[0].last_modified == 600
        assert records[0].fields == {"name": "Main Hall"}

    def test_malformed_entry_is_left_out(self, httpx_mock, client: HTTPRemote) -> None:
        """One unreadable entry does not fail the whole fetch."""
        httpx_mock.add_response(
            url=f"{RECORDS_URL}?since=0",
            json={
                "records": [
                    {"remote_id": "r1", "fields": {"name": "No stamp"}},
                    {"remote_id": "r2", "last_modified": 700, "fields": {"name": "Cellar"}},
                ]
            },
        )

        records = client.fetch_changed_since(Collection.VENUES, 0)

        assert [r.remote_id for r in records] == ["r2"]

    def test_sends_bearer_token(self, httpx_mock, client: HTTPRemote) -> None:
        """Should authenticate every request."""
        httpx_mock.add_response(url=f"{RECORDS_URL}?since=0", json={"records": []})

        client.fetch_changed_since(Collection.VENUES, 0)

        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer token123"


class TestUpsert:
    """Tests for pushing records."""

    def test_upsert_returns_ack(self, httpx_mock, client: HTTPRemote) -> None:
        """Should post the record and return the acknowledged identity."""
        httpx_mock.add_response(
            method="POST", url=RECORDS_URL, json={"remote_id": "r9", "last_modified": 1_200}
        )

        ack = client.upsert(Collection.VENUES, outgoing())

        assert ack.remote_id == "r9"
        assert ack.last_modified == 1_200
        request = httpx_mock.get_request()
        assert b'"client_key":"replica:venues:1"' in request.content.replace(b" ", b"")

    def test_upsert_without_restamp(self, httpx_mock, client: HTTPRemote) -> None:
        """A missing stamp in the ack means the remote kept ours."""
        httpx_mock.add_response(method="POST", url=RECORDS_URL, json={"remote_id": "r9"})
        assert client.upsert(Collection.VENUES, outgoing("r9")).last_modified is None


class TestErrorMapping:
    """Tests for status code handling."""

    def test_unauthorized(self, httpx_mock, client: HTTPRemote) -> None:
        """401 aborts the whole cycle."""
        httpx_mock.add_response(method="POST", url=RECORDS_URL, status_code=401)
        with pytest.raises(AuthenticationError):
            client.upsert(Collection.VENUES, outgoing())

    def test_rejected_record(self, httpx_mock, client: HTTPRemote) -> None:
        """Other 4xx responses reject only the record."""
        httpx_mock.add_response(
            method="POST", url=RECORDS_URL, status_code=422, json={"detail": "name missing"}
        )

        with pytest.raises(RemoteError) as exc_info:
            client.upsert(Collection.VENUES, outgoing())

        assert isinstance(exc_info.value, PerRecordSyncFailure)
        assert exc_info.value.status_code == 422
        assert "name missing" in str(exc_info.value)

    def test_server_error(self, httpx_mock, client: HTTPRemote) -> None:
        """5xx responses mean the remote is unavailable."""
        httpx_mock.add_response(method="POST", url=RECORDS_URL, status_code=503, text="down")
        with pytest.raises(RemoteUnavailable):
            client.upsert(Collection.VENUES, outgoing())

    def test_transport_error(self, httpx_mock, client: HTTPRemote) -> None:
        """Connection failures mean the remote is unavailable."""
        httpx_mock.add_exception(httpx.ConnectError("refused"))
        with pytest.raises(RemoteUnavailable):
            client.fetch_changed_since(Collection.VENUES, 0)


class TestRateLimiting:
    """Tests for 429 handling."""

    def test_retries_after_rate_limit(self, httpx_mock, client: HTTPRemote) -> None:
        """Should retry until the remote accepts the request."""
        httpx_mock.add_response(method="POST", url=RECORDS_URL, status_code=429)
        httpx_mock.add_response(method="POST", url=RECORDS_URL, status_code=429)
        httpx_mock.add_response(method="POST", url=RECORDS_URL, json={"remote_id": "r1"})

        ack = client.upsert(Collection.VENUES, outgoing())

        assert ack.remote_id == "r1"
        assert len(httpx_mock.get_requests()) == 3

    def test_gives_up_after_retries(self, httpx_mock) -> None:
        """Should raise RateLimitError once retries are exhausted."""
        httpx_mock.add_response(method="POST", url=RECORDS_URL, status_code=429)
        httpx_mock.add_response(method="POST", url=RECORDS_URL, status_code=429)

        with HTTPRemote(make_config(retries=1)) as client:
            with pytest.raises(RateLimitError):
                client.upsert(Collection.VENUES, outgoing())

        assert len(httpx_mock.get_requests()) == 2
