"""Tests for the Open Library clients."""
import asyncio
from unittest import mock

import httpx
import pytest
import requests

from shelfkeeper.async_client import AsyncOpenLibraryClient, PrefetchedCatalog
from shelfkeeper.client import OpenLibraryClient
from shelfkeeper.resolver import BookResolver
from shelfkeeper.errors import NotFoundError, UpstreamUnavailableError

WORK = {"key": "/works/OL1W", "title": "Dune"}


class DummyResponse:
    def __init__(self, payload=None, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


def make_client(*responses, max_retries=3):
    client = OpenLibraryClient(base_url="https://ol.test/", max_retries=max_retries, base_backoff=0)
    client.session.get = mock.Mock(side_effect=list(responses))
    return client


def test_fetch_work_success():
    """Test that a 200 returns the decoded document."""
    client = make_client(DummyResponse(WORK))

    assert client.fetch_work("OL1W") == WORK
    client.session.get.assert_called_once_with("https://ol.test/works/OL1W.json", timeout=3)


def test_user_agent_header():
    client = OpenLibraryClient(user_agent="shelfkeeper-tests")
    assert client.session.headers["User-Agent"] == "shelfkeeper-tests"
    client.close()


def test_fetch_work_not_found_is_not_retried():
    client = make_client(DummyResponse(status_code=404))

    with pytest.raises(NotFoundError):
        client.fetch_work("OL404W")
    assert client.session.get.call_count == 1


def test_fetch_work_retries_server_errors():
    """Test retry on 5xx and 429 until success."""
    client = make_client(
        DummyResponse(status_code=503),
        DummyResponse(status_code=429),
        DummyResponse(WORK),
    )

    assert client.fetch_work("OL1W") == WORK
    assert client.session.get.call_count == 3


def test_fetch_work_gives_up_after_retries():
    client = make_client(
        requests.exceptions.Timeout(),
        requests.exceptions.ConnectionError("refused"),
        DummyResponse(status_code=500),
    )

    with pytest.raises(UpstreamUnavailableError):
        client.fetch_work("OL1W")
    assert client.session.get.call_count == 3


def test_fetch_work_client_error_is_unavailable():
    client = make_client(DummyResponse(status_code=400))

    with pytest.raises(UpstreamUnavailableError):
        client.fetch_work("bad id")
    assert client.session.get.call_count == 1


def test_fetch_work_bad_json():
    client = make_client(DummyResponse(ValueError("not json")))

    with pytest.raises(UpstreamUnavailableError):
        client.fetch_work("OL1W")


def test_fetch_work_retries_broken_transfers():
    """Truncated bodies and redirect loops are retried like connection errors."""
    client = make_client(
        requests.exceptions.ChunkedEncodingError("connection broken"),
        requests.exceptions.TooManyRedirects(),
        DummyResponse(WORK),
    )

    assert client.fetch_work("OL1W") == WORK
    assert client.session.get.call_count == 3


def test_fetch_work_broken_transfers_exhaust_to_unavailable():
    client = make_client(
        requests.exceptions.ContentDecodingError("bad gzip"),
        requests.exceptions.ChunkedEncodingError("connection broken"),
        max_retries=2,
    )

    with pytest.raises(UpstreamUnavailableError):
        client.fetch_work("OL1W")
    assert client.session.get.call_count == 2


def test_stale_book_served_when_transfer_breaks(db, catalog, clock):
    """A stale local book survives a catalog response that dies mid-body."""
    original = BookResolver(db, catalog, clock=clock).resolve("OL1W", "Dune", ["Frank Herbert"])
    clock.advance(days=30)
    client = make_client(
        requests.exceptions.ChunkedEncodingError("connection broken"),
        requests.exceptions.ChunkedEncodingError("connection broken"),
        max_retries=2,
    )

    assert BookResolver(db, client, clock=clock).resolve("OL1W") == original
    assert db.get_book(original.id).updated_at == original.updated_at


def test_context_manager_closes_session():
    with OpenLibraryClient() as client:
        client.session.close = mock.Mock()
    client.session.close.assert_called_once()


def mock_transport():
    def handler(request):
        if request.url.path == "/works/OL1W.json":
            return httpx.Response(200, json=WORK)
        if request.url.path == "/works/OL500W.json":
            return httpx.Response(500)
        if request.url.path == "/works/OLDOWNW.json":
            raise httpx.ConnectError("down", request=request)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def test_async_fetch_many():
    """Test parallel fetches with per-id results and errors."""
    async def run():
        async with AsyncOpenLibraryClient(base_url="https://ol.test", transport=mock_transport()) as client:
            return await client.fetch_many(["OL1W", "OL404W", "OL500W", "OLDOWNW", "OL1W"])

    results = asyncio.run(run())

    assert list(results) == ["OL1W", "OL404W", "OL500W", "OLDOWNW"]
    assert results["OL1W"] == WORK
    assert isinstance(results["OL404W"], NotFoundError)
    assert isinstance(results["OL500W"], UpstreamUnavailableError)
    assert isinstance(results["OLDOWNW"], UpstreamUnavailableError)


def test_async_fetch_work_not_found():
    async def run():
        async with AsyncOpenLibraryClient(base_url="https://ol.test", transport=mock_transport()) as client:
            await client.fetch_work("OL404W")

    with pytest.raises(NotFoundError):
        asyncio.run(run())


def test_prefetched_catalog():
    catalog = PrefetchedCatalog({
        "OL1W": WORK,
        "OL404W": NotFoundError("Book OL404W not found in Open Library"),
    })

    assert catalog.fetch_work("OL1W") == WORK
    with pytest.raises(NotFoundError):
        catalog.fetch_work("OL404W")
    with pytest.raises(UpstreamUnavailableError):
        catalog.fetch_work("OL2W")
