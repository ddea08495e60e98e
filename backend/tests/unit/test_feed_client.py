"""Tests for the outcome feed client using httpx.MockTransport."""

import asyncio
from decimal import Decimal

import httpx
import pytest

from betledger.models import Category
from betledger.services.feed import (
    FeedAPIError,
    FeedClient,
    FeedConfig,
    FeedNotFoundError,
    FeedRateLimitError,
    FeedTimeoutError,
)

BOOK = {
    "marketId": "1.234",
    "status": "CLOSED",
    "winner": 7337,
    "runners": [
        {
            "selectionId": 7337,
            "runnerName": "India",
            "back": [{"price": 1.9, "size": 100}],
            "lay": [{"price": 1.92, "size": 50}],
        }
    ],
}


@pytest.fixture
def sleeps(monkeypatch) -> list[float]:
    recorded: list[float] = []

    async def fake_sleep(delay, *args, **kwargs):
        recorded.append(delay)

    monkeypatch.setattr("betledger.services.feed.client.asyncio.sleep", fake_sleep)
    return recorded


def fetch(handler, category=Category.MATCH_ODDS, market_ids=("1.234",)):
    async def run():
        async with FeedClient(FeedConfig(), transport=httpx.MockTransport(handler)) as client:
            return await client.get_market_books(category, list(market_ids))

    return asyncio.run(run())


def test_parses_market_books() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=[BOOK, {"marketId": "1.235", "status": "OPEN"}, "junk"])

    books = fetch(handler, market_ids=("1.234", "1.235"))

    assert requests[0].url.path == "/api/RMatchOdds"
    assert requests[0].url.params["Mids"] == "1.234,1.235"
    assert [b.market_id for b in books] == ["1.234", "1.235"]
    assert books[0].winner == "7337"
    assert books[0].is_resolved
    assert not books[1].is_resolved
    assert books[0].runners[0].selection_id == "7337"
    assert books[0].runners[0].back[0].size == Decimal("100")


def test_endpoint_per_category() -> None:
    client = FeedClient()
    assert client.endpoint_for("bookmaker") == "RBookmaker"
    assert client.endpoint_for(Category.FANCY) == "RFancy"
    assert client.endpoint_for("match odds") == "RMatchOdds"


def test_empty_and_oversized_requests() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert fetch(handler, market_ids=()) == []
    with pytest.raises(ValueError):
        fetch(handler, market_ids=[str(i) for i in range(51)])


def test_server_error_is_retried(sleeps) -> None:
    responses = iter([httpx.Response(503), httpx.Response(200, json=[BOOK])])

    books = fetch(lambda request: next(responses))

    assert len(books) == 1
    assert sleeps == [1]


def test_rate_limit_gives_up_after_retries(sleeps) -> None:
    with pytest.raises(FeedRateLimitError):
        fetch(lambda request: httpx.Response(429))
    assert sleeps == [1, 2, 4]


def test_timeouts_are_retried_then_raised(sleeps) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(FeedTimeoutError):
        fetch(handler)
    assert len(calls) == 3


def test_client_errors() -> None:
    with pytest.raises(FeedNotFoundError):
        fetch(lambda request: httpx.Response(404))

    with pytest.raises(FeedAPIError) as exc:
        fetch(lambda request: httpx.Response(400))
    assert exc.value.feed_status_code == 400
    assert exc.value.status_code == 503


def test_malformed_payloads() -> None:
    with pytest.raises(FeedAPIError):
        fetch(lambda request: httpx.Response(200, json={"error": "bad"}))
    with pytest.raises(FeedAPIError):
        fetch(lambda request: httpx.Response(200, content=b"<html>"))
    assert fetch(lambda request: httpx.Response(200, json=[])) == []


def test_requires_context_manager() -> None:
    with pytest.raises(RuntimeError):
        FeedClient().client
