from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from betledger.models import Category

from .catalogue import fill_zero_percent_prices, is_zero_percent_market
from .config import FeedConfig
from .exceptions import (
    FeedAPIError,
    FeedNotFoundError,
    FeedRateLimitError,
    FeedTimeoutError,
)
from .models import EventMarkets, ListedMarket, MarketBook, PricedMarket

logger = logging.getLogger(__name__)


class FeedClient:
    def __init__(
        self,
        config: FeedConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or FeedConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(f"Initialized FeedClient (base_url={self.config.base_url})")

    async def __aenter__(self) -> FeedClient:
        limits = httpx.Limits(
            max_connections=self.config.max_connections,
            max_keepalive_connections=self.config.max_keepalive_connections,
        )
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout_seconds,
            limits=limits,
            transport=self._transport,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Closed FeedClient")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("FeedClient must be used as async context manager")
        return self._client

    def endpoint_for(self, category: Category | str) -> str:
        category = Category.parse(category)
        if category is Category.MATCH_ODDS:
            return self.config.match_odds_endpoint
        if category is Category.BOOKMAKER:
            return self.config.bookmaker_endpoint
        return self.config.fancy_endpoint

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        retry_count = 0
        last_error: Exception | None = None

        while retry_count < self.config.max_retries:
            try:
                response = await self.client.request(
                    method=method,
                    url=endpoint,
                    params=params,
                )

                if response.status_code == 404:
                    raise FeedNotFoundError(
                        f"Resource not found: {endpoint}", status_code=404
                    )
                elif response.status_code == 429:
                    wait_time = 2 ** retry_count
                    logger.warning(f"Rate limited, waiting {wait_time}s...")
                    last_error = FeedRateLimitError("Rate limit exceeded", status_code=429)
                    await asyncio.sleep(wait_time)
                    retry_count += 1
                    continue
                elif response.status_code >= 500:
                    wait_time = 2 ** retry_count
                    logger.warning(
                        f"Feed error {response.status_code}, "
                        f"retrying in {wait_time}s..."
                    )
                    last_error = FeedAPIError(
                        f"Server error {response.status_code}",
                        status_code=response.status_code,
                    )
                    await asyncio.sleep(wait_time)
                    retry_count += 1
                    continue

                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                last_error = e
                retry_count += 1
                if retry_count < self.config.max_retries:
                    logger.warning(f"Timeout, retrying ({retry_count})...")
                    await asyncio.sleep(1)

            except httpx.HTTPStatusError as e:
                raise FeedAPIError(
                    f"Feed rejected request: {e}", status_code=e.response.status_code
                ) from e

            except httpx.RequestError as e:
                last_error = e
                logger.error(f"Network error: {e}")
                break

            except ValueError as e:
                raise FeedAPIError(f"Malformed feed response from {endpoint}: {e}") from e

        if isinstance(last_error, FeedRateLimitError):
            raise last_error
        if isinstance(last_error, httpx.TimeoutException):
            raise FeedTimeoutError(
                f"Request timed out after {retry_count} retries: {last_error}"
            )
        raise FeedAPIError(
            f"Request failed after {retry_count} retries: {last_error}"
        )

    async def get_market_books(
        self,
        category: Category | str,
        market_ids: list[str],
    ) -> list[MarketBook]:
        """Fetch current books for up to ``max_ids_per_request`` markets in one call."""
        if not market_ids:
            return []
        if len(market_ids) > self.config.max_ids_per_request:
            raise ValueError(
                f"At most {self.config.max_ids_per_request} market ids per request, "
                f"got {len(market_ids)}"
            )

        params = {self.config.market_ids_param: ",".join(market_ids)}
        data = await self._request("GET", self.endpoint_for(category), params=params)

        if not data:
            return []
        if not isinstance(data, list):
            raise FeedAPIError(f"Unexpected feed payload type: {type(data).__name__}")

        return [MarketBook.from_api(item) for item in data if isinstance(item, dict)]

    async def get_market_books_batched(
        self,
        category: Category | str,
        market_ids: list[str],
    ) -> list[MarketBook]:
        """
        Fetch books for any number of markets, ``max_ids_per_request`` per call.

        Batches run concurrently. A failed batch is logged and contributes
        no books; the other batches are still returned.
        """
        size = self.config.max_ids_per_request
        batches = [market_ids[i:i + size] for i in range(0, len(market_ids), size)]

        async def fetch(batch: list[str]) -> list[MarketBook]:
            try:
                return await self.get_market_books(category, batch)
            except FeedAPIError as e:
                logger.warning(f"Price batch of {len(batch)} markets failed: {e}")
                return []

        results = await asyncio.gather(*(fetch(batch) for batch in batches))
        return [book for books in results for book in books]

    async def _get_list(self, endpoint: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        data = await self._request("GET", endpoint, params=params)
        if not data:
            return []
        if not isinstance(data, list):
            raise FeedAPIError(f"Unexpected feed payload type: {type(data).__name__}")
        return [item for item in data if isinstance(item, dict)]

    async def get_event(self, event_id: str, sport_id: str) -> dict[str, Any] | None:
        """Event master record of ``event_id`` among the events of a sport."""
        events = await self._get_list(
            self.config.events_endpoint, {self.config.sport_id_param: sport_id}
        )
        for item in events:
            event = item.get("event") or {}
            if str(event.get("id", "")) == str(event_id):
                return item
        return None

    async def list_event_markets(
        self,
        category: Category | str,
        event_id: str,
    ) -> list[ListedMarket]:
        """Bookmaker or fancy markets listed for an event."""
        category = Category.parse(category)
        if category is Category.BOOKMAKER:
            endpoint = self.config.bookmaker_markets_endpoint
        elif category is Category.FANCY:
            endpoint = self.config.fancy_markets_endpoint
        else:
            raise ValueError("Match odds markets are listed on the event record")

        items = await self._get_list(endpoint, {self.config.event_id_param: event_id})
        return [ListedMarket.from_api(item) for item in items]

    async def get_event_markets(self, event_id: str, sport_id: str) -> EventMarkets:
        """
        Build the priced market catalogue of one event.

        Process:
        1. Find the event in its sport's master list
        2. Fetch the match odds book and list bookmaker and fancy markets
        3. Price bookmaker and fancy markets in batches
        4. Fill unpriced 0% bookmaker books from match odds

        Raises:
            ValueError: event or sport id missing
        """
        if not event_id:
            raise ValueError("Event ID is required")
        if not sport_id:
            raise ValueError("Sport ID is required")

        event = await self.get_event(event_id, sport_id)
        match_odds_id = str(((event or {}).get("market") or {}).get("id") or "")

        async def match_odds_book() -> MarketBook | None:
            if not match_odds_id:
                return None
            books = await self.get_market_books(Category.MATCH_ODDS, [match_odds_id])
            return books[0] if books else None

        match_odds, bookmaker, fancy = await asyncio.gather(
            match_odds_book(),
            self.list_event_markets(Category.BOOKMAKER, event_id),
            self.list_event_markets(Category.FANCY, event_id),
        )

        bookmaker_books, fancy_books = await asyncio.gather(
            self.get_market_books_batched(Category.BOOKMAKER, [m.market_id for m in bookmaker]),
            self.get_market_books_batched(Category.FANCY, [m.market_id for m in fancy]),
        )
        bookmaker_by_id = {book.market_id: book for book in bookmaker_books}
        fancy_by_id = {book.market_id: book for book in fancy_books}

        priced_bookmaker = []
        for market in bookmaker:
            book = bookmaker_by_id.get(market.market_id)
            if book is not None and is_zero_percent_market(market):
                book = fill_zero_percent_prices(book, match_odds)
            priced_bookmaker.append(PricedMarket(market=market, book=book))

        catalogue = EventMarkets(
            event_id=str(event_id),
            event=event,
            match_odds=match_odds,
            bookmaker=priced_bookmaker,
            fancy=[
                PricedMarket(market=market, book=fancy_by_id.get(market.market_id))
                for market in fancy
            ],
        )
        logger.info(
            f"Event {event_id}: {len(catalogue.bookmaker)} bookmaker and "
            f"{len(catalogue.fancy)} fancy markets"
        )
        return catalogue


def create_feed_client(
    config: FeedConfig | None = None,
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FeedClient:
    """Build a FeedClient from configuration, optionally against another base URL."""
    config = config or FeedConfig()
    if base_url:
        config = config.model_copy(update={"base_url": base_url})
    return FeedClient(config, transport=transport)
