from .catalogue import fill_zero_percent_prices, is_zero_percent_market
from .client import FeedClient, create_feed_client
from .config import FeedConfig
from .exceptions import (
    FeedAPIError,
    FeedNotFoundError,
    FeedRateLimitError,
    FeedTimeoutError,
)
from .models import EventMarkets, ListedMarket, MarketBook, PriceLevel, PricedMarket, Runner

__all__ = [
    "FeedClient",
    "create_feed_client",
    "fill_zero_percent_prices",
    "is_zero_percent_market",
    "FeedConfig",
    "FeedAPIError",
    "FeedNotFoundError",
    "FeedRateLimitError",
    "FeedTimeoutError",
    "EventMarkets",
    "ListedMarket",
    "MarketBook",
    "PriceLevel",
    "PricedMarket",
    "Runner",
]
