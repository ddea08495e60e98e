"""Helpers for assembling an event's market catalogue."""

from __future__ import annotations

import re
from decimal import ROUND_FLOOR, Decimal

from .models import ListedMarket, MarketBook, PriceLevel, Runner

HUNDRED = Decimal(100)

ZERO_PERCENT = re.compile(r"(?<![\d.])0%")

# (runner index, side, size multiplier) copied from match odds into an
# unpriced 0% bookmaker book
ZERO_PERCENT_FILLS = (
    (0, "back", 2),
    (0, "lay", 3),
    (1, "back", 3),
    (1, "lay", 2),
)


def is_zero_percent_market(market: ListedMarket) -> bool:
    """Open bookmaker market whose name carries a 0% commission tag."""
    return market.is_open and ZERO_PERCENT.search(market.name.lower()) is not None


def per_hundred_price(match_odds_price: Decimal) -> Decimal:
    """Decimal odds to a per-hundred bookmaker rate: floor(price * 100) - 100."""
    return (match_odds_price * HUNDRED).to_integral_value(rounding=ROUND_FLOOR) - HUNDRED


def _best_levels(book: MarketBook, index: int, side: str) -> list[PriceLevel]:
    if index >= len(book.runners):
        return []
    runner: Runner = book.runners[index]
    return getattr(runner, side)


def fill_zero_percent_prices(book: MarketBook, match_odds: MarketBook | None) -> MarketBook:
    """
    Price the empty best levels of a 0% bookmaker book from match odds.

    Only a best level quoted at 0 is replaced, and only when match odds has
    a best level for the same runner and side. The input book is left as is.
    """
    if match_odds is None or not book.runners:
        return book

    filled = book.model_copy(deep=True)
    for index, side, multiplier in ZERO_PERCENT_FILLS:
        levels = _best_levels(filled, index, side)
        source = _best_levels(match_odds, index, side)
        if not levels or not source or levels[0].price != 0:
            continue
        levels[0] = PriceLevel(
            price=per_hundred_price(source[0].price),
            size=source[0].size * multiplier,
        )
    return filled
