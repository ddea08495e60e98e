"""Tests for per-wager profit and loss."""

from decimal import Decimal

import pytest

from betledger.engine.profit_loss import calculate_profit_loss
from betledger.errors import InvalidCategory, InvalidSide


def test_match_odds_back_uses_decimal_price() -> None:
    pl = calculate_profit_loss(Decimal("500"), Decimal("3"), "back", "match odds")
    assert pl.profit == Decimal("1000")
    assert pl.loss == Decimal("-500")


def test_match_odds_lay_mirrors_back() -> None:
    pl = calculate_profit_loss(Decimal("500"), Decimal("3"), "lay", "match odds")
    assert pl.profit == Decimal("500")
    assert pl.loss == Decimal("-1000")


def test_bookmaker_price_is_per_hundred() -> None:
    back = calculate_profit_loss(Decimal("1000"), Decimal("80"), "back", "bookmaker")
    lay = calculate_profit_loss(Decimal("1000"), Decimal("80"), "lay", "bookmaker")
    assert back == (Decimal("800"), Decimal("-1000"))
    assert lay == (Decimal("1000"), Decimal("-800"))


def test_fancy_price_is_per_hundred() -> None:
    pl = calculate_profit_loss(Decimal("200"), Decimal("90"), "lay", "fancy")
    assert pl.profit == Decimal("200")
    assert pl.loss == Decimal("-180")


def test_inputs_are_normalized() -> None:
    pl = calculate_profit_loss("100", 2.5, " BACK ", "Match_Odds")
    assert pl.profit == Decimal("150")
    assert pl.loss == Decimal("-100")


def test_back_and_lay_are_zero_sum() -> None:
    for category in ("match odds", "bookmaker", "fancy"):
        back = calculate_profit_loss(Decimal("250"), Decimal("1.8"), "back", category)
        lay = calculate_profit_loss(Decimal("250"), Decimal("1.8"), "lay", category)
        assert back.profit + lay.loss == 0
        assert back.loss + lay.profit == 0


def test_unknown_category_rejected() -> None:
    with pytest.raises(InvalidCategory):
        calculate_profit_loss(Decimal("100"), Decimal("2"), "back", "tennis")


def test_unknown_side_rejected() -> None:
    with pytest.raises(InvalidSide):
        calculate_profit_loss(Decimal("100"), Decimal("2"), "sell", "fancy")


def test_winnings_rounded_to_money_scale() -> None:
    back = calculate_profit_loss(Decimal("333.33"), Decimal("33.33"), "back", "bookmaker")
    lay = calculate_profit_loss(Decimal("333.33"), Decimal("33.33"), "lay", "bookmaker")
    assert back.profit == Decimal("111.0989")
    assert lay.loss == Decimal("-111.0989")

    pl = calculate_profit_loss(Decimal("0.0003"), Decimal("1.5"), "back", "match odds")
    assert pl.profit == Decimal("0.0002")
