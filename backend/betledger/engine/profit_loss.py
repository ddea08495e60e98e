"""Wager economics for one side and category."""

from decimal import Decimal
from typing import Any

from betledger.models import Category, ProfitLoss, Side, quantize_money, to_decimal

HUNDRED = Decimal(100)


def calculate_profit_loss(stake: Any, price: Any, side: Any, category: Any) -> ProfitLoss:
    """
    Return the (profit, loss) pair of a single wager.

    Match odds use decimal prices, so a back wager wins ``stake * (price - 1)``.
    Bookmaker and fancy prices are quoted per hundred, so a back wager wins
    ``stake * price / 100``. A lay wager mirrors the back wager: it keeps the
    stake on a win and pays the backer's winnings otherwise. Winnings are
    rounded half-up to the money scale.

    Raises:
        InvalidCategory: category outside match odds / bookmaker / fancy
        InvalidSide: side outside back / lay
    """
    category = Category.parse(category)
    side = Side.parse(side)
    stake = to_decimal(stake)
    price = to_decimal(price)

    if category is Category.MATCH_ODDS:
        backer_win = stake * (price - 1)
    else:
        backer_win = stake * price / HUNDRED
    backer_win = quantize_money(backer_win)

    if side is Side.BACK:
        return ProfitLoss(profit=backer_win, loss=-stake)
    return ProfitLoss(profit=stake, loss=-backer_win)
