"""Worst-case exposure for ordinary and tiered (fancy) markets."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal
from typing import NamedTuple

from pydantic import BaseModel, Field

from betledger.models import MarginSnapshot, Side, Wager, WagerStatus

ZERO = Decimal(0)
HUNDRED = Decimal(100)


class TieredLeg(NamedTuple):
    side: Side
    stake: Decimal
    threshold: Decimal

    @property
    def rated_value(self) -> Decimal:
        return self.stake * self.threshold / HUNDRED

    @classmethod
    def from_wager(cls, wager: Wager) -> TieredLeg:
        return cls(wager.side, wager.stake, wager.fancy_threshold)


class ExposureView(BaseModel):
    """Derived exposure of one user. Never persisted."""

    user_id: str
    ordinary: Decimal = ZERO
    tiered_by_event: dict[str, Decimal] = Field(default_factory=dict)

    @property
    def tiered(self) -> Decimal:
        return sum(self.tiered_by_event.values(), ZERO)

    @property
    def total(self) -> Decimal:
        return self.ordinary + self.tiered


def margin_exposure(profit: Decimal, loss: Decimal) -> Decimal:
    """Worst-case loss contribution of one margin snapshot."""
    if profit < 0 and loss > 0:
        return abs(profit)
    if profit < 0 and loss < 0:
        return max(abs(profit), abs(loss))
    if loss < 0:
        return abs(loss)
    return ZERO


def ordinary_exposure(snapshots: Iterable[MarginSnapshot]) -> Decimal:
    return sum((margin_exposure(s.profit, s.loss) for s in snapshots), ZERO)


def order_legs(legs: Iterable[TieredLeg]) -> list[TieredLeg]:
    # sorted() is stable: equal thresholds keep their placement order
    return sorted(legs, key=lambda leg: leg.threshold)


def tiered_market_exposure(legs: Sequence[TieredLeg]) -> Decimal:
    """
    Exposure of one fancy market as a negative liability.

    Legs are ordered by threshold. When a back leg sits below a lay leg, the
    bracket between the first back and the last lay nets off: legs below the
    bracket lose their rated value, the bracket loses its absolute net rated
    value, and lay legs above it lose their stake. Otherwise every back leg
    loses its stake and every lay leg its rated value.
    """
    ordered = order_legs(legs)

    first_back = next(
        (i for i, leg in enumerate(ordered) if leg.side is Side.BACK), None
    )
    last_lay = next(
        (i for i in range(len(ordered) - 1, -1, -1) if ordered[i].side is Side.LAY),
        None,
    )

    exposure = ZERO
    if first_back is not None and last_lay is not None and first_back < last_lay:
        for leg in ordered[:first_back]:
            exposure += leg.rated_value

        bracket = ZERO
        for leg in ordered[first_back:last_lay + 1]:
            bracket += leg.rated_value if leg.side is Side.BACK else -leg.rated_value
        exposure += abs(bracket)

        for leg in ordered[last_lay + 1:]:
            exposure += leg.stake
    else:
        for leg in ordered:
            exposure += leg.stake if leg.side is Side.BACK else leg.rated_value

    return -exposure


def tiered_exposure_by_market(wagers: Iterable[Wager]) -> dict[str, Decimal]:
    """Signed exposure per fancy market from pending wagers in placement order."""
    legs_by_market: dict[str, list[TieredLeg]] = {}
    for wager in wagers:
        if not wager.category.is_tiered or wager.status is not WagerStatus.PENDING:
            continue
        legs_by_market.setdefault(wager.market_id, []).append(TieredLeg.from_wager(wager))

    return {
        market_id: tiered_market_exposure(legs)
        for market_id, legs in legs_by_market.items()
    }


def event_tiered_exposure(by_market: Mapping[str, Decimal]) -> Decimal:
    return sum((abs(value) for value in by_market.values()), ZERO)
