"""Net profit/loss positions per (user, event, market).

A position is stored relative to one selection: ``profit`` is the net result
if that selection wins and ``loss`` the net result otherwise. Every new wager
on the market is folded into the current position, and the result is keyed by
the selection of the incoming wager.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Iterable
from decimal import Decimal
from typing import TYPE_CHECKING, NamedTuple

from betledger.engine.profit_loss import calculate_profit_loss
from betledger.models import MarginKey, MarginSnapshot, ProfitLoss, Side, Wager

if TYPE_CHECKING:
    from betledger.storage.base import LedgerStore

logger = logging.getLogger(__name__)

ZERO = Decimal(0)


class Position(NamedTuple):
    selection_id: str
    profit: Decimal
    loss: Decimal

    @classmethod
    def from_snapshot(cls, snapshot: MarginSnapshot) -> Position:
        return cls(snapshot.selection_id, snapshot.profit, snapshot.loss)


def open_position(selection_id: str, side: Side, pl: ProfitLoss) -> Position:
    """First wager on a market. A lay wins when its selection loses, so the pair flips."""
    if Side.parse(side) is Side.BACK:
        return Position(selection_id, pl.profit, pl.loss)
    return Position(selection_id, pl.loss, pl.profit)


def net_margin(current: Position, selection_id: str, side: Side, pl: ProfitLoss) -> tuple[Decimal, Decimal]:
    """Net (profit, loss) after the wager, still relative to ``current.selection_id``."""
    is_same_selection = current.selection_id == selection_id
    is_back = Side.parse(side) is Side.BACK

    if is_same_selection == is_back:
        return current.profit + pl.profit, current.loss + pl.loss
    return current.profit + pl.loss, current.loss + pl.profit


def fold_position(current: Position, selection_id: str, side: Side, pl: ProfitLoss) -> Position:
    """Fold a wager into the current position and re-key it on ``selection_id``."""
    new_profit, new_loss = net_margin(current, selection_id, side, pl)
    if current.selection_id == selection_id:
        return Position(selection_id, new_profit, new_loss)
    return Position(selection_id, new_loss, new_profit)


def worst_case(position: Position | None) -> Decimal:
    if position is None:
        return ZERO
    return abs(min(position.profit, position.loss, ZERO))


def required_headroom(before: Position | None, after: Position) -> Decimal:
    """Extra balance the new position ties up compared to the previous one."""
    return max(worst_case(after) - worst_case(before), ZERO)


def replay(wagers: Iterable[Wager]) -> Position | None:
    """Rebuild a market position from its wagers in placement order."""
    position: Position | None = None
    for wager in wagers:
        pl = calculate_profit_loss(wager.stake, wager.price, wager.side, wager.category)
        if position is None:
            position = open_position(wager.selection_id, wager.side, pl)
        else:
            position = fold_position(position, wager.selection_id, wager.side, pl)
    return position


class MarginLedger:
    """
    Versioned margin chain on top of a LedgerStore.

    Reads the current snapshot for a key and derives the next immutable
    version. Writers on the same key in this process are serialised with a
    per-key lock; writers in other processes are caught by the store's
    version check.
    """

    def __init__(self, store: LedgerStore):
        self.store = store
        # Entries disappear once no coroutine holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[MarginKey, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, key: MarginKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def current(self, key: MarginKey) -> MarginSnapshot | None:
        return await self.store.latest_snapshot(key)

    def next_snapshot(
        self,
        key: MarginKey,
        current: MarginSnapshot | None,
        selection_id: str,
        side: Side,
        pl: ProfitLoss,
    ) -> MarginSnapshot:
        if current is None:
            position = open_position(selection_id, side, pl)
            version = 1
        else:
            position = fold_position(Position.from_snapshot(current), selection_id, side, pl)
            version = current.version + 1

        logger.debug(
            f"Margin {key.market_id} for {key.user_id} -> v{version}: "
            f"{position.selection_id} profit={position.profit} loss={position.loss}"
        )
        return MarginSnapshot(
            user_id=key.user_id,
            event_id=key.event_id,
            market_id=key.market_id,
            selection_id=position.selection_id,
            profit=position.profit,
            loss=position.loss,
            version=version,
        )
