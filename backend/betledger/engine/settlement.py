"""Settlement of pending wagers against official market outcomes."""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections import defaultdict
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation
from typing import Protocol

import httpx
from pydantic import BaseModel, Field

from betledger.config import SettlementConfig
from betledger.engine.profit_loss import calculate_profit_loss
from betledger.errors import UpstreamUnavailable
from betledger.models import Category, Side, Wager, WagerStatus
from betledger.services.feed.models import MarketBook
from betledger.storage.base import LedgerStore, WagerFilter

logger = logging.getLogger(__name__)

ZERO = Decimal(0)

# Failures of a single feed batch; anything else aborts the event's pass
FEED_BATCH_ERRORS = (UpstreamUnavailable, asyncio.TimeoutError, httpx.HTTPError, ValueError)


class OutcomeSource(Protocol):
    async def get_market_books(
        self, category: Category | str, market_ids: list[str]
    ) -> list[MarketBook]: ...


class SettlementReport(BaseModel):
    """Result of one settlement pass for one event."""

    event_id: str
    wagers_settled: int = 0
    wagers_won: int = 0
    wagers_lost: int = 0
    wagers_unresolved: int = 0
    balance_deltas: dict[str, Decimal] = Field(default_factory=dict)
    skipped: bool = False
    error: str | None = None

    @property
    def total_delta(self) -> Decimal:
        return sum(self.balance_deltas.values(), ZERO)


def chunk(items: list[str], size: int) -> list[list[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def is_winning(wager: Wager, outcome: str) -> bool:
    """
    Decide a wager against its market outcome.

    Selection markets: back wins when its selection won, lay wins when it
    did not. Fancy markets: back wins when the threshold is at or below the
    result, lay wins when it is above.

    Raises:
        InvalidOperation: fancy outcome is not numeric
    """
    is_back = wager.side is Side.BACK
    if wager.category is Category.FANCY:
        value = Decimal(str(outcome).strip())
        if is_back:
            return wager.fancy_threshold <= value
        return wager.fancy_threshold > value

    selection_won = str(outcome) == wager.selection_id
    return selection_won if is_back else not selection_won


def settlement_delta(wager: Wager, won: bool) -> Decimal:
    pl = calculate_profit_loss(wager.stake, wager.price, wager.side, wager.category)
    return pl.profit if won else pl.loss


def accumulate_balance_deltas(items: Iterable[tuple[str, Decimal]]) -> dict[str, Decimal]:
    """Sum (user_id, delta) pairs per user. Order of the pairs does not matter."""
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for user_id, delta in items:
        totals[user_id] += delta
    return dict(totals)


class SettlementProcessor:
    """
    Settles finished events.

    One pass per event at a time; passes for different events run
    concurrently. Every pass starts from the wagers that are still pending,
    so repeating a pass never applies an outcome twice.
    """

    def __init__(
        self,
        store: LedgerStore,
        feed: OutcomeSource,
        config: SettlementConfig | None = None,
    ):
        self.store = store
        self.feed = feed
        self.config = config or SettlementConfig()
        self._event_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def settle_event(self, event_id: str) -> SettlementReport:
        """
        Process settlement for an event.

        Process:
        1. Load pending wagers for the event
        2. Fetch outcomes per category in bounded batches
        3. Decide each wager whose market has an outcome
        4. Sum balance deltas per user
        5. Commit statuses and deltas atomically
        """
        lock = self._event_locks.setdefault(event_id, asyncio.Lock())
        if lock.locked():
            logger.info(f"Settlement already running for event {event_id}, skipping")
            return SettlementReport(event_id=event_id, skipped=True)

        async with lock:
            return await self._settle(event_id)

    async def settle_events(self, event_ids: Iterable[str]) -> list[SettlementReport]:
        """Settle several events concurrently; one event failing does not stop the rest."""
        event_ids = list(dict.fromkeys(event_ids))
        results = await asyncio.gather(
            *(self.settle_event(event_id) for event_id in event_ids),
            return_exceptions=True,
        )

        reports = []
        for event_id, result in zip(event_ids, results):
            if isinstance(result, Exception):
                logger.error(f"Error settling wagers for event {event_id}: {result}")
                reports.append(SettlementReport(event_id=event_id, error=str(result)))
            elif isinstance(result, BaseException):
                raise result
            else:
                reports.append(result)
        return reports

    async def settle_pending_events(self) -> list[SettlementReport]:
        event_ids = await self.store.pending_event_ids()
        if not event_ids:
            logger.info("No events with pending wagers")
            return []
        return await self.settle_events(event_ids)

    async def _settle(self, event_id: str) -> SettlementReport:
        pending = await self.store.list_wagers(
            WagerFilter(event_id=event_id, status=WagerStatus.PENDING)
        )
        if not pending:
            logger.info(f"No pending wagers found for event {event_id}")
            return SettlementReport(event_id=event_id)

        outcomes = await self._fetch_outcomes(pending)
        for category, results in outcomes.items():
            logger.info(f"Event {event_id} {category.value} outcomes: {results}")

        statuses: dict[str, WagerStatus] = {}
        contributions: list[tuple[str, Decimal]] = []
        unresolved = 0

        for wager in pending:
            outcome = outcomes[wager.category].get(wager.market_id)
            if outcome is None:
                unresolved += 1
                continue

            try:
                won = is_winning(wager, outcome)
            except InvalidOperation:
                logger.warning(
                    f"Non-numeric fancy result {outcome!r} for market "
                    f"{wager.market_id}, leaving wager {wager.id} pending"
                )
                unresolved += 1
                continue

            statuses[wager.id] = WagerStatus.WON if won else WagerStatus.LOST
            contributions.append((wager.user_id, settlement_delta(wager, won)))

        deltas = accumulate_balance_deltas(contributions)

        if statuses:
            await self.store.apply_settlement(statuses, deltas)

        won_count = sum(1 for s in statuses.values() if s is WagerStatus.WON)
        report = SettlementReport(
            event_id=event_id,
            wagers_settled=len(statuses),
            wagers_won=won_count,
            wagers_lost=len(statuses) - won_count,
            wagers_unresolved=unresolved,
            balance_deltas=deltas,
        )

        logger.info(
            f"Settled event {event_id}: {report.wagers_settled} wagers "
            f"({report.wagers_won} won, {report.wagers_lost} lost), "
            f"{report.wagers_unresolved} still pending, "
            f"net {report.total_delta} across {len(deltas)} users"
        )
        return report

    async def _fetch_outcomes(self, wagers: list[Wager]) -> dict[Category, dict[str, str]]:
        market_ids: dict[Category, list[str]] = {category: [] for category in Category}
        for wager in wagers:
            ids = market_ids[wager.category]
            if wager.market_id not in ids:
                ids.append(wager.market_id)

        categories = list(market_ids)
        results = await asyncio.gather(
            *(self._fetch_category(c, market_ids[c]) for c in categories)
        )
        return dict(zip(categories, results))

    async def _fetch_category(self, category: Category, market_ids: list[str]) -> dict[str, str]:
        if not market_ids:
            return {}

        batches = chunk(market_ids, self.config.batch_size)
        books = await asyncio.gather(
            *(self._fetch_batch(category, batch) for batch in batches)
        )

        outcomes: dict[str, str] = {}
        for batch_books in books:
            for book in batch_books:
                if book.is_resolved:
                    outcomes[book.market_id] = book.winner
        return outcomes

    async def _fetch_batch(self, category: Category, market_ids: list[str]) -> list[MarketBook]:
        try:
            return await asyncio.wait_for(
                self.feed.get_market_books(category, market_ids),
                timeout=self.config.batch_timeout_seconds,
            )
        except FEED_BATCH_ERRORS as e:
            logger.warning(
                f"Outcome batch failed for {category.value} "
                f"({len(market_ids)} markets): {e!r}"
            )
            return []
