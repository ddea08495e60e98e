"""Tests for settlement passes."""

import asyncio
import itertools
from decimal import Decimal

import pytest

from betledger.config import SettlementConfig
from betledger.engine.settlement import (
    SettlementProcessor,
    accumulate_balance_deltas,
    chunk,
    is_winning,
)
from betledger.errors import WagerStateConflict
from betledger.models import Category, WagerStatus
from tests.fakes import FakeFeed, funded_store, make_fancy_wager, make_wager


class InterferingFeed(FakeFeed):
    """Settles one wager behind the processor's back on the first call."""

    def __init__(self, store, wager_id: str, **kwargs):
        super().__init__(**kwargs)
        self.store = store
        self.wager_id = wager_id
        self.interfered = False

    async def get_market_books(self, category, market_ids):
        if not self.interfered:
            self.interfered = True
            await self.store.apply_correction(
                self.wager_id, WagerStatus.PENDING, WagerStatus.LOST, "u1", Decimal("-100")
            )
        return await super().get_market_books(category, market_ids)


async def place(store, *wagers):
    for wager in wagers:
        await store.record_placement(wager)
    return wagers


def test_chunk_bounds_batches() -> None:
    ids = [str(i) for i in range(120)]
    batches = chunk(ids, 50)
    assert [len(b) for b in batches] == [50, 50, 20]
    assert list(itertools.chain(*batches)) == ids


def test_is_winning_rules() -> None:
    back = make_wager(selection_id="A")
    lay = make_wager(selection_id="A", side="lay")
    assert is_winning(back, "A")
    assert not is_winning(back, "B")
    assert not is_winning(lay, "A")
    assert is_winning(lay, "B")

    fancy_back = make_fancy_wager("back", "100", "50")
    fancy_lay = make_fancy_wager("lay", "100", "50")
    assert is_winning(fancy_back, "50")
    assert not is_winning(fancy_lay, "50")
    assert not is_winning(fancy_back, "49")
    assert is_winning(fancy_lay, "49")


def test_delta_accumulation_is_order_independent() -> None:
    items = [
        ("u1", Decimal("100")),
        ("u2", Decimal("-200")),
        ("u1", Decimal("-30.5")),
        ("u3", Decimal("0")),
        ("u2", Decimal("75")),
    ]
    expected = {"u1": Decimal("69.5"), "u2": Decimal("-125"), "u3": Decimal("0")}
    for ordering in itertools.permutations(items):
        assert accumulate_balance_deltas(ordering) == expected


def test_settles_wagers_and_balances() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "1000"), ("u2", "1000"))
        await place(
            store,
            make_wager(selection_id="A"),
            make_wager(market_id="m2", selection_id="A", side="lay", stake=Decimal("50")),
            make_wager(user_id="u2", selection_id="B", stake=Decimal("200"), price=Decimal("1.5")),
        )
        feed = FakeFeed(winners={"m1": "A", "m2": "A"})

        report = await SettlementProcessor(store, feed).settle_event("e1")

        assert report.wagers_settled == 3
        assert report.wagers_won == 1
        assert report.wagers_lost == 2
        # back won +100, lay lost -50
        assert report.balance_deltas == {"u1": Decimal("50"), "u2": Decimal("-200")}
        assert (await store.get_account("u1")).balance == Decimal("1050")
        assert (await store.get_account("u2")).balance == Decimal("800")
        assert await store.pending_event_ids() == []

    asyncio.run(run())


def test_second_pass_applies_nothing() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "1000"))
        await place(store, make_wager())
        processor = SettlementProcessor(store, FakeFeed(winners={"m1": "A"}))

        first = await processor.settle_event("e1")
        second = await processor.settle_event("e1")

        assert first.wagers_settled == 1
        assert second.wagers_settled == 0
        assert second.total_delta == 0
        assert (await store.get_account("u1")).balance == Decimal("1100")

    asyncio.run(run())


def test_unresolved_market_stays_pending() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "1000"))
        open_wager, _ = await place(
            store, make_wager(market_id="m1"), make_wager(market_id="m2")
        )
        feed = FakeFeed(winners={"m1": None, "m2": "B"})

        report = await SettlementProcessor(store, feed).settle_event("e1")

        assert report.wagers_settled == 1
        assert report.wagers_unresolved == 1
        assert (await store.get_wager(open_wager.id)).status is WagerStatus.PENDING
        assert await store.pending_event_ids() == ["e1"]

    asyncio.run(run())


def test_failed_batch_only_drops_its_markets() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "1000"))
        good, bad = await place(
            store, make_wager(market_id="m1"), make_wager(market_id="m2")
        )
        feed = FakeFeed(winners={"m1": "A", "m2": "A"}, failing={"m2"})
        processor = SettlementProcessor(store, feed, SettlementConfig(batch_size=1))

        report = await processor.settle_event("e1")

        assert report.wagers_settled == 1
        assert report.wagers_unresolved == 1
        assert (await store.get_wager(good.id)).status is WagerStatus.WON
        assert (await store.get_wager(bad.id)).status is WagerStatus.PENDING

    asyncio.run(run())


def test_slow_batch_times_out_to_no_result() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "1000"))
        fast, slow = await place(
            store, make_wager(market_id="m1"), make_wager(market_id="m2")
        )
        feed = FakeFeed(winners={"m1": "B", "m2": "B"}, slow={"m2"}, delay=1.0)
        config = SettlementConfig(batch_size=1, batch_timeout_seconds=0.05)

        report = await SettlementProcessor(store, feed, config).settle_event("e1")

        assert report.wagers_settled == 1
        assert (await store.get_wager(fast.id)).status is WagerStatus.LOST
        assert (await store.get_wager(slow.id)).status is WagerStatus.PENDING

    asyncio.run(run())


def test_fancy_settlement_uses_numeric_result() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "10000"))
        back, lay, abandoned = await place(
            store,
            make_fancy_wager("back", "1000", "50"),
            make_fancy_wager("lay", "1000", "50", price=Decimal("90")),
            make_fancy_wager("back", "1000", "30", market_id="f2"),
        )
        feed = FakeFeed(winners={"f1": "55", "f2": "abandoned"})

        report = await SettlementProcessor(store, feed).settle_event("e1")

        assert (await store.get_wager(back.id)).status is WagerStatus.WON
        assert (await store.get_wager(lay.id)).status is WagerStatus.LOST
        assert (await store.get_wager(abandoned.id)).status is WagerStatus.PENDING
        assert report.wagers_unresolved == 1
        # back wins 1000 * 100 / 100, lay pays 1000 * 90 / 100
        assert report.balance_deltas == {"u1": Decimal("100")}
        assert [(c, sorted(ids)) for c, ids in feed.calls] == [(Category.FANCY, ["f1", "f2"])]

    asyncio.run(run())


def test_overlapping_pass_is_skipped() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "1000"))
        await place(store, make_wager())
        feed = FakeFeed(winners={"m1": "A"}, slow={"m1"}, delay=0.05)
        processor = SettlementProcessor(store, feed)

        first, second = await asyncio.gather(
            processor.settle_event("e1"), processor.settle_event("e1")
        )

        assert first.wagers_settled == 1
        assert second.skipped
        assert (await store.get_account("u1")).balance == Decimal("1100")
        assert len(processor._event_locks) == 0

    asyncio.run(run())


def test_concurrent_status_change_aborts_pass() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "1000"))
        changed, other = await place(
            store, make_wager(market_id="m1"), make_wager(market_id="m2")
        )
        feed = InterferingFeed(store, changed.id, winners={"m1": "A", "m2": "A"})

        with pytest.raises(WagerStateConflict):
            await SettlementProcessor(store, feed).settle_event("e1")

        # only the interfering correction landed
        assert (await store.get_account("u1")).balance == Decimal("900")
        assert (await store.get_wager(other.id)).status is WagerStatus.PENDING

    asyncio.run(run())


def test_failing_event_does_not_block_others() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "1000"), ("u2", "1000"))
        changed, _ = await place(
            store,
            make_wager(event_id="e1", market_id="m1"),
            make_wager(user_id="u2", event_id="e2", market_id="m9"),
        )
        feed = InterferingFeed(store, changed.id, winners={"m1": "A", "m9": "A"})
        processor = SettlementProcessor(store, feed)

        reports = await processor.settle_pending_events()
        by_event = {r.event_id: r for r in reports}

        assert by_event["e1"].error
        assert by_event["e2"].wagers_settled == 1
        assert (await store.get_account("u2")).balance == Decimal("1100")

    asyncio.run(run())
