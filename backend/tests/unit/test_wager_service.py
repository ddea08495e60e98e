"""Tests for wager placement."""

import asyncio
from decimal import Decimal

import pytest

from betledger.config import PlacementConfig
from betledger.engine.margin import Position, replay
from betledger.errors import (
    AccountNotFound,
    AccountSuspended,
    InsufficientBalance,
    InvalidCategory,
    InvalidSide,
    MarketUnavailable,
    StaleSnapshotError,
    WagerValidationError,
)
from betledger.models import Account, Category, MarginKey, Side, WagerStatus
from betledger.services.wager_service import WagerService, parse_placement_request
from betledger.storage import MemoryLedgerStore
from tests.fakes import FakeFeed, funded_store


def match_odds(selection_id: str = "A", stake: str = "1000", price: str = "2.5", **extra) -> dict:
    payload = {
        "event_id": "e1",
        "match": "India v Australia",
        "market_id": "m1",
        "selection": "India" if selection_id == "A" else "Australia",
        "selection_id": selection_id,
        "stake": stake,
        "price": price,
        "category": "match odds",
        "side": "back",
    }
    payload.update(extra)
    return payload


def fancy(side: str = "back", stake: str = "1000", threshold: str = "50", **extra) -> dict:
    payload = {
        "event_id": "e1",
        "match": "India v Australia",
        "market_id": "f1",
        "selection": "10 over runs",
        "fancy_threshold": threshold,
        "stake": stake,
        "price": "100",
        "category": "fancy",
        "side": side,
    }
    payload.update(extra)
    return payload


class FlakyStore(MemoryLedgerStore):
    """Loses the first ``conflicts`` snapshot races."""

    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts = conflicts
        self.attempts = 0

    async def record_placement(self, wager, snapshot=None):
        self.attempts += 1
        if snapshot is not None and self.conflicts:
            self.conflicts -= 1
            raise StaleSnapshotError(tuple(snapshot.key), snapshot.version - 1, snapshot.version)
        return await super().record_placement(wager, snapshot)


def test_end_to_end_margin_values() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "10000"))
        service = WagerService(store)
        key = MarginKey("u1", "e1", "m1")

        first = await service.place_wager("u1", match_odds("A", "1000", "2.5"))
        assert first.payout == Decimal("2500")
        assert first.status is WagerStatus.PENDING
        snapshot = await store.latest_snapshot(key)
        assert (snapshot.selection_id, snapshot.profit, snapshot.loss) == ("A", Decimal("1500"), Decimal("-1000"))
        assert await service.exposure_service.get_total_exposure("u1") == Decimal("1000")

        await service.place_wager("u1", match_odds("B", "500", "3"))
        snapshot = await store.latest_snapshot(key)
        assert snapshot.version == 2
        assert (snapshot.selection_id, snapshot.profit, snapshot.loss) == ("B", Decimal("0"), Decimal("1000"))
        assert await service.exposure_service.get_total_exposure("u1") == 0

        # placement never moves the balance
        assert (await store.get_account("u1")).balance == Decimal("10000")

    asyncio.run(run())


def test_insufficient_balance_persists_nothing() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "500"))
        service = WagerService(store)

        with pytest.raises(InsufficientBalance) as exc:
            await service.place_wager("u1", match_odds("A", "1000", "2"))

        assert exc.value.required == Decimal("1000")
        assert exc.value.available == Decimal("500")
        assert await store.list_wagers() == []
        assert await store.latest_snapshot(MarginKey("u1", "e1", "m1")) is None

    asyncio.run(run())


def test_hedge_needs_no_extra_balance() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "1000"))
        service = WagerService(store)

        await service.place_wager("u1", match_odds("A", "1000", "2.5"))
        # all balance is tied up, but backing B lowers the worst case
        await service.place_wager("u1", match_odds("B", "500", "3"))

        assert len(await store.list_wagers()) == 2

    asyncio.run(run())


def test_fancy_checks_loss_against_available_balance() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "1500"))
        service = WagerService(store)

        await service.place_wager("u1", fancy("back", "1000"))
        assert await service.exposure_service.get_fancy_exposure("u1", "e1") == {"f1": Decimal("-1000")}

        with pytest.raises(InsufficientBalance):
            await service.place_wager("u1", fancy("lay", "1000", threshold="60"))

        lay = await service.place_wager("u1", fancy("lay", "500", threshold="60"))
        assert lay.payout == Decimal("1000")

    asyncio.run(run())


def test_fancy_stake_bounds_and_threshold() -> None:
    config = PlacementConfig()

    with pytest.raises(WagerValidationError):
        parse_placement_request(fancy(stake="99"), config)
    with pytest.raises(WagerValidationError):
        parse_placement_request(fancy(stake="500001"), config)

    payload = fancy()
    del payload["fancy_threshold"]
    with pytest.raises(WagerValidationError):
        parse_placement_request(payload, config)

    request = parse_placement_request(fancy(stake="100"), config)
    assert request.category is Category.FANCY


def test_request_validation() -> None:
    config = PlacementConfig()

    payload = match_odds()
    del payload["price"]
    with pytest.raises(WagerValidationError, match="price"):
        parse_placement_request(payload, config)

    with pytest.raises(WagerValidationError):
        parse_placement_request(match_odds(selection_id=""), config)
    with pytest.raises(WagerValidationError):
        parse_placement_request(match_odds(stake="-5"), config)
    with pytest.raises(WagerValidationError):
        parse_placement_request(match_odds(price="abc"), config)
    with pytest.raises(InvalidCategory):
        parse_placement_request(match_odds(category="tennis"), config)
    with pytest.raises(InvalidSide):
        parse_placement_request(match_odds(side="buy"), config)


def test_amounts_limited_to_money_scale() -> None:
    config = PlacementConfig()

    with pytest.raises(WagerValidationError, match="decimal places"):
        parse_placement_request(match_odds(price="1.23456"), config)
    with pytest.raises(WagerValidationError, match="decimal places"):
        parse_placement_request(match_odds(stake="100.00001"), config)
    with pytest.raises(WagerValidationError, match="decimal places"):
        parse_placement_request(fancy(threshold="50.12345"), config)
    with pytest.raises(WagerValidationError):
        parse_placement_request(match_odds(stake="1e20"), config)

    request = parse_placement_request(match_odds(stake="333.3300", price="1.2345"), config)
    assert request.stake == Decimal("333.33")
    assert request.price == Decimal("1.2345")


def test_payout_is_rounded_once_at_placement() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "10000"))
        wager = await WagerService(store).place_wager(
            "u1",
            match_odds(stake="333.33", price="33.33", category="bookmaker"),
        )
        # 333.33 * 33.33 / 100 = 111.098889
        assert wager.payout == Decimal("444.4289")
        assert wager.payout.as_tuple().exponent == -4
        assert await store.get_wager(wager.id) == wager

    asyncio.run(run())


def test_camel_case_payload() -> None:
    payload = {
        "eventId": 31245,
        "match": "India v Australia",
        "marketId": "1.2345",
        "selection": "India",
        "selectionId": 7337,
        "stake": 250,
        "price": "1.9",
        "category": "Match_Odds",
        "side": " LAY ",
    }
    request = parse_placement_request(payload, PlacementConfig())

    assert request.event_id == "31245"
    assert request.selection_id == "7337"
    assert request.category is Category.MATCH_ODDS
    assert request.side is Side.LAY
    assert request.price == Decimal("1.9")


def test_account_checks() -> None:
    async def run() -> None:
        store = MemoryLedgerStore()
        await store.create_account(Account(id="banned", balance=Decimal("1000"), status="banned"))
        service = WagerService(store)

        with pytest.raises(AccountSuspended):
            await service.place_wager("banned", match_odds())
        with pytest.raises(AccountNotFound):
            await service.place_wager("ghost", match_odds())

    asyncio.run(run())


def test_expired_odds_rejected() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "10000"))

        with pytest.raises(MarketUnavailable):
            await WagerService(store, feed=FakeFeed()).place_wager("u1", match_odds())

        live = FakeFeed(winners={"m1": None})
        wager = await WagerService(store, feed=live).place_wager("u1", match_odds())
        assert live.calls == [(Category.MATCH_ODDS, ["m1"])]
        assert await store.get_wager(wager.id) == wager

    asyncio.run(run())


def test_lost_snapshot_race_is_retried() -> None:
    async def run() -> None:
        store = FlakyStore(conflicts=1)
        await store.create_account(Account(id="u1", balance=Decimal("10000")))

        wager = await WagerService(store).place_wager("u1", match_odds())

        assert store.attempts == 2
        assert await store.get_wager(wager.id) == wager
        assert await store.list_wagers() == [wager]
        assert wager.margin_key == MarginKey("u1", "e1", "m1")
        assert (await store.latest_snapshot(wager.margin_key)).version == 1

    asyncio.run(run())


def test_retries_are_bounded() -> None:
    async def run() -> None:
        store = FlakyStore(conflicts=5)
        await store.create_account(Account(id="u1", balance=Decimal("10000")))
        service = WagerService(store, config=PlacementConfig(max_snapshot_retries=2))

        with pytest.raises(StaleSnapshotError):
            await service.place_wager("u1", match_odds())
        assert store.attempts == 3
        assert await store.list_wagers() == []

    asyncio.run(run())


def test_concurrent_placements_chain_versions() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "100000"))
        service = WagerService(store)
        payloads = [
            match_odds("A", "1000", "2.5"),
            match_odds("B", "500", "3"),
            match_odds("A", "200", "1.8", side="lay"),
            match_odds("B", "300", "4"),
        ]

        await asyncio.gather(*(service.place_wager("u1", p) for p in payloads))

        snapshot = await store.latest_snapshot(MarginKey("u1", "e1", "m1"))
        placed = list(reversed(await store.list_wagers()))
        assert snapshot.version == 4
        assert Position.from_snapshot(snapshot) == replay(placed)

    asyncio.run(run())


def test_wager_listings() -> None:
    async def run() -> None:
        store = await funded_store(("u1", "10000"), ("u2", "10000"))
        service = WagerService(store)
        first = await service.place_wager("u1", match_odds())
        second = await service.place_wager("u1", fancy())
        other = await service.place_wager("u2", match_odds())

        assert await service.get_user_wagers("u1") == [second, first]
        assert await service.list_wagers(category="fancy") == [second]
        assert await service.list_wagers(status="pending", selection_id="A") == [other, first]
        assert await service.get_wager(first.id) == first

        with pytest.raises(AccountNotFound):
            await service.get_user_wagers("ghost")

    asyncio.run(run())
