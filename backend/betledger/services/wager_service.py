"""Wager placement and wager queries."""

import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from betledger.config import PlacementConfig
from betledger.engine.margin import MarginLedger, Position, required_headroom
from betledger.engine.profit_loss import calculate_profit_loss
from betledger.engine.settlement import OutcomeSource
from betledger.errors import (
    AccountNotFound,
    AccountSuspended,
    InsufficientBalance,
    MarketUnavailable,
    StaleSnapshotError,
    WagerNotFound,
    WagerValidationError,
)
from betledger.models import (
    Account,
    Category,
    PlacementRequest,
    ProfitLoss,
    Side,
    Wager,
    WagerStatus,
)
from betledger.services.exposure_service import ExposureService
from betledger.storage.base import LedgerStore, WagerFilter

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "event_id",
    "match",
    "market_id",
    "selection",
    "stake",
    "price",
    "category",
    "side",
)


def _field(payload: Mapping[str, Any], name: str) -> Any:
    value = payload.get(name)
    if value is None:
        value = payload.get(to_camel(name))
    return value


def parse_placement_request(
    payload: Mapping[str, Any] | PlacementRequest,
    config: PlacementConfig,
) -> PlacementRequest:
    """
    Validate a raw placement payload.

    Raises:
        WagerValidationError: missing fields, bad numbers, missing
            selection id / fancy threshold, fancy stake out of range
        InvalidCategory / InvalidSide: unknown category or side
    """
    if isinstance(payload, PlacementRequest):
        request = payload
    else:
        missing = [name for name in REQUIRED_FIELDS if _field(payload, name) in (None, "")]
        if missing:
            raise WagerValidationError(
                f"Please provide all required fields (missing: {', '.join(missing)})"
            )

        data = dict(payload)
        data["category"] = Category.parse(data["category"])
        data["side"] = Side.parse(data["side"])

        try:
            request = PlacementRequest.model_validate(data)
        except ValidationError as e:
            raise WagerValidationError(f"Invalid wager: {e}") from e

    if request.category is Category.FANCY:
        if request.fancy_threshold is None:
            raise WagerValidationError("Please provide a fancy threshold")
        if not config.fancy_min_stake <= request.stake <= config.fancy_max_stake:
            raise WagerValidationError(
                f"Stake must be between {config.fancy_min_stake} and {config.fancy_max_stake}"
            )
    elif not request.selection_id:
        raise WagerValidationError("Selection ID is required")

    return request


class WagerService:
    """
    Handles wager placement and wager lookups.

    Placement never debits the balance: it only accepts a wager when the
    balance left after current exposure covers the extra liability it adds.
    """

    def __init__(
        self,
        store: LedgerStore,
        feed: OutcomeSource | None = None,
        config: PlacementConfig | None = None,
        exposure_service: ExposureService | None = None,
    ):
        self.store = store
        self.feed = feed
        self.config = config or PlacementConfig()
        self.exposure_service = exposure_service or ExposureService(store)
        self.margins = MarginLedger(store)

    async def place_wager(
        self,
        user_id: str,
        payload: Mapping[str, Any] | PlacementRequest,
    ) -> Wager:
        """
        Place a wager for a user.

        Process:
        1. Validate the request and the account
        2. Confirm the market is still priced by the feed
        3. Compute profit and loss
        4. Check headroom against balance minus exposure
        5. Append the wager (and the next margin snapshot) atomically
        """
        request = parse_placement_request(payload, self.config)
        await self._get_active_account(user_id)
        await self._ensure_market_live(request)

        pl = calculate_profit_loss(request.stake, request.price, request.side, request.category)

        wager = self._build_wager(user_id, request, pl)
        if wager.category.is_tiered:
            wager = await self._place_tiered(wager, pl)
        else:
            wager = await self._place_ordinary(wager, pl)

        logger.info(
            f"Placed wager {wager.id}: {user_id} {wager.side.value} "
            f"{wager.category.value} {wager.market_id} stake={wager.stake} "
            f"@ {wager.price} (payout {wager.payout})"
        )
        return wager

    async def _get_active_account(self, user_id: str) -> Account:
        account = await self.store.get_account(user_id)
        if account is None:
            raise AccountNotFound(user_id)
        if account.status == "banned":
            raise AccountSuspended(user_id)
        return account

    async def _ensure_market_live(self, request: PlacementRequest) -> None:
        if not self.config.require_live_market or self.feed is None:
            return
        books = await self.feed.get_market_books(request.category, [request.market_id])
        if not books:
            raise MarketUnavailable(request.market_id)

    async def _available_balance(self, user_id: str) -> Decimal:
        account = await self.store.get_account(user_id)
        if account is None:
            raise AccountNotFound(user_id)
        exposure = await self.exposure_service.get_total_exposure(user_id)
        return account.balance - exposure

    def _build_wager(self, user_id: str, request: PlacementRequest, pl: ProfitLoss) -> Wager:
        return Wager(
            user_id=user_id,
            event_id=request.event_id,
            match=request.match,
            market_id=request.market_id,
            selection=request.selection,
            selection_id=request.selection_id,
            fancy_threshold=request.fancy_threshold,
            stake=request.stake,
            price=request.price,
            category=request.category,
            side=request.side,
            payout=request.stake + pl.profit,
        )

    async def _place_tiered(self, wager: Wager, pl: ProfitLoss) -> Wager:
        required = abs(pl.loss)
        available = await self._available_balance(wager.user_id)
        if available < required:
            raise InsufficientBalance(required, available)
        return await self.store.record_placement(wager)

    async def _place_ordinary(self, wager: Wager, pl: ProfitLoss) -> Wager:
        key = wager.margin_key
        retries = 0

        async with self.margins.lock_for(key):
            while True:
                current = await self.margins.current(key)
                snapshot = self.margins.next_snapshot(
                    key, current, wager.selection_id, wager.side, pl
                )
                before = Position.from_snapshot(current) if current else None
                required = required_headroom(before, Position.from_snapshot(snapshot))

                available = await self._available_balance(wager.user_id)
                if available < required:
                    raise InsufficientBalance(required, available)

                try:
                    return await self.store.record_placement(wager, snapshot)
                except StaleSnapshotError as e:
                    if retries >= self.config.max_snapshot_retries:
                        raise
                    retries += 1
                    logger.warning(
                        f"{e.message}; retrying placement "
                        f"({retries}/{self.config.max_snapshot_retries})"
                    )

    async def get_wager(self, wager_id: str) -> Wager:
        wager = await self.store.get_wager(wager_id)
        if wager is None:
            raise WagerNotFound(wager_id)
        return wager

    async def get_user_wagers(self, user_id: str, event_id: str | None = None) -> list[Wager]:
        """A user's wagers, newest first."""
        if await self.store.get_account(user_id) is None:
            raise AccountNotFound(user_id)
        return await self.store.list_wagers(WagerFilter(user_id=user_id, event_id=event_id))

    async def list_wagers(
        self,
        status: str | None = None,
        user_id: str | None = None,
        selection_id: str | None = None,
        event_id: str | None = None,
        category: str | None = None,
        side: str | None = None,
    ) -> list[Wager]:
        """Admin listing with optional equality filters, newest first."""
        filters = WagerFilter(
            user_id=user_id or None,
            selection_id=selection_id or None,
            event_id=event_id or None,
            status=WagerStatus.parse(status) if status else None,
            category=Category.parse(category) if category else None,
            side=Side.parse(side) if side else None,
        )
        return await self.store.list_wagers(filters)
