"""Exposure and margin queries."""

import logging
from decimal import Decimal

from betledger.engine.exposure import (
    ExposureView,
    event_tiered_exposure,
    ordinary_exposure,
    tiered_exposure_by_market,
)
from betledger.models import MarginSnapshot, Wager, WagerStatus
from betledger.storage.base import LedgerStore, WagerFilter

logger = logging.getLogger(__name__)


class ExposureService:
    """
    Derives a user's worst-case liability from current margins and pending
    fancy wagers. Nothing here is persisted.
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    async def _pending_wagers(self, user_id: str, event_id: str | None = None) -> list[Wager]:
        wagers = await self.store.list_wagers(
            WagerFilter(user_id=user_id, event_id=event_id, status=WagerStatus.PENDING)
        )
        # store lists newest first; the fancy sweep wants placement order
        return list(reversed(wagers))

    async def get_exposure_view(self, user_id: str) -> ExposureView:
        pending = await self._pending_wagers(user_id)

        ordinary_markets = sorted(
            {w.market_id for w in pending if not w.category.is_tiered}
        )
        snapshots = {}
        if ordinary_markets:
            snapshots = await self.store.latest_snapshots(user_id, market_ids=ordinary_markets)

        fancy_by_event: dict[str, list[Wager]] = {}
        for wager in pending:
            if wager.category.is_tiered:
                fancy_by_event.setdefault(wager.event_id, []).append(wager)

        view = ExposureView(
            user_id=user_id,
            ordinary=ordinary_exposure(snapshots.values()),
            tiered_by_event={
                event_id: event_tiered_exposure(tiered_exposure_by_market(wagers))
                for event_id, wagers in fancy_by_event.items()
            },
        )
        logger.debug(
            f"Exposure for {user_id}: ordinary={view.ordinary} tiered={view.tiered}"
        )
        return view

    async def get_total_exposure(self, user_id: str) -> Decimal:
        view = await self.get_exposure_view(user_id)
        return view.total

    async def get_fancy_exposure(self, user_id: str, event_id: str) -> dict[str, Decimal]:
        """Signed exposure per fancy market of one event."""
        pending = await self._pending_wagers(user_id, event_id)
        return tiered_exposure_by_market(pending)

    async def get_margins(self, user_id: str, event_id: str) -> dict[str, MarginSnapshot]:
        """Current margin snapshot per market of one event."""
        return await self.store.latest_snapshots(user_id, event_id=event_id)
