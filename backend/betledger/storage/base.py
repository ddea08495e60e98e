"""Persistence contract for wagers, margin snapshots and account balances."""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Protocol, runtime_checkable

from pydantic import BaseModel

from betledger.models import (
    Account,
    Category,
    MarginKey,
    MarginSnapshot,
    Side,
    Wager,
    WagerStatus,
)


class WagerFilter(BaseModel):
    """Equality filters for wager listings. None means "any"."""

    user_id: str | None = None
    event_id: str | None = None
    market_id: str | None = None
    selection_id: str | None = None
    status: WagerStatus | None = None
    category: Category | None = None
    side: Side | None = None

    def matches(self, wager: Wager) -> bool:
        for field_name, expected in self.model_dump(exclude_none=True).items():
            if getattr(wager, field_name) != expected:
                return False
        return True


@runtime_checkable
class LedgerStore(Protocol):
    """
    Store operations the engine relies on.

    Every mutating method is atomic: it either applies all of its changes or
    none of them. Balances only move through increments, never through a
    read-modify-write by the caller.
    """

    async def create_account(self, account: Account) -> Account: ...

    async def get_account(self, user_id: str) -> Account | None: ...

    async def increment_balance(
        self,
        user_id: str,
        delta: Decimal,
        minimum_balance: Decimal | None = None,
    ) -> Decimal:
        """Add ``delta``; with ``minimum_balance`` only if the balance is at least that."""
        ...

    async def latest_snapshot(self, key: MarginKey) -> MarginSnapshot | None: ...

    async def latest_snapshots(
        self,
        user_id: str,
        *,
        event_id: str | None = None,
        market_ids: list[str] | None = None,
    ) -> dict[str, MarginSnapshot]:
        """Current snapshot per market id."""
        ...

    async def record_placement(
        self,
        wager: Wager,
        snapshot: MarginSnapshot | None = None,
    ) -> Wager:
        """
        Append a wager and, for ordinary markets, its margin snapshot.

        The snapshot is accepted only if the stored version for its key is
        exactly ``snapshot.version - 1``; otherwise StaleSnapshotError.
        """
        ...

    async def get_wager(self, wager_id: str) -> Wager | None: ...

    async def list_wagers(self, filters: WagerFilter | None = None) -> list[Wager]:
        """Matching wagers, newest first."""
        ...

    async def pending_event_ids(self) -> list[str]: ...

    async def apply_settlement(
        self,
        statuses: Mapping[str, WagerStatus],
        deltas: Mapping[str, Decimal],
    ) -> None:
        """
        Move pending wagers to their decided status and increment balances.

        Raises WagerStateConflict, applying nothing, if any wager is no
        longer pending.
        """
        ...

    async def apply_correction(
        self,
        wager_id: str,
        expected_status: WagerStatus,
        target_status: WagerStatus,
        user_id: str,
        delta: Decimal,
        minimum_balance: Decimal | None = None,
    ) -> Wager:
        """Change one wager's status together with its balance increment."""
        ...
