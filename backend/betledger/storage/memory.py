"""In-process LedgerStore used by tests, the CLI dry runs and single-node setups."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from decimal import Decimal

from betledger.errors import (
    AccountNotFound,
    InsufficientBalance,
    StaleSnapshotError,
    WagerNotFound,
    WagerStateConflict,
)
from betledger.models import Account, MarginKey, MarginSnapshot, Wager, WagerStatus
from betledger.storage.base import WagerFilter

logger = logging.getLogger(__name__)


class MemoryLedgerStore:
    """
    Dict-backed store.

    One lock guards every mutation, so each method applies all of its changes
    before any other coroutine can observe the store.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._wagers: dict[str, Wager] = {}
        self._snapshots: dict[MarginKey, list[MarginSnapshot]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def create_account(self, account: Account) -> Account:
        async with self._lock:
            self._accounts[account.id] = account
        return account

    async def get_account(self, user_id: str) -> Account | None:
        return self._accounts.get(user_id)

    async def increment_balance(
        self,
        user_id: str,
        delta: Decimal,
        minimum_balance: Decimal | None = None,
    ) -> Decimal:
        async with self._lock:
            return self._increment(user_id, delta, minimum_balance)

    def _increment(
        self,
        user_id: str,
        delta: Decimal,
        minimum_balance: Decimal | None = None,
    ) -> Decimal:
        account = self._accounts.get(user_id)
        if account is None:
            raise AccountNotFound(user_id)
        if minimum_balance is not None and account.balance < minimum_balance:
            raise InsufficientBalance(minimum_balance, account.balance)

        updated = account.model_copy(update={"balance": account.balance + delta})
        self._accounts[user_id] = updated
        return updated.balance

    # ------------------------------------------------------------------
    # Margin snapshots
    # ------------------------------------------------------------------

    async def latest_snapshot(self, key: MarginKey) -> MarginSnapshot | None:
        chain = self._snapshots.get(key)
        return chain[-1] if chain else None

    async def latest_snapshots(
        self,
        user_id: str,
        *,
        event_id: str | None = None,
        market_ids: list[str] | None = None,
    ) -> dict[str, MarginSnapshot]:
        wanted = set(market_ids) if market_ids is not None else None
        latest: dict[str, MarginSnapshot] = {}
        for key, chain in self._snapshots.items():
            if key.user_id != user_id or not chain:
                continue
            if event_id is not None and key.event_id != event_id:
                continue
            if wanted is not None and key.market_id not in wanted:
                continue
            current = chain[-1]
            previous = latest.get(key.market_id)
            if previous is None or current.created_at >= previous.created_at:
                latest[key.market_id] = current
        return latest

    # ------------------------------------------------------------------
    # Wagers
    # ------------------------------------------------------------------

    async def record_placement(
        self,
        wager: Wager,
        snapshot: MarginSnapshot | None = None,
    ) -> Wager:
        async with self._lock:
            if snapshot is not None:
                chain = self._snapshots.setdefault(snapshot.key, [])
                current_version = chain[-1].version if chain else 0
                if current_version != snapshot.version - 1:
                    raise StaleSnapshotError(
                        tuple(snapshot.key), snapshot.version - 1, current_version
                    )
                chain.append(snapshot)
            self._wagers[wager.id] = wager
        return wager

    async def get_wager(self, wager_id: str) -> Wager | None:
        return self._wagers.get(wager_id)

    async def list_wagers(self, filters: WagerFilter | None = None) -> list[Wager]:
        filters = filters or WagerFilter()
        # insertion order is placement order
        return [w for w in reversed(self._wagers.values()) if filters.matches(w)]

    async def pending_event_ids(self) -> list[str]:
        return sorted(
            {w.event_id for w in self._wagers.values() if w.status is WagerStatus.PENDING}
        )

    # ------------------------------------------------------------------
    # Settlement and corrections
    # ------------------------------------------------------------------

    async def apply_settlement(
        self,
        statuses: Mapping[str, WagerStatus],
        deltas: Mapping[str, Decimal],
    ) -> None:
        async with self._lock:
            for wager_id in statuses:
                wager = self._wagers.get(wager_id)
                if wager is None:
                    raise WagerNotFound(wager_id)
                if wager.status is not WagerStatus.PENDING:
                    raise WagerStateConflict(wager_id, WagerStatus.PENDING.value)
            for user_id in deltas:
                if user_id not in self._accounts:
                    raise AccountNotFound(user_id)

            for wager_id, status in statuses.items():
                self._wagers[wager_id] = self._wagers[wager_id].model_copy(
                    update={"status": status}
                )
            for user_id, delta in deltas.items():
                self._increment(user_id, delta)

        logger.debug(
            f"Applied settlement: {len(statuses)} wagers, {len(deltas)} balances"
        )

    async def apply_correction(
        self,
        wager_id: str,
        expected_status: WagerStatus,
        target_status: WagerStatus,
        user_id: str,
        delta: Decimal,
        minimum_balance: Decimal | None = None,
    ) -> Wager:
        async with self._lock:
            wager = self._wagers.get(wager_id)
            if wager is None:
                raise WagerNotFound(wager_id)
            if wager.status is not expected_status:
                raise WagerStateConflict(wager_id, expected_status.value)

            self._increment(user_id, delta, minimum_balance)
            updated = wager.model_copy(update={"status": target_status})
            self._wagers[wager_id] = updated
        return updated
