"""Manual wager status corrections."""

import logging
from typing import Any

from betledger.engine.transitions import StatusTransitionGuard
from betledger.errors import AccountNotFound, WagerNotFound
from betledger.models import Wager, WagerStatus
from betledger.storage.base import LedgerStore

logger = logging.getLogger(__name__)


class CorrectionService:
    """
    Applies admin status changes through the StatusTransitionGuard.

    Legality is checked first, then balance sufficiency, and only then is the
    status change written together with its balance increment.
    """

    def __init__(self, store: LedgerStore, guard: StatusTransitionGuard | None = None):
        self.store = store
        self.guard = guard or StatusTransitionGuard()

    async def change_status(self, wager_id: str, target_status: Any) -> Wager:
        target = WagerStatus.parse(target_status)

        wager = await self.store.get_wager(wager_id)
        if wager is None:
            raise WagerNotFound(wager_id)

        plan = self.guard.plan(wager, target)

        account = await self.store.get_account(wager.user_id)
        if account is None:
            raise AccountNotFound(wager.user_id)
        self.guard.check_balance(plan, account.balance)

        updated = await self.store.apply_correction(
            wager_id=wager.id,
            expected_status=plan.current,
            target_status=plan.target,
            user_id=wager.user_id,
            delta=plan.delta,
            minimum_balance=plan.minimum_balance,
        )

        logger.info(
            f"Changed wager {wager.id} status {plan.current.value} -> "
            f"{plan.target.value} (balance {plan.delta:+})"
        )
        return updated
