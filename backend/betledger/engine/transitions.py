"""Wager status state machine and the balance effect of each transition.

States: pending (initial), won, lost.

- pending -> won / lost: settlement outcome
- won <-> lost: manual correction only

Anything else is rejected before a balance is touched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from betledger.errors import AlreadyInStatus, IllegalTransition, InsufficientBalance
from betledger.models import Wager, WagerStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[WagerStatus, frozenset[WagerStatus]] = {
    WagerStatus.PENDING: frozenset({WagerStatus.WON, WagerStatus.LOST}),
    WagerStatus.WON: frozenset({WagerStatus.LOST}),
    WagerStatus.LOST: frozenset({WagerStatus.WON}),
}

REVERSAL_FORMULAS = ("legacy", "symmetric")


@dataclass(frozen=True)
class TransitionPlan:
    """Balance effect of one status change.

    ``minimum_balance`` is the balance the account must hold before ``delta``
    is applied; None means no requirement.
    """

    wager_id: str
    user_id: str
    current: WagerStatus
    target: WagerStatus
    delta: Decimal
    minimum_balance: Decimal | None = None

    @property
    def is_correction(self) -> bool:
        return self.current is not WagerStatus.PENDING


class StatusTransitionGuard:
    """
    Validates status changes and computes their balance plans.

    ``reversal_formula`` selects the won -> lost arithmetic:

    - "legacy": requires balance >= payout - 2*stake and debits
      payout + 2*stake, as the production platform has always done
    - "symmetric": requires balance >= payout and debits payout, the exact
      inverse of lost -> won
    """

    def __init__(self, reversal_formula: str = "legacy"):
        if reversal_formula not in REVERSAL_FORMULAS:
            raise ValueError(f"Unknown reversal formula: {reversal_formula}")
        self.reversal_formula = reversal_formula

    def validate(self, current: WagerStatus, target: WagerStatus) -> None:
        if current is target:
            raise AlreadyInStatus(target.value)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise IllegalTransition(current.value, target.value)

    def plan(self, wager: Wager, target: WagerStatus | str) -> TransitionPlan:
        target = WagerStatus.parse(target)
        current = wager.status
        self.validate(current, target)

        minimum_balance = None
        if current is WagerStatus.PENDING:
            if target is WagerStatus.WON:
                delta = wager.payout - wager.stake
            else:
                delta = -wager.stake
        elif target is WagerStatus.WON:
            delta = wager.payout
        elif self.reversal_formula == "legacy":
            minimum_balance = wager.payout - 2 * wager.stake
            delta = -(wager.payout + 2 * wager.stake)
        else:
            minimum_balance = wager.payout
            delta = -wager.payout

        return TransitionPlan(
            wager_id=wager.id,
            user_id=wager.user_id,
            current=current,
            target=target,
            delta=delta,
            minimum_balance=minimum_balance,
        )

    def check_balance(self, plan: TransitionPlan, balance: Decimal) -> None:
        if plan.minimum_balance is not None and balance < plan.minimum_balance:
            logger.info(
                f"Rejected {plan.current.value} -> {plan.target.value} for wager "
                f"{plan.wager_id}: balance {balance} < {plan.minimum_balance}"
            )
            raise InsufficientBalance(
                plan.minimum_balance,
                balance,
                message="Insufficient balance to reverse winnings",
            )
