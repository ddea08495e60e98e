"""Pure ledger engine: profit/loss, margins, exposure, status transitions, settlement."""

from .exposure import (
    ExposureView,
    TieredLeg,
    event_tiered_exposure,
    margin_exposure,
    ordinary_exposure,
    tiered_exposure_by_market,
    tiered_market_exposure,
)
from .margin import MarginLedger, Position, fold_position, open_position, required_headroom
from .profit_loss import calculate_profit_loss
from .settlement import SettlementProcessor, SettlementReport, accumulate_balance_deltas
from .transitions import StatusTransitionGuard, TransitionPlan

__all__ = [
    # Profit and loss
    "calculate_profit_loss",
    # Margins
    "MarginLedger",
    "Position",
    "open_position",
    "fold_position",
    "required_headroom",
    # Exposure
    "ExposureView",
    "TieredLeg",
    "margin_exposure",
    "ordinary_exposure",
    "tiered_market_exposure",
    "tiered_exposure_by_market",
    "event_tiered_exposure",
    # Transitions
    "StatusTransitionGuard",
    "TransitionPlan",
    # Settlement
    "SettlementProcessor",
    "SettlementReport",
    "accumulate_balance_deltas",
]
