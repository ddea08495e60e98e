"""Error taxonomy shared by the engine, services and storage adapters."""

from decimal import Decimal


class BetLedgerError(Exception):
    """Base exception for all ledger errors."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class WagerValidationError(BetLedgerError):
    """Malformed, missing or out-of-range input."""

    status_code = 400


class BusinessRuleViolation(BetLedgerError):
    """Input is well formed but breaks a ledger rule."""

    status_code = 400


class InvalidCategory(BusinessRuleViolation):
    """Category is not one of match odds, bookmaker or fancy."""

    def __init__(self, category: object):
        super().__init__(
            f"Invalid category {category!r}! Must be 'match odds', 'bookmaker', or 'fancy'."
        )
        self.category = category


class InvalidSide(BusinessRuleViolation):
    """Side is not back or lay."""

    def __init__(self, side: object):
        super().__init__(f"Invalid bet type {side!r}! Must be 'back' or 'lay'.")
        self.side = side


class InsufficientBalance(BusinessRuleViolation):
    """Available balance does not cover the requested change."""

    def __init__(self, required: Decimal, available: Decimal, message: str | None = None):
        super().__init__(
            message or f"Insufficient balance: required {required}, available {available}"
        )
        self.required = required
        self.available = available


class AlreadyInStatus(BusinessRuleViolation):
    """Requested status equals the current one."""

    def __init__(self, status: str):
        super().__init__(f"Wager status is already set to {status}")
        self.status = status


class IllegalTransition(BusinessRuleViolation):
    """Requested status change is not allowed from the current status."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot change status from {current} to {requested}")
        self.current = current
        self.requested = requested


class AccountSuspended(BusinessRuleViolation):
    """Account is banned from placing wagers."""

    def __init__(self, user_id: str):
        super().__init__(
            f"Account {user_id} is banned. Please contact support."
        )
        self.user_id = user_id


class MarketUnavailable(BusinessRuleViolation):
    """Feed has no live prices for the market (odds expired)."""

    def __init__(self, market_id: str):
        super().__init__(f"Odds expired for market {market_id}")
        self.market_id = market_id


class NotFound(BetLedgerError):
    """Referenced record does not exist."""

    status_code = 404


class AccountNotFound(NotFound):
    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class WagerNotFound(NotFound):
    def __init__(self, wager_id: str):
        super().__init__(f"Wager {wager_id} not found")
        self.wager_id = wager_id


class UpstreamUnavailable(BetLedgerError):
    """External odds/outcome feed failed."""

    status_code = 503


class ConflictError(BetLedgerError):
    """Concurrent writer won a race on the same record."""

    status_code = 409


class StaleSnapshotError(ConflictError):
    """Margin snapshot write was based on a version that is no longer current."""

    def __init__(self, key: tuple, expected_version: int, current_version: int):
        super().__init__(
            f"Margin snapshot for {key} moved from version {expected_version} "
            f"to {current_version}"
        )
        self.key = key
        self.expected_version = expected_version
        self.current_version = current_version


class WagerStateConflict(ConflictError):
    """Wager status changed between read and write."""

    def __init__(self, wager_id: str, expected_status: str):
        super().__init__(
            f"Wager {wager_id} is no longer {expected_status}"
        )
        self.wager_id = wager_id
        self.expected_status = expected_status
