"""Domain models: wagers, margin snapshots, accounts and placement requests."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Literal, NamedTuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from betledger.errors import InvalidCategory, InvalidSide, WagerValidationError

AccountStatus = Literal["active", "banned"]

# Scale of every stored amount and price
MONEY_PLACES = 4
MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_PLACES)
MONEY_LIMIT = Decimal(10) ** (18 - MONEY_PLACES)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def decimal_places(value: Decimal) -> int:
    exponent = value.normalize().as_tuple().exponent
    return max(-exponent, 0) if isinstance(exponent, int) else 0


def to_decimal(value: Any) -> Decimal:
    """Convert numbers and numeric strings to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise WagerValidationError(f"Expected a number, got {value!r}")
    try:
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(str(value).strip()) if isinstance(value, str) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise WagerValidationError(f"Expected a number, got {value!r}") from e


def _normalize(value: Any) -> str:
    return str(value).strip().lower()


class Category(str, Enum):
    MATCH_ODDS = "match odds"
    BOOKMAKER = "bookmaker"
    FANCY = "fancy"

    @classmethod
    def parse(cls, value: Any) -> Category:
        """Accept members or case/whitespace-insensitive names ("Match_Odds" too)."""
        if isinstance(value, cls):
            return value
        normalized = _normalize(value).replace("_", " ")
        for member in cls:
            if member.value == normalized:
                return member
        raise InvalidCategory(value)

    @property
    def is_tiered(self) -> bool:
        return self is Category.FANCY


class Side(str, Enum):
    BACK = "back"
    LAY = "lay"

    @classmethod
    def parse(cls, value: Any) -> Side:
        if isinstance(value, cls):
            return value
        normalized = _normalize(value)
        for member in cls:
            if member.value == normalized:
                return member
        raise InvalidSide(value)


class WagerStatus(str, Enum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"

    @classmethod
    def parse(cls, value: Any) -> WagerStatus:
        if isinstance(value, cls):
            return value
        normalized = _normalize(value)
        for member in cls:
            if member.value == normalized:
                return member
        raise WagerValidationError(f"Invalid status value {value!r}")


class ProfitLoss(NamedTuple):
    """Gain realised on a win and (negative) loss realised otherwise."""

    profit: Decimal
    loss: Decimal


class MarginKey(NamedTuple):
    user_id: str
    event_id: str
    market_id: str


class Account(BaseModel):
    id: str
    balance: Decimal = Decimal("0")
    status: AccountStatus = "active"


class Wager(BaseModel):
    """A placed wager. Only ``status`` ever changes after creation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    user_id: str
    event_id: str
    match: str
    market_id: str
    selection: str
    selection_id: str | None = None
    fancy_threshold: Decimal | None = None
    stake: Decimal
    price: Decimal
    category: Category
    side: Side
    status: WagerStatus = WagerStatus.PENDING
    payout: Decimal
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("stake", "price", "payout", "fancy_threshold")
    @classmethod
    def to_money_scale(cls, v: Decimal | None) -> Decimal | None:
        return quantize_money(v) if v is not None else None

    @property
    def margin_key(self) -> MarginKey:
        return MarginKey(self.user_id, self.event_id, self.market_id)


class MarginSnapshot(BaseModel):
    """Immutable net position of one user on one market.

    ``profit`` is the net result if ``selection_id`` wins, ``loss`` the net
    result otherwise. Each write on a key consumes ``version`` n and produces
    n + 1.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    event_id: str
    market_id: str
    selection_id: str
    profit: Decimal
    loss: Decimal
    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def key(self) -> MarginKey:
        return MarginKey(self.user_id, self.event_id, self.market_id)


class PlacementRequest(BaseModel):
    """Validated wager placement payload. Accepts snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_id: str = Field(min_length=1)
    match: str = Field(min_length=1)
    market_id: str = Field(min_length=1)
    selection: str = Field(min_length=1)
    selection_id: str | None = None
    fancy_threshold: Decimal | None = None
    stake: Decimal = Field(gt=0)
    price: Decimal = Field(gt=0)
    category: Category
    side: Side

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, v: Any) -> Any:
        if isinstance(v, str) and not isinstance(v, Category):
            return _normalize(v).replace("_", " ")
        return v

    @field_validator("side", mode="before")
    @classmethod
    def normalize_side(cls, v: Any) -> Any:
        if isinstance(v, str) and not isinstance(v, Side):
            return _normalize(v)
        return v

    @field_validator("event_id", "market_id", "selection_id", mode="before")
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("stake", "price", "fancy_threshold")
    @classmethod
    def check_money_scale(cls, v: Decimal | None) -> Decimal | None:
        if v is None:
            return v
        if decimal_places(v) > MONEY_PLACES:
            raise ValueError(f"at most {MONEY_PLACES} decimal places allowed, got {v}")
        if abs(v) >= MONEY_LIMIT:
            raise ValueError(f"must be below {MONEY_LIMIT}, got {v}")
        return v
