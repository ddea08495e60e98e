from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator


class PriceLevel(BaseModel):
    price: Decimal = Decimal("0")
    size: Decimal = Decimal("0")


class Runner(BaseModel):
    selection_id: str = ""
    name: str = ""
    back: list[PriceLevel] = Field(default_factory=list)
    lay: list[PriceLevel] = Field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Runner:
        return cls(
            selection_id=str(data.get("selectionId", data.get("sid", ""))),
            name=data.get("runnerName", data.get("name", "")) or "",
            back=[PriceLevel(**lvl) for lvl in data.get("back") or [] if isinstance(lvl, dict)],
            lay=[PriceLevel(**lvl) for lvl in data.get("lay") or [] if isinstance(lvl, dict)],
        )


class MarketBook(BaseModel):
    """One market as returned by the feed. ``winner`` is None until resolved."""

    market_id: str
    status: str = "unknown"
    runners: list[Runner] = Field(default_factory=list)
    winner: str | None = None

    @field_validator("winner", mode="before")
    @classmethod
    def stringify_winner(cls, v: Any) -> str | None:
        if v is None or v == "":
            return None
        return str(v)

    @property
    def is_resolved(self) -> bool:
        return self.winner is not None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> MarketBook:
        return cls(
            market_id=str(data.get("marketId", "")),
            status=data.get("status") or "unknown",
            runners=[Runner.from_api(r) for r in data.get("runners") or [] if isinstance(r, dict)],
            winner=data.get("winner"),
        )


class ListedMarket(BaseModel):
    """A market as listed for an event, before prices are attached."""

    market_id: str
    name: str = ""
    status: str = "unknown"
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.status.strip().lower() == "open"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> ListedMarket:
        market = data.get("market") or {}
        return cls(
            market_id=str(market.get("id", "")),
            name=market.get("name") or "",
            status=market.get("status") or "unknown",
            details=data,
        )


class PricedMarket(BaseModel):
    market: ListedMarket
    book: MarketBook | None = None


class EventMarkets(BaseModel):
    """Everything priced for one event: match odds, bookmaker and fancy markets."""

    event_id: str
    event: dict[str, Any] | None = None
    match_odds: MarketBook | None = None
    bookmaker: list[PricedMarket] = Field(default_factory=list)
    fancy: list[PricedMarket] = Field(default_factory=list)
