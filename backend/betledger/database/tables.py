"""Ledger database tables."""

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)

from betledger.database.base import Base
from betledger.models import (
    Account,
    Category,
    MarginSnapshot,
    Side,
    Wager,
    WagerStatus,
)

MONEY = Numeric(18, 4)


class AccountRecord(Base):
    """User balance."""

    __tablename__ = "accounts"

    id = Column(String(64), primary_key=True)
    balance = Column(MONEY, nullable=False, default=Decimal("0"))
    status = Column(String(16), nullable=False, default="active")

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'banned')",
            name="valid_account_status",
        ),
    )

    def to_model(self) -> Account:
        return Account(id=self.id, balance=self.balance, status=self.status)

    def __repr__(self) -> str:
        return f"<Account {self.id} {self.balance}>"


class WagerRecord(Base):
    """Individual wager record."""

    __tablename__ = "wagers"

    # Placement order, used for stable newest-first listings
    sequence = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), nullable=False, unique=True, index=True)

    user_id = Column(
        String(64),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    event_id = Column(String(64), nullable=False, index=True)
    match = Column(String(255), nullable=False)
    market_id = Column(String(64), nullable=False)
    selection = Column(String(255), nullable=False)
    selection_id = Column(String(64), nullable=True)
    fancy_threshold = Column(MONEY, nullable=True)

    # Wager details
    category = Column(String(16), nullable=False)
    side = Column(String(4), nullable=False)
    stake = Column(MONEY, nullable=False)
    price = Column(MONEY, nullable=False)
    payout = Column(MONEY, nullable=False)
    status = Column(String(8), nullable=False, default="pending")

    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "category IN ('match odds', 'bookmaker', 'fancy')",
            name="valid_wager_category",
        ),
        CheckConstraint("side IN ('back', 'lay')", name="valid_wager_side"),
        CheckConstraint(
            "status IN ('pending', 'won', 'lost')",
            name="valid_wager_status",
        ),
        CheckConstraint("stake > 0", name="positive_stake"),
        Index("idx_wagers_event_status", "event_id", "status"),
        Index("idx_wagers_user_status", "user_id", "status"),
    )

    @classmethod
    def from_model(cls, wager: Wager) -> "WagerRecord":
        return cls(
            id=wager.id,
            user_id=wager.user_id,
            event_id=wager.event_id,
            match=wager.match,
            market_id=wager.market_id,
            selection=wager.selection,
            selection_id=wager.selection_id,
            fancy_threshold=wager.fancy_threshold,
            category=wager.category.value,
            side=wager.side.value,
            stake=wager.stake,
            price=wager.price,
            payout=wager.payout,
            status=wager.status.value,
            created_at=wager.created_at,
        )

    def to_model(self) -> Wager:
        return Wager(
            id=self.id,
            user_id=self.user_id,
            event_id=self.event_id,
            match=self.match,
            market_id=self.market_id,
            selection=self.selection,
            selection_id=self.selection_id,
            fancy_threshold=self.fancy_threshold,
            category=Category(self.category),
            side=Side(self.side),
            stake=self.stake,
            price=self.price,
            payout=self.payout,
            status=WagerStatus(self.status),
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<Wager {self.side} {self.stake} @ {self.price} on {self.market_id}>"


class MarginSnapshotRecord(Base):
    """One immutable version of a user's net position on a market."""

    __tablename__ = "margin_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    event_id = Column(String(64), nullable=False)
    market_id = Column(String(64), nullable=False)
    selection_id = Column(String(64), nullable=False)
    profit = Column(MONEY, nullable=False)
    loss = Column(MONEY, nullable=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        # Two writers consuming the same version cannot both commit
        UniqueConstraint(
            "user_id", "event_id", "market_id", "version",
            name="uq_margin_snapshot_version",
        ),
        CheckConstraint("version >= 1", name="positive_snapshot_version"),
        Index("idx_margin_user_market", "user_id", "market_id"),
    )

    @classmethod
    def from_model(cls, snapshot: MarginSnapshot) -> "MarginSnapshotRecord":
        return cls(
            user_id=snapshot.user_id,
            event_id=snapshot.event_id,
            market_id=snapshot.market_id,
            selection_id=snapshot.selection_id,
            profit=snapshot.profit,
            loss=snapshot.loss,
            version=snapshot.version,
            created_at=snapshot.created_at,
        )

    def to_model(self) -> MarginSnapshot:
        return MarginSnapshot(
            user_id=self.user_id,
            event_id=self.event_id,
            market_id=self.market_id,
            selection_id=self.selection_id,
            profit=self.profit,
            loss=self.loss,
            version=self.version,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<MarginSnapshot {self.market_id} v{self.version}>"
