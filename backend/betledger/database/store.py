"""SQLAlchemy-backed LedgerStore."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncGenerator

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from betledger.config import Settings
from betledger.database.base import Base
from betledger.database.session import create_engine, create_session_factory, get_db_session
from betledger.database.tables import AccountRecord, MarginSnapshotRecord, WagerRecord
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


def _snapshot_key_clause(key: MarginKey):
    return (
        MarginSnapshotRecord.user_id == key.user_id,
        MarginSnapshotRecord.event_id == key.event_id,
        MarginSnapshotRecord.market_id == key.market_id,
    )


class SqlLedgerStore:
    """
    Ledger store on a relational database.

    Each method runs in its own transaction. Balance changes are issued as
    ``balance = balance + delta`` updates, and status changes are conditional
    on the status the caller last saw, so concurrent writers never overwrite
    each other.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ):
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_url(cls, url: str) -> "SqlLedgerStore":
        engine = create_engine(url)
        return cls(create_session_factory(engine), engine)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlLedgerStore":
        return cls.from_url(settings.get_database_url())

    async def create_all(self) -> None:
        """Create missing tables."""
        if self._engine is None:
            raise RuntimeError("Store was created without an engine")
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def create_account(self, account: Account) -> Account:
        async with get_db_session(self._session_factory) as session, session.begin():
            await session.merge(
                AccountRecord(id=account.id, balance=account.balance, status=account.status)
            )
        return account

    async def get_account(self, user_id: str) -> Account | None:
        async with get_db_session(self._session_factory) as session:
            record = await session.get(AccountRecord, user_id)
            return record.to_model() if record else None

    async def increment_balance(
        self,
        user_id: str,
        delta: Decimal,
        minimum_balance: Decimal | None = None,
    ) -> Decimal:
        async with get_db_session(self._session_factory) as session, session.begin():
            return await self._increment(session, user_id, delta, minimum_balance)

    async def _increment(
        self,
        session: AsyncSession,
        user_id: str,
        delta: Decimal,
        minimum_balance: Decimal | None = None,
    ) -> Decimal:
        stmt = (
            update(AccountRecord)
            .where(AccountRecord.id == user_id)
            .values(balance=AccountRecord.balance + delta)
            .execution_options(synchronize_session=False)
        )
        if minimum_balance is not None:
            stmt = stmt.where(AccountRecord.balance >= minimum_balance)

        result = await session.execute(stmt)
        balance = await session.scalar(
            select(AccountRecord.balance).where(AccountRecord.id == user_id)
        )
        if result.rowcount == 0:
            if balance is None:
                raise AccountNotFound(user_id)
            raise InsufficientBalance(minimum_balance, balance)
        return balance

    # ------------------------------------------------------------------
    # Margin snapshots
    # ------------------------------------------------------------------

    async def latest_snapshot(self, key: MarginKey) -> MarginSnapshot | None:
        async with get_db_session(self._session_factory) as session:
            record = await session.scalar(
                select(MarginSnapshotRecord)
                .where(*_snapshot_key_clause(key))
                .order_by(MarginSnapshotRecord.version.desc())
                .limit(1)
            )
            return record.to_model() if record else None

    async def latest_snapshots(
        self,
        user_id: str,
        *,
        event_id: str | None = None,
        market_ids: list[str] | None = None,
    ) -> dict[str, MarginSnapshot]:
        heads = (
            select(
                MarginSnapshotRecord.event_id,
                MarginSnapshotRecord.market_id,
                func.max(MarginSnapshotRecord.version).label("version"),
            )
            .where(MarginSnapshotRecord.user_id == user_id)
            .group_by(MarginSnapshotRecord.event_id, MarginSnapshotRecord.market_id)
        )
        if event_id is not None:
            heads = heads.where(MarginSnapshotRecord.event_id == event_id)
        if market_ids is not None:
            heads = heads.where(MarginSnapshotRecord.market_id.in_(market_ids))
        heads = heads.subquery()

        stmt = select(MarginSnapshotRecord).join(
            heads,
            (MarginSnapshotRecord.user_id == user_id)
            & (MarginSnapshotRecord.event_id == heads.c.event_id)
            & (MarginSnapshotRecord.market_id == heads.c.market_id)
            & (MarginSnapshotRecord.version == heads.c.version),
        )

        async with get_db_session(self._session_factory) as session:
            records = (await session.scalars(stmt)).all()

        latest: dict[str, MarginSnapshot] = {}
        for record in records:
            snapshot = record.to_model()
            previous = latest.get(snapshot.market_id)
            if previous is None or snapshot.created_at >= previous.created_at:
                latest[snapshot.market_id] = snapshot
        return latest

    # ------------------------------------------------------------------
    # Wagers
    # ------------------------------------------------------------------

    async def record_placement(
        self,
        wager: Wager,
        snapshot: MarginSnapshot | None = None,
    ) -> Wager:
        try:
            async with get_db_session(self._session_factory) as session, session.begin():
                if snapshot is not None:
                    current_version = await session.scalar(
                        select(func.max(MarginSnapshotRecord.version)).where(
                            *_snapshot_key_clause(snapshot.key)
                        )
                    ) or 0
                    if current_version != snapshot.version - 1:
                        raise StaleSnapshotError(
                            tuple(snapshot.key), snapshot.version - 1, current_version
                        )
                    session.add(MarginSnapshotRecord.from_model(snapshot))
                session.add(WagerRecord.from_model(wager))
        except IntegrityError as e:
            if snapshot is None:
                raise
            # Another writer committed the same version first
            raise StaleSnapshotError(
                tuple(snapshot.key), snapshot.version - 1, snapshot.version
            ) from e
        return wager

    async def get_wager(self, wager_id: str) -> Wager | None:
        async with get_db_session(self._session_factory) as session:
            record = await session.scalar(select(WagerRecord).where(WagerRecord.id == wager_id))
            return record.to_model() if record else None

    async def list_wagers(self, filters: WagerFilter | None = None) -> list[Wager]:
        filters = filters or WagerFilter()
        stmt = select(WagerRecord)
        for field_name, expected in filters.model_dump(mode="json", exclude_none=True).items():
            stmt = stmt.where(getattr(WagerRecord, field_name) == expected)
        stmt = stmt.order_by(WagerRecord.sequence.desc())

        async with get_db_session(self._session_factory) as session:
            records = (await session.scalars(stmt)).all()
        return [record.to_model() for record in records]

    async def pending_event_ids(self) -> list[str]:
        async with get_db_session(self._session_factory) as session:
            rows = await session.scalars(
                select(WagerRecord.event_id)
                .where(WagerRecord.status == WagerStatus.PENDING.value)
                .distinct()
                .order_by(WagerRecord.event_id)
            )
            return list(rows.all())

    # ------------------------------------------------------------------
    # Settlement and corrections
    # ------------------------------------------------------------------

    async def _set_status(
        self,
        session: AsyncSession,
        wager_id: str,
        expected_status: WagerStatus,
        target_status: WagerStatus,
    ) -> None:
        result = await session.execute(
            update(WagerRecord)
            .where(
                WagerRecord.id == wager_id,
                WagerRecord.status == expected_status.value,
            )
            .values(status=target_status.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            exists = await session.scalar(
                select(WagerRecord.sequence).where(WagerRecord.id == wager_id)
            )
            if exists is None:
                raise WagerNotFound(wager_id)
            raise WagerStateConflict(wager_id, expected_status.value)

    async def apply_settlement(
        self,
        statuses: Mapping[str, WagerStatus],
        deltas: Mapping[str, Decimal],
    ) -> None:
        async with get_db_session(self._session_factory) as session, session.begin():
            for wager_id, status in statuses.items():
                await self._set_status(session, wager_id, WagerStatus.PENDING, status)
            for user_id, delta in deltas.items():
                await self._increment(session, user_id, delta)

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
        async with get_db_session(self._session_factory) as session, session.begin():
            await self._set_status(session, wager_id, expected_status, target_status)
            await self._increment(session, user_id, delta, minimum_balance)
            record = await session.scalar(select(WagerRecord).where(WagerRecord.id == wager_id))
            return record.to_model()


@asynccontextmanager
async def open_store(settings: Settings) -> AsyncGenerator[SqlLedgerStore, None]:
    """Open a SqlLedgerStore for the configured database, creating tables."""
    store = SqlLedgerStore.from_settings(settings)
    try:
        await store.create_all()
        yield store
    finally:
        await store.dispose()
