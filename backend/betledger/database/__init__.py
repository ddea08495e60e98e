"""Relational persistence for the ledger."""

from betledger.database.base import Base
from betledger.database.session import create_engine, create_session_factory, get_db_session
from betledger.database.store import SqlLedgerStore, open_store
from betledger.database.tables import AccountRecord, MarginSnapshotRecord, WagerRecord

__all__ = [
    "Base",
    "create_engine",
    "create_session_factory",
    "get_db_session",
    "SqlLedgerStore",
    "open_store",
    "AccountRecord",
    "MarginSnapshotRecord",
    "WagerRecord",
]
