"""Storage layer for Betledger.

This package provides:
- The LedgerStore protocol every adapter implements
- WagerFilter for wager listings
- MemoryLedgerStore, a lock-guarded in-process adapter

The SQL adapter lives in betledger.database.
"""

from .base import LedgerStore, WagerFilter
from .memory import MemoryLedgerStore

__all__ = [
    "LedgerStore",
    "WagerFilter",
    "MemoryLedgerStore",
]
