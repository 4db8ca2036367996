"""
Database module for Lotbook.

Provides SQLModel definitions and connection management for ledger persistence.
"""

from lotbook.db.database import get_engine, get_session, init_db, reset_engine
from lotbook.db.models import (
    CashMovementRecord,
    DividendRecord,
    LotClosureRecord,
    PositionRecord,
    TradeLotRecord,
    TransactionRecord,
)

__all__ = [
    # Models
    "TransactionRecord",
    "TradeLotRecord",
    "LotClosureRecord",
    "PositionRecord",
    "CashMovementRecord",
    "DividendRecord",
    # Database
    "get_engine",
    "get_session",
    "init_db",
    "reset_engine",
]
