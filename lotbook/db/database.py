"""
SQLite engine and sessions for the ledger.

One engine per process, created lazily at config.db_path. Every ledger
write runs inside get_session(), so a rejected transaction rolls back
its lot, closure and position rows together.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Generator

from sqlmodel import Session, SQLModel, create_engine

from lotbook.config import config

logger = logging.getLogger(__name__)

# Process-wide engine
_engine = None
_engine_lock = threading.Lock()


def get_engine():
    """Return the process-wide engine, creating it on first use."""
    global _engine

    if _engine is None:
        with _engine_lock:
            if _engine is None:
                db_path = config.db_path
                db_path.parent.mkdir(parents=True, exist_ok=True)

                _engine = create_engine(
                    f"sqlite:///{db_path}",
                    echo=False,
                    # Sessions are opened from several threads
                    connect_args={"check_same_thread": False},
                )
                logger.info("Ledger database opened: %s", db_path)

    return _engine


def init_db() -> None:
    """Create the ledger tables if they don't exist. Safe to call repeatedly."""
    from lotbook.db.models import (  # noqa: F401
        CashMovementRecord,
        DividendRecord,
        LotClosureRecord,
        PositionRecord,
        TradeLotRecord,
        TransactionRecord,
    )

    engine = get_engine()
    SQLModel.metadata.create_all(engine)
    logger.info("Ledger tables ready")


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Session that commits on success and rolls back on any exception.

    Usage:
        with get_session() as session:
            session.add(TransactionRecord.from_core(user_id, txn))
    """
    engine = get_engine()
    session = Session(engine)

    try:
        yield session
        session.commit()
    except Exception as e:
        logger.error(
            "Ledger write failed, rolling back: %s",
            str(e),
            exc_info=True,
        )
        session.rollback()
        raise
    finally:
        session.close()


def reset_engine() -> None:
    """Dispose of the engine so the next call reopens config.db_path (tests)."""
    global _engine

    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
            _engine = None
            logger.info("Database engine reset")
