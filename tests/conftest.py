"""
Pytest configuration and shared fixtures for Lotbook tests.

This module provides common fixtures used across all test modules,
including transaction builders, database fixtures, and the CLI runner.
"""

from datetime import date
from pathlib import Path
from typing import Generator

import pytest

from lotbook.core.models import Transaction


# ==============================================================================
# Autouse Fixtures - Run automatically for all tests
# ==============================================================================


@pytest.fixture(autouse=True)
def set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set environment variables for testing."""
    monkeypatch.setenv("LOTBOOK_USER_ID", "test-user")
    monkeypatch.setenv("LOTBOOK_LOT_METHOD", "fifo")

    # The config singleton reads env at import time
    from lotbook.config import config

    monkeypatch.setattr(config, "user_id", "test-user")
    monkeypatch.setattr(config, "lot_method", "fifo")
    monkeypatch.setattr(config, "home_currency", "USD")
    monkeypatch.setattr(config, "trading_currency", "USD")


# ==============================================================================
# Transaction Fixtures
# ==============================================================================


@pytest.fixture
def make_txn():
    """
    Factory for transactions with sequential ids.

    Usage:
        buy = make_txn("buy", "2024-01-01", 10, 100)
        sell = make_txn("sell", "2024-03-01", 5, 120, fee=2)
    """
    counter = {"n": 0}

    def _make(side, on, quantity, price, fee=0, ticker="AAPL", currency="USD", txn_id=None):
        counter["n"] += 1
        return Transaction.create(
            id=txn_id or f"t{counter['n']}",
            ticker=ticker,
            side=side,
            date=on,
            quantity=quantity,
            price=price,
            fee=fee,
            currency=currency,
        )

    return _make


@pytest.fixture
def two_lots(make_txn):
    """
    L1 2024-01-01 x10 @ 100 and L2 2024-02-01 x10 @ 120.

    Returns:
        Tuple of (buy transactions, LotMatcher result lots)
    """
    from lotbook.core.lots.matcher import LotMatcher

    buys = [
        make_txn("buy", date(2024, 1, 1), 10, 100, txn_id="L1"),
        make_txn("buy", date(2024, 2, 1), 10, 120, txn_id="L2"),
    ]
    return buys, LotMatcher().replay(buys).lots


# ==============================================================================
# Database Fixtures
# ==============================================================================


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    """Provide a temporary database path."""
    return tmp_path / "test_lotbook.db"


@pytest.fixture
def tmp_db(tmp_db_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """
    Set up a temporary database for testing.

    Monkeypatches the database path and initializes the schema.
    """
    monkeypatch.setenv("LOTBOOK_DB_PATH", str(tmp_db_path))

    # CRITICAL: Also patch the config singleton directly since it reads env at import time
    from lotbook.config import config

    monkeypatch.setattr(config, "db_path", tmp_db_path)

    # Reset any existing engine to force creation with new path
    from lotbook.db.database import reset_engine

    reset_engine()

    from lotbook.db import init_db

    init_db()

    yield tmp_db_path

    # Cleanup
    reset_engine()
    if tmp_db_path.exists():
        tmp_db_path.unlink()


# ==============================================================================
# CLI Fixtures
# ==============================================================================


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
