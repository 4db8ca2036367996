"""
Tests for the persisted ledger.

Validates that:
1. Buys and sells persist lots, closures and the cached position
2. Rejected transactions write nothing
3. Deleting, editing or backdating a transaction replays the ticker
4. Cash movements and dividends round-trip through the database
5. Concurrent sells of one ticker never oversell
"""

import threading
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from sqlmodel import select

from lotbook.core.currency import StaticRateProvider
from lotbook.core.exceptions import (
    InconsistentCashMovementError,
    InsufficientSharesError,
    InvalidTransactionError,
    RecordNotFoundError,
)
from lotbook.core.models import CashMovement, Direction, LotStatus, Transaction
from lotbook.db.database import get_session
from lotbook.db.models import PositionRecord
from lotbook.ledger import Ledger, record_many


@pytest.fixture(autouse=True)
def setup_db(tmp_db: Path):
    """Use tmp_db fixture from conftest for clean database per test."""
    yield


@pytest.fixture
def ledger():
    return Ledger()


def _position_record(ticker: str, user_id: str = "test-user") -> PositionRecord:
    """Helper to fetch the cached position row for a ticker."""
    with get_session() as session:
        record = session.exec(
            select(PositionRecord)
            .where(PositionRecord.user_id == user_id)
            .where(PositionRecord.ticker == ticker)
        ).first()
        if record:
            session.expunge(record)
        return record


class TestBuySell:
    """Tests for recording buys and sells."""

    def test_buy_creates_lot_and_position(self, ledger):
        txn = ledger.add_buy("aapl", 10, 100, transaction_date=date(2024, 1, 1), fees=1)

        lots = ledger.get_lots("AAPL")
        assert len(lots) == 1
        assert lots[0].lot_id == txn.id
        assert lots[0].quantity_remaining == Decimal("10")
        assert lots[0].entry_fee == Decimal("1")

        record = _position_record("AAPL")
        assert record.total_shares == Decimal("10")
        assert record.average_cost == Decimal("100")
        assert record.is_active is True
        assert ledger.has_open_position("AAPL") is True

    def test_sell_records_closures(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1), fees=1)
        sell, closures = ledger.add_sell("AAPL", 10, 120, transaction_date=date(2024, 6, 1), fees=2)

        assert len(closures) == 1
        assert closures[0].realized_pl == Decimal("198")

        history = ledger.get_realized_history("AAPL")
        assert len(history) == 1
        assert history[0].sell_transaction_id == sell.id
        assert history[0].realized_pl == Decimal("198")

        lot = ledger.get_lots("AAPL")[0]
        assert lot.status is LotStatus.CLOSED
        assert lot.exit_date == date(2024, 6, 1)

        record = _position_record("AAPL")
        assert record.is_active is False
        assert record.realized_pnl == Decimal("198")
        assert ledger.has_open_position("AAPL") is False

    def test_fifo_across_lots(self, ledger):
        first = ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        second = ledger.add_buy("AAPL", 10, 120, transaction_date=date(2024, 2, 1))
        ledger.add_sell("AAPL", 5, 130, transaction_date=date(2024, 3, 1))

        remaining = {lot.lot_id: lot.quantity_remaining for lot in ledger.get_lots("AAPL")}
        assert remaining == {first.id: Decimal("5"), second.id: Decimal("10")}

    def test_method_override(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        second = ledger.add_buy("AAPL", 10, 120, transaction_date=date(2024, 2, 1))

        _, closures = ledger.add_sell("AAPL", 5, 130, transaction_date=date(2024, 3, 1), method="lifo")

        assert closures[0].lot_id == second.id

    def test_same_day_lots_fifo_by_record_order(self, ledger):
        first = ledger.add_buy("AAPL", 1, 100, transaction_date=date(2024, 1, 1))
        ledger.add_buy("AAPL", 1, 90, transaction_date=date(2024, 1, 1))

        _, closures = ledger.add_sell("AAPL", 1, 110, transaction_date=date(2024, 1, 2))

        assert closures[0].lot_id == first.id

    def test_invalid_ticker(self, ledger):
        with pytest.raises(InvalidTransactionError, match="Invalid ticker"):
            ledger.add_buy("NOT A TICKER", 1, 1)

    def test_duplicate_transaction_id(self, ledger):
        txn = ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))

        with pytest.raises(InvalidTransactionError, match="already exists"):
            ledger.record_transaction(txn)

    def test_cross_currency_sell(self):
        ledger = Ledger(fx=StaticRateProvider({("USD", "EUR"): "0.9"}))
        ledger.add_buy("SAP", 10, 100, transaction_date=date(2024, 1, 1), currency="EUR")

        _, closures = ledger.add_sell(
            "SAP", 10, 110, transaction_date=date(2024, 2, 1), currency="USD"
        )

        assert closures[0].realized_pl == Decimal("-10.0")


class TestAtomicity:
    """Tests that rejected operations leave no trace."""

    def test_insufficient_shares_writes_nothing(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        before = ledger.get_lots("AAPL")

        with pytest.raises(InsufficientSharesError):
            ledger.add_sell("AAPL", 11, 120, transaction_date=date(2024, 2, 1))

        assert ledger.get_lots("AAPL") == before
        assert len(ledger.get_transactions("AAPL")) == 1
        assert ledger.get_realized_history() == []

    def test_predating_sell_writes_nothing(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 2, 1))

        with pytest.raises(InvalidTransactionError):
            ledger.add_sell("AAPL", 1, 120, transaction_date=date(2024, 1, 1))

        assert len(ledger.get_transactions("AAPL")) == 1


class TestReplay:
    """Tests for edits, deletes and backdated entries."""

    def test_delete_sell_restores_lot(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        sell, _ = ledger.add_sell("AAPL", 4, 120, transaction_date=date(2024, 2, 1))

        ledger.delete_transaction(sell.id)

        lot = ledger.get_lots("AAPL")[0]
        assert lot.quantity_remaining == Decimal("10")
        assert lot.status is LotStatus.OPEN
        assert ledger.get_realized_history() == []
        assert _position_record("AAPL").total_shares == Decimal("10")

    def test_delete_only_buy_removes_position(self, ledger):
        buy = ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))

        ledger.delete_transaction(buy.id)

        assert ledger.get_lots("AAPL") == []
        assert _position_record("AAPL") is None
        assert ledger.get_position("AAPL") is None

    def test_delete_buy_needed_by_sell_is_rejected(self, ledger):
        buy = ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        ledger.add_sell("AAPL", 10, 120, transaction_date=date(2024, 2, 1))

        with pytest.raises(InsufficientSharesError):
            ledger.delete_transaction(buy.id)

        assert len(ledger.get_transactions("AAPL")) == 2
        assert len(ledger.get_realized_history("AAPL")) == 1

    def test_delete_missing(self, ledger):
        with pytest.raises(RecordNotFoundError, match="Transaction not found"):
            ledger.delete_transaction("nope")

    def test_backdated_buy_replays(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 3, 1))
        ledger.add_sell("AAPL", 5, 150, transaction_date=date(2024, 4, 1))
        assert ledger.get_realized_history()[0].realized_pl == Decimal("250")

        early = ledger.add_buy("AAPL", 10, 80, transaction_date=date(2024, 1, 1))

        history = ledger.get_realized_history()
        assert len(history) == 1
        assert history[0].lot_id == early.id
        assert history[0].realized_pl == Decimal("350")

        lots = ledger.get_lots("AAPL")
        assert [lot.entry_date for lot in lots] == [date(2024, 1, 1), date(2024, 3, 1)]
        assert [lot.quantity_remaining for lot in lots] == [Decimal("5"), Decimal("10")]

    def test_edit_price_replays(self, ledger):
        buy = ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        ledger.add_sell("AAPL", 10, 120, transaction_date=date(2024, 2, 1))

        edited = ledger.edit_transaction(buy.id, price=90)

        assert edited.price == Decimal("90")
        assert ledger.get_realized_history()[0].realized_pl == Decimal("300")
        assert _position_record("AAPL").realized_pnl == Decimal("300")

    def test_edit_quantity_below_sold_is_rejected(self, ledger):
        buy = ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        ledger.add_sell("AAPL", 10, 120, transaction_date=date(2024, 2, 1))

        with pytest.raises(InsufficientSharesError):
            ledger.edit_transaction(buy.id, quantity=5)

        assert ledger.get_transactions("AAPL")[-1].quantity == Decimal("10")
        assert ledger.get_realized_history()[0].realized_pl == Decimal("200")

    def test_edit_notes_only(self, ledger):
        buy = ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        before = ledger.get_lots("AAPL")

        edited = ledger.edit_transaction(buy.id, notes="core position")

        assert edited.notes == "core position"
        assert ledger.get_lots("AAPL") == before

    def test_rebuild_with_other_method(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        second = ledger.add_buy("AAPL", 10, 120, transaction_date=date(2024, 2, 1))
        ledger.add_sell("AAPL", 5, 130, transaction_date=date(2024, 3, 1))

        result = ledger.rebuild("AAPL", method="hifo")

        assert result.match_log[0].lot_id == second.id
        assert ledger.get_realized_history()[0].realized_pl == Decimal("50")

    def test_replay_keeps_sell_lot_method(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        second = ledger.add_buy("AAPL", 10, 120, transaction_date=date(2024, 2, 1))
        sell, closures = ledger.add_sell("AAPL", 5, 130, transaction_date=date(2024, 3, 1), method="lifo")
        assert sell.lot_method == "lifo"
        assert [(c.lot_id, c.realized_pl) for c in closures] == [(second.id, Decimal("50"))]

        early = ledger.add_buy("AAPL", 1, 90, transaction_date=date(2023, 12, 1))

        history = ledger.get_realized_history()
        assert [(c.lot_id, c.realized_pl) for c in history] == [(second.id, Decimal("50"))]

        ledger.delete_transaction(early.id)

        history = ledger.get_realized_history()
        assert [(c.lot_id, c.realized_pl) for c in history] == [(second.id, Decimal("50"))]
        assert ledger.get_transactions("AAPL")[0].lot_method == "lifo"

    def test_backdated_sell_does_not_change_earlier_sells(self, ledger):
        first = ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        second = ledger.add_buy("AAPL", 10, 120, transaction_date=date(2024, 2, 1))
        late, _ = ledger.add_sell("AAPL", 5, 130, transaction_date=date(2024, 4, 1))

        early, _ = ledger.add_sell("AAPL", 2, 125, transaction_date=date(2024, 3, 1), method="hifo")

        lots_by_sell = {c.sell_transaction_id: c.lot_id for c in ledger.get_realized_history()}
        assert lots_by_sell == {early.id: second.id, late.id: first.id}

    def test_rebuild_stores_new_method(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        second = ledger.add_buy("AAPL", 10, 120, transaction_date=date(2024, 2, 1))
        sell, _ = ledger.add_sell("AAPL", 5, 130, transaction_date=date(2024, 3, 1))

        ledger.rebuild("AAPL", method="lifo")
        ledger.edit_transaction(sell.id, price=140)

        history = ledger.get_realized_history()
        assert history[0].lot_id == second.id
        assert history[0].realized_pl == Decimal("100")

    def test_record_many_sorts_by_date(self, ledger):
        txns = [
            Transaction.create("s1", "AAPL", "sell", "2024-02-01", 5, 120),
            Transaction.create("b1", "AAPL", "buy", "2024-01-01", 10, 100),
        ]

        assert record_many(ledger, txns) == 2
        assert ledger.get_lots("AAPL")[0].quantity_remaining == Decimal("5")


class TestPositions:
    """Tests for position reads."""

    def test_position_with_price(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        ledger.add_buy("AAPL", 10, 120, transaction_date=date(2024, 2, 1))

        position = ledger.get_position("AAPL", current_price=130)

        assert position.average_cost == Decimal("110")
        assert position.total_shares == Decimal("20")
        assert position.unrealized_pnl == Decimal("400")

    def test_position_without_price(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))

        position = ledger.get_position("AAPL")

        assert position.unrealized_pnl is None
        assert position.current_value is None

    def test_positions_and_summary(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        ledger.add_buy("MSFT", 5, 400, transaction_date=date(2024, 1, 1))
        ledger.add_buy("IBM", 1, 150, transaction_date=date(2024, 1, 1))
        ledger.add_sell("IBM", 1, 160, transaction_date=date(2024, 1, 2))

        positions = ledger.get_positions({"AAPL": 110})
        assert [p.ticker for p in positions] == ["AAPL", "MSFT"]

        summary = ledger.get_portfolio_summary({"AAPL": 110})
        assert summary.position_count == 2
        assert summary.closed_position_count == 1
        assert summary.realized_pnl_total == Decimal("10")
        assert summary.missing_prices == ["MSFT"]

    def test_users_are_isolated(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        other = Ledger(user_id="someone-else")

        assert other.get_positions() == []
        assert other.get_transactions() == []
        with pytest.raises(InsufficientSharesError):
            other.add_sell("AAPL", 1, 100, transaction_date=date(2024, 1, 2))


class TestConcurrency:
    """Tests for serialized writes per ticker."""

    def test_concurrent_sells_never_oversell(self, ledger):
        ledger.add_buy("AAPL", 10, 100, transaction_date=date(2024, 1, 1))
        outcomes = []

        def sell():
            try:
                Ledger().add_sell("AAPL", 3, 110, transaction_date=date(2024, 2, 1))
                outcomes.append("ok")
            except InsufficientSharesError:
                outcomes.append("rejected")

        threads = [threading.Thread(target=sell) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 3
        assert outcomes.count("rejected") == 2
        assert ledger.get_position("AAPL", 110).total_shares == Decimal("1")


class TestCashMovements:
    """Tests for persisted funding records."""

    def test_period_stats_from_database(self, ledger):
        ledger.add_cash_movement("in", 1000, transaction_date="2024-01-05",
                                 period_from="2024-01-01", period_to="2024-01-31")
        ledger.add_cash_movement("out", 300, transaction_date="2024-02-05",
                                 period_from="2024-02-01", period_to="2024-02-29")
        ledger.add_cash_movement("in", 500, transaction_date="2024-03-05",
                                 period_from="2024-03-01")

        stats = ledger.get_period_stats()

        assert [s.cumulative_home for s in stats] == [Decimal("1000"), Decimal("700"), Decimal("1200")]
        assert stats[-1].period_display == "Mar 1, 2024 - Ongoing"
        assert len(ledger.get_unique_periods()) == 3
        assert len(ledger.get_period_movements("2024-02-01", "2024-02-29")) == 1

    def test_rate_stored(self, ledger):
        movement = ledger.add_cash_movement(Direction.IN, 1000, spot_rate="1.085",
                                            transaction_date=date(2024, 1, 5))

        stored = ledger.get_cash_movements()[0]
        assert stored.id == movement.id
        assert stored.spot_rate == Decimal("1.085")
        assert stored.trading_currency_value == Decimal("1085")

        summary = ledger.get_cash_balance_summary()
        assert summary.total_deposited_trading == Decimal("1085")

    def test_import_rejects_inconsistent(self, ledger):
        movement = CashMovement(
            id="broker-1",
            direction=Direction.IN,
            home_currency_value=Decimal("1000"),
            trading_currency_value=Decimal("1100"),
            spot_rate=Decimal("1.085"),
            transaction_date=date(2024, 1, 5),
        )

        with pytest.raises(InconsistentCashMovementError):
            ledger.import_cash_movement(movement)

        assert ledger.get_cash_movements() == []

    def test_delete(self, ledger):
        movement = ledger.add_cash_movement("in", 100, transaction_date=date(2024, 1, 5))

        ledger.delete_cash_movement(movement.id)

        assert ledger.get_cash_movements() == []
        with pytest.raises(RecordNotFoundError):
            ledger.delete_cash_movement(movement.id)


class TestDividends:
    """Tests for persisted dividends and yield."""

    def test_yield_on_position(self, ledger):
        ledger.add_buy("AAPL", 100, 100, transaction_date=date(2024, 1, 1))
        ledger.add_dividend("AAPL", "2024-02-09", "0.24", 100, payment_date="2024-02-15")
        ledger.add_dividend("AAPL", "2024-05-10", "0.25", 100)

        result = ledger.get_dividend_yield("AAPL", current_price=120)

        assert result.total_received == Decimal("49")
        assert result.payment_count == 2
        assert result.personal_yield == Decimal("0.49")
        assert float(result.market_yield) == pytest.approx(49 / 12000 * 100)

    def test_yield_without_position_is_zero(self, ledger):
        ledger.add_dividend("MSFT", "2024-02-14", "0.75", 10)

        result = ledger.get_dividend_yield("MSFT", current_price=400)

        assert result.personal_yield == 0
        assert result.market_yield == 0

    @pytest.mark.parametrize(
        "dps,shares", [(0, 10), ("0.5", 0), (-1, 10), ("NaN", 10), ("0.5", "Infinity")]
    )
    def test_invalid_dividend(self, ledger, dps, shares):
        with pytest.raises(ValueError):
            ledger.add_dividend("AAPL", "2024-02-09", dps, shares)

    def test_summary_grouping(self, ledger):
        ledger.add_dividend("AAPL", "2024-02-09", "0.24", 100, payment_date="2024-02-15")
        ledger.add_dividend("MSFT", "2024-05-15", "0.75", 10, payment_date="2024-06-13")

        assert [s.key for s in ledger.get_dividend_summary("quarter")] == ["2024-Q2", "2024-Q1"]
        assert [s.key for s in ledger.get_dividend_summary("ticker")] == ["AAPL", "MSFT"]

        with pytest.raises(ValueError, match="Invalid grouping"):
            ledger.get_dividend_summary("month")
