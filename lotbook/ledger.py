"""
Ledger persistence for transactions, lots, cash movements and dividends.

Glue between the pure accounting core and the database:
- Transaction recording (buy/sell) with lot matching and closure records
- Replay of a ticker's lots when a transaction is edited, deleted or backdated
- Cached position rows per ticker
- Cash movement recording and period statistics
- Dividend recording and yield calculation

Every lot-mutating operation for a (user, ticker) runs under a per-key
lock and inside one database session, so concurrent sells never
interleave and a rejected transaction writes nothing.
"""

import logging
import re
import threading
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Union
from uuid import uuid4

from sqlmodel import Session, select

from lotbook.config import config
from lotbook.core.currency import FxRateProvider
from lotbook.core.dividends.yields import (
    DividendSummary,
    dividend_yield,
    summarize_by_quarter,
    summarize_by_ticker,
    summarize_by_year,
)
from lotbook.core.exceptions import InvalidTransactionError, RecordNotFoundError
from lotbook.core.funding.cash_flow import (
    aggregate_periods,
    movements_in_period,
    new_cash_movement,
    summarize_cash_balance,
    unique_periods,
    validate_cash_movement,
)
from lotbook.core.lots.matcher import LotMatcher, MatchResult, get_strategy
from lotbook.core.lots.positions import (
    PortfolioSummary,
    aggregate_position,
    aggregate_positions,
    realized_history,
    summarize_portfolio,
)
from lotbook.core.models import (
    CashBalanceSummary,
    CashMovement,
    Direction,
    DividendPayment,
    DividendYield,
    LotClosure,
    Number,
    PeriodStats,
    Position,
    Side,
    TradeLot,
    Transaction,
    to_date,
    to_decimal,
)
from lotbook.db.database import get_session
from lotbook.db.models import (
    CashMovementRecord,
    DividendRecord,
    LotClosureRecord,
    PositionRecord,
    TradeLotRecord,
    TransactionRecord,
)

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str]

_TICKER_RE = re.compile(r"^[A-Z0-9.\-]{1,10}$")

# Per-(user, ticker) write locks
_ticker_locks: dict[tuple[str, str], threading.Lock] = {}
_ticker_locks_guard = threading.Lock()


def _validate_ticker(ticker: str) -> str:
    """
    Validate and normalize a ticker symbol.

    Accepts 1-10 uppercase alphanumeric characters, dots, and hyphens.
    Raises InvalidTransactionError for malformed tickers.
    """
    ticker = ticker.strip().upper()
    if not _TICKER_RE.match(ticker):
        raise InvalidTransactionError(
            f"Invalid ticker symbol: {ticker!r}. "
            "Must be 1-10 characters: A-Z, 0-9, '.', '-'"
        )
    return ticker


def ticker_lock(user_id: str, ticker: str) -> threading.Lock:
    """Lock serializing lot writes for one user's ticker."""
    key = (user_id, ticker)
    with _ticker_locks_guard:
        lock = _ticker_locks.get(key)
        if lock is None:
            lock = _ticker_locks[key] = threading.Lock()
        return lock


class Ledger:
    """
    One user's persisted ledger.

    Args:
        user_id: Owner of every record read or written (default: config.user_id)
        method: Lot selection method for new sells, and for stored sells
            recorded without one (default: config.lot_method)
        fx: Rate provider for sells in a different currency than their lots
    """

    def __init__(
        self,
        user_id: Optional[str] = None,
        method: Optional[str] = None,
        fx: Optional[FxRateProvider] = None,
    ):
        self.user_id = user_id or config.user_id
        self.method = (method or config.lot_method).lower()
        self.fx = fx

    def _matcher(self) -> LotMatcher:
        return LotMatcher(
            strategy=get_strategy(self.method),
            long_term_days=config.long_term_days,
        )

    # ==========================================================================
    # Transactions
    # ==========================================================================

    def add_buy(
        self,
        ticker: str,
        quantity: Number,
        price: Number,
        transaction_date: Optional[DateLike] = None,
        fees: Number = 0,
        currency: str = "USD",
        strategy: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        """
        Record a purchase; opens a new lot.

        Returns:
            The recorded Transaction
        """
        txn = self._new_transaction(
            ticker, Side.BUY, quantity, price, transaction_date, fees, currency, strategy, notes
        )
        self.record_transaction(txn)
        return txn

    def add_sell(
        self,
        ticker: str,
        quantity: Number,
        price: Number,
        transaction_date: Optional[DateLike] = None,
        fees: Number = 0,
        currency: str = "USD",
        notes: Optional[str] = None,
        method: Optional[str] = None,
    ) -> tuple[Transaction, list[LotClosure]]:
        """
        Record a sale; closes lots by the chosen method.

        Returns:
            Tuple of (recorded Transaction, closures it produced)

        Raises:
            InsufficientSharesError: If fewer shares are held than sold
        """
        txn = self._new_transaction(
            ticker, Side.SELL, quantity, price, transaction_date, fees, currency, None, notes,
            lot_method=method or self.method,
        )
        closures = self.record_transaction(txn)
        return txn, closures

    def _new_transaction(
        self, ticker, side, quantity, price, transaction_date, fees, currency, strategy, notes,
        lot_method=None,
    ) -> Transaction:
        return Transaction.create(
            id=uuid4().hex,
            ticker=_validate_ticker(ticker),
            side=side,
            date=transaction_date or date.today(),
            quantity=quantity,
            price=price,
            fee=fees,
            currency=currency,
            strategy=strategy,
            notes=notes,
            lot_method=lot_method,
        )

    def record_transaction(
        self, txn: Transaction, method: Optional[str] = None
    ) -> list[LotClosure]:
        """
        Match and persist one transaction.

        A transaction dated before the ticker's latest one replays the
        whole history so later sells see the backdated lot. A sell is
        stored with its lot method: `method`, else its own lot_method,
        else the ledger's; every later replay matches it the same way.

        Returns:
            Closures produced by this transaction (empty for buys)
        """
        if txn.side is Side.SELL:
            txn = replace(txn, lot_method=(method or txn.lot_method or self.method).lower())
        matcher = self._matcher()
        ticker = _validate_ticker(txn.ticker)

        with ticker_lock(self.user_id, ticker):
            with get_session() as session:
                if session.get(TransactionRecord, txn.id) is not None:
                    raise InvalidTransactionError(f"Transaction {txn.id} already exists")

                history = self._load_transactions(session, ticker)
                if any(t.date > txn.date for t in history):
                    logger.info("Backdated %s transaction; replaying lots", ticker)
                    result = matcher.replay([*history, txn], self.fx)
                    session.add(TransactionRecord.from_core(self.user_id, txn))
                    self._rewrite_lots(session, ticker, result)
                    closures = [c for c in result.match_log if c.sell_transaction_id == txn.id]
                else:
                    lots = self._load_lots(session, ticker)
                    result = matcher.apply(txn, lots, self.fx)
                    session.add(TransactionRecord.from_core(self.user_id, txn))
                    for lot in result.lots:
                        session.merge(TradeLotRecord.from_core(self.user_id, lot))
                    for closure in result.match_log:
                        session.add(LotClosureRecord.from_core(self.user_id, closure))
                    closures = result.match_log

                session.flush()
                self._refresh_position(session, ticker)

        logger.info(
            "Recorded %s %s %s @ %s (%d closure(s))",
            txn.side.value, txn.quantity, ticker, txn.price, len(closures),
        )
        return closures

    def edit_transaction(
        self,
        transaction_id: str,
        quantity: Optional[Number] = None,
        price: Optional[Number] = None,
        transaction_date: Optional[DateLike] = None,
        fees: Optional[Number] = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        """
        Edit a transaction.

        Notes-only edits are applied in place. Changing quantity, price,
        date or fees replays the ticker's lots; if the replay fails (for
        example a later sell would exceed the shares held) nothing changes.
        """
        ticker = self._transaction_ticker(transaction_id)

        with ticker_lock(self.user_id, ticker):
            with get_session() as session:
                record = self._get_transaction_record(session, transaction_id)
                if notes is not None:
                    record.notes = notes

                core_changed = any(v is not None for v in (quantity, price, transaction_date, fees))
                if core_changed:
                    if quantity is not None:
                        record.quantity = to_decimal(quantity)
                    if price is not None:
                        record.price = to_decimal(price)
                    if transaction_date is not None:
                        record.transaction_date = to_date(transaction_date)
                    if fees is not None:
                        record.fees = to_decimal(fees)
                    session.add(record)
                    session.flush()
                    self._replay(session, ticker)
                else:
                    session.add(record)

                return record.to_core()

    def delete_transaction(self, transaction_id: str) -> None:
        """Delete a transaction and replay its ticker's lots."""
        ticker = self._transaction_ticker(transaction_id)

        with ticker_lock(self.user_id, ticker):
            with get_session() as session:
                record = self._get_transaction_record(session, transaction_id)
                self._delete_lots(session, ticker)
                session.delete(record)
                session.flush()
                self._replay(session, ticker)

        logger.info("Deleted transaction %s (%s)", transaction_id, ticker)

    def rebuild(self, ticker: str, method: Optional[str] = None) -> MatchResult:
        """
        Replay a ticker's lots from its transactions.

        Sells keep their stored lot methods unless `method` is given, in
        which case every sell of the ticker is re-matched (and stored)
        with that method.
        """
        ticker = _validate_ticker(ticker)
        if method:
            method = get_strategy(method).name

        with ticker_lock(self.user_id, ticker):
            with get_session() as session:
                if method:
                    records = session.exec(
                        select(TransactionRecord)
                        .where(TransactionRecord.user_id == self.user_id)
                        .where(TransactionRecord.ticker == ticker)
                        .where(TransactionRecord.side == Side.SELL.value)
                    ).all()
                    for record in records:
                        record.lot_method = method
                        session.add(record)
                    session.flush()
                    logger.info("Re-matching %d %s sell(s) with %s", len(records), ticker, method)
                return self._replay(session, ticker)

    def get_transactions(self, ticker: Optional[str] = None, limit: int = 50) -> list[Transaction]:
        """Transactions newest first, optionally for one ticker."""
        with get_session() as session:
            stmt = select(TransactionRecord).where(TransactionRecord.user_id == self.user_id)
            if ticker:
                stmt = stmt.where(TransactionRecord.ticker == ticker.upper())
            stmt = stmt.order_by(
                TransactionRecord.transaction_date.desc(), TransactionRecord.created_at.desc()
            ).limit(limit)
            return [r.to_core() for r in session.exec(stmt).all()]

    # ==========================================================================
    # Lots and positions
    # ==========================================================================

    def get_lots(self, ticker: str, include_closed: bool = True) -> list[TradeLot]:
        """All lots for a ticker ordered by entry_date."""
        with get_session() as session:
            lots = self._load_lots(session, ticker.upper())
        if not include_closed:
            lots = [lot for lot in lots if lot.is_open]
        return lots

    def get_realized_history(
        self, ticker: Optional[str] = None, limit: Optional[int] = None
    ) -> list[LotClosure]:
        """Closures newest sale first."""
        with get_session() as session:
            closures = self._load_closures(session, ticker.upper() if ticker else None)
        history = realized_history(closures)
        return history[:limit] if limit else history

    def get_position(self, ticker: str, current_price: Optional[Number] = None) -> Optional[Position]:
        """
        Current position for a ticker, or None if it was never traded.

        Market fields are filled only when current_price is given.
        """
        ticker = ticker.upper()
        with get_session() as session:
            lots = self._load_lots(session, ticker)
            closures = self._load_closures(session, ticker)
        if not lots:
            return None
        return aggregate_position(
            ticker, lots, closures, current_price, warn_if_unpriced=False
        )

    def get_positions(
        self,
        market_prices: Optional[Mapping[str, Optional[Number]]] = None,
        include_closed: bool = False,
    ) -> list[Position]:
        """Positions for every traded ticker, active only unless include_closed."""
        with get_session() as session:
            lots = self._load_lots(session)
            closures = self._load_closures(session)
        positions = aggregate_positions(lots, closures, market_prices, warn_if_unpriced=False)
        if not include_closed:
            positions = [p for p in positions if p.is_active]
        return positions

    def get_portfolio_summary(
        self, market_prices: Optional[Mapping[str, Optional[Number]]] = None
    ) -> PortfolioSummary:
        """Portfolio totals across open and closed positions."""
        return summarize_portfolio(self.get_positions(market_prices, include_closed=True))

    def has_open_position(self, ticker: str) -> bool:
        """Check the cached position row for open shares."""
        with get_session() as session:
            record = session.exec(
                select(PositionRecord).where(
                    PositionRecord.user_id == self.user_id,
                    PositionRecord.ticker == ticker.upper(),
                )
            ).first()
            return bool(record and record.is_active)

    # ==========================================================================
    # Cash movements
    # ==========================================================================

    def add_cash_movement(
        self,
        direction: Union[Direction, str],
        amount: Number,
        spot_rate: Number = 1,
        transaction_date: Optional[DateLike] = None,
        period_from: Optional[DateLike] = None,
        period_to: Optional[DateLike] = None,
        notes: Optional[str] = None,
    ) -> CashMovement:
        """Record a deposit or withdrawal in the configured currencies."""
        movement = new_cash_movement(
            direction=direction,
            home_currency_value=amount,
            spot_rate=spot_rate,
            transaction_date=transaction_date or date.today(),
            period_from=period_from,
            period_to=period_to,
            home_currency=config.home_currency,
            trading_currency=config.trading_currency,
            notes=notes,
            epsilon=config.fx_epsilon,
        )
        return self._save_cash_movement(movement)

    def import_cash_movement(self, movement: CashMovement) -> CashMovement:
        """
        Persist an externally built movement (e.g. from a broker export).

        Raises:
            InconsistentCashMovementError: If its trading value does not
                reconcile with home value * spot rate
        """
        validate_cash_movement(movement, config.fx_epsilon)
        return self._save_cash_movement(movement)

    def _save_cash_movement(self, movement: CashMovement) -> CashMovement:
        with get_session() as session:
            session.add(CashMovementRecord.from_core(self.user_id, movement))
        logger.info(
            "Recorded cash %s of %s %s",
            movement.direction.value, movement.home_currency_value, movement.home_currency,
        )
        return movement

    def delete_cash_movement(self, movement_id: str) -> None:
        with get_session() as session:
            record = session.get(CashMovementRecord, movement_id)
            if record is None or record.user_id != self.user_id:
                raise RecordNotFoundError("Cash movement", movement_id)
            session.delete(record)

    def get_cash_movements(self) -> list[CashMovement]:
        """All cash movements, newest first."""
        with get_session() as session:
            records = session.exec(
                select(CashMovementRecord)
                .where(CashMovementRecord.user_id == self.user_id)
                .order_by(CashMovementRecord.transaction_date.desc())
            ).all()
            return [r.to_core() for r in records]

    def get_period_stats(self) -> list[PeriodStats]:
        """Period statistics, recomputed from every movement on each call."""
        return aggregate_periods(self.get_cash_movements())

    def get_period_movements(
        self, period_from: Optional[DateLike], period_to: Optional[DateLike] = None
    ) -> list[CashMovement]:
        return movements_in_period(
            self.get_cash_movements(),
            to_date(period_from) if period_from else None,
            to_date(period_to) if period_to else None,
        )

    def get_unique_periods(self) -> list[tuple[date, Optional[date], str]]:
        return unique_periods(self.get_cash_movements())

    def get_cash_balance_summary(self) -> CashBalanceSummary:
        return summarize_cash_balance(
            self.get_cash_movements(), config.home_currency, config.trading_currency
        )

    # ==========================================================================
    # Dividends
    # ==========================================================================

    def add_dividend(
        self,
        ticker: str,
        ex_dividend_date: DateLike,
        dividend_per_share: Number,
        shares_owned: Number,
        payment_date: Optional[DateLike] = None,
        currency: str = "USD",
        notes: Optional[str] = None,
    ) -> DividendPayment:
        """Record a dividend received."""
        dps = to_decimal(dividend_per_share)
        shares = to_decimal(shares_owned)
        if not (dps.is_finite() and shares.is_finite()):
            raise ValueError("Dividend per share and shares owned must be finite numbers")
        if dps <= 0:
            raise ValueError("Dividend per share must be positive")
        if shares <= 0:
            raise ValueError("Shares owned must be positive")

        payment = DividendPayment(
            id=uuid4().hex,
            ticker=_validate_ticker(ticker),
            ex_dividend_date=to_date(ex_dividend_date),
            dividend_per_share=dps,
            shares_owned=shares,
            payment_date=to_date(payment_date) if payment_date else None,
            currency=currency.upper(),
            notes=notes,
        )
        with get_session() as session:
            session.add(DividendRecord.from_core(self.user_id, payment))
        return payment

    def get_dividends(self, ticker: Optional[str] = None) -> list[DividendPayment]:
        """Dividends newest ex-date first."""
        with get_session() as session:
            stmt = select(DividendRecord).where(DividendRecord.user_id == self.user_id)
            if ticker:
                stmt = stmt.where(DividendRecord.ticker == ticker.upper())
            stmt = stmt.order_by(DividendRecord.ex_dividend_date.desc())
            return [r.to_core() for r in session.exec(stmt).all()]

    def get_dividend_yield(
        self, ticker: str, current_price: Optional[Number] = None
    ) -> DividendYield:
        """
        Yield on the position's cost basis and on its current value.

        Both are 0 when the position is closed or never existed; the
        market yield is 0 when no price is given.
        """
        position = self.get_position(ticker, current_price)
        capital = position.cost_basis if position else Decimal("0")
        market_value = position.current_value if position else None
        return dividend_yield(self.get_dividends(ticker), capital, market_value)

    def get_dividend_summary(self, by: str = "ticker") -> list[DividendSummary]:
        """Dividend income grouped by 'ticker', 'quarter' or 'year'."""
        summarizers = {
            "ticker": summarize_by_ticker,
            "quarter": summarize_by_quarter,
            "year": summarize_by_year,
        }
        if by not in summarizers:
            raise ValueError(f"Invalid grouping: {by}. Must be one of: {', '.join(summarizers)}")
        return summarizers[by](self.get_dividends())

    # ==========================================================================
    # Session helpers
    # ==========================================================================

    def _transaction_ticker(self, transaction_id: str) -> str:
        with get_session() as session:
            return self._get_transaction_record(session, transaction_id).ticker

    def _get_transaction_record(self, session: Session, transaction_id: str) -> TransactionRecord:
        record = session.get(TransactionRecord, transaction_id)
        if record is None or record.user_id != self.user_id:
            raise RecordNotFoundError("Transaction", transaction_id)
        return record

    def _load_transactions(self, session: Session, ticker: str) -> list[Transaction]:
        records = session.exec(
            select(TransactionRecord)
            .where(TransactionRecord.user_id == self.user_id)
            .where(TransactionRecord.ticker == ticker)
            .order_by(TransactionRecord.transaction_date.asc(), TransactionRecord.created_at.asc())
        ).all()
        return [r.to_core() for r in records]

    def _load_lots(self, session: Session, ticker: Optional[str] = None) -> list[TradeLot]:
        # Same-day lots keep the order their buys were recorded in
        stmt = (
            select(TradeLotRecord)
            .join(TransactionRecord, TradeLotRecord.entry_transaction_id == TransactionRecord.id)
            .where(TradeLotRecord.user_id == self.user_id)
        )
        if ticker:
            stmt = stmt.where(TradeLotRecord.ticker == ticker)
        stmt = stmt.order_by(TradeLotRecord.entry_date.asc(), TransactionRecord.created_at.asc())
        return [r.to_core() for r in session.exec(stmt).all()]

    def _load_closures(self, session: Session, ticker: Optional[str] = None) -> list[LotClosure]:
        stmt = select(LotClosureRecord).where(LotClosureRecord.user_id == self.user_id)
        if ticker:
            stmt = stmt.where(LotClosureRecord.ticker == ticker)
        stmt = stmt.order_by(LotClosureRecord.closure_date.asc(), LotClosureRecord.id.asc())
        return [r.to_core() for r in session.exec(stmt).all()]

    def _delete_lots(self, session: Session, ticker: str) -> None:
        for model in (LotClosureRecord, TradeLotRecord):
            records = session.exec(
                select(model).where(model.user_id == self.user_id).where(model.ticker == ticker)
            ).all()
            for record in records:
                session.delete(record)
        session.flush()

    def _rewrite_lots(self, session: Session, ticker: str, result: MatchResult) -> None:
        self._delete_lots(session, ticker)
        for lot in result.lots:
            session.add(TradeLotRecord.from_core(self.user_id, lot))
        for closure in result.match_log:
            session.add(LotClosureRecord.from_core(self.user_id, closure))

    def _replay(self, session: Session, ticker: str) -> MatchResult:
        result = self._matcher().replay(self._load_transactions(session, ticker), self.fx)
        self._rewrite_lots(session, ticker, result)
        session.flush()
        self._refresh_position(session, ticker)
        logger.info("Replayed %s: %d lot(s), %d closure(s)", ticker, len(result.lots), len(result.match_log))
        return result

    def _refresh_position(self, session: Session, ticker: str) -> None:
        lots = self._load_lots(session, ticker)
        record = session.exec(
            select(PositionRecord).where(
                PositionRecord.user_id == self.user_id,
                PositionRecord.ticker == ticker,
            )
        ).first()

        if not lots:
            if record is not None:
                session.delete(record)
            return

        position = aggregate_position(
            ticker, lots, self._load_closures(session, ticker), warn_if_unpriced=False
        )
        if record is None:
            record = PositionRecord(user_id=self.user_id, ticker=ticker)
        record.update_from(position)
        session.add(record)


def record_many(ledger: Ledger, transactions: Iterable[Transaction]) -> int:
    """Record transactions in date order, e.g. from a broker import. Returns the count."""
    count = 0
    for txn in sorted(transactions, key=lambda t: t.date):
        ledger.record_transaction(txn)
        count += 1
    return count
