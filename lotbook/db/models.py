"""
Database models for Lotbook.

Defines the schema for:
- TransactionRecord: Buy/sell records; the source of truth for lot replay
- TradeLotRecord: Lots as last produced by the matcher
- LotClosureRecord: One row per (sell, lot) closure, for realized history
- PositionRecord: Cached per-ticker aggregate (no market data)
- CashMovementRecord: Deposits/withdrawals with their spot rate
- DividendRecord: Dividends received

Every row belongs to exactly one user_id. Each record converts to and
from the storage-free dataclasses in lotbook.core.models.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlmodel import Field, SQLModel, UniqueConstraint

from lotbook.core.models import (
    CashMovement,
    Direction,
    DividendPayment,
    LotClosure,
    LotStatus,
    Position,
    Side,
    TradeLot,
    Transaction,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionRecord(SQLModel, table=True):
    """
    Buy/sell transaction.

    Only notes change in place; editing quantity, price, date or fees
    replays the ticker's lots. Sells store the lot method they were
    matched with.
    """

    __tablename__ = "transactions"

    id: str = Field(primary_key=True, max_length=32)
    user_id: str = Field(index=True, max_length=64)
    ticker: str = Field(index=True, max_length=10)

    side: str = Field(max_length=4)  # buy, sell
    transaction_date: date = Field(index=True)
    quantity: Decimal = Field(max_digits=20, decimal_places=8)
    price: Decimal = Field(max_digits=20, decimal_places=8)
    fees: Decimal = Field(default=Decimal("0"), max_digits=20, decimal_places=8)
    currency: str = Field(default="USD", max_length=3)
    strategy: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = Field(default=None, max_length=500)
    lot_method: Optional[str] = Field(default=None, max_length=4)  # sells: fifo, lifo, hifo

    created_at: datetime = Field(default_factory=_utcnow)

    def to_core(self) -> Transaction:
        return Transaction(
            id=self.id,
            ticker=self.ticker,
            side=Side(self.side),
            date=self.transaction_date,
            quantity=self.quantity,
            price=self.price,
            fee=self.fees,
            currency=self.currency,
            strategy=self.strategy,
            notes=self.notes,
            lot_method=self.lot_method,
        )

    @classmethod
    def from_core(cls, user_id: str, txn: Transaction) -> "TransactionRecord":
        return cls(
            id=txn.id,
            user_id=user_id,
            ticker=txn.ticker,
            side=txn.side.value,
            transaction_date=txn.date,
            quantity=txn.quantity,
            price=txn.price,
            fees=txn.fee,
            currency=txn.currency,
            strategy=txn.strategy,
            notes=txn.notes,
            lot_method=txn.lot_method,
        )


class TradeLotRecord(SQLModel, table=True):
    """Trade lot; lot_id is the id of the buy transaction that opened it."""

    __tablename__ = "trade_lots"

    lot_id: str = Field(primary_key=True, max_length=32)
    user_id: str = Field(index=True, max_length=64)
    ticker: str = Field(index=True, max_length=10)
    entry_transaction_id: str = Field(foreign_key="transactions.id", max_length=32)

    entry_date: date
    entry_price: Decimal = Field(max_digits=20, decimal_places=8)
    entry_fee: Decimal = Field(default=Decimal("0"), max_digits=20, decimal_places=8)
    quantity_original: Decimal = Field(max_digits=20, decimal_places=8)
    quantity_remaining: Decimal = Field(max_digits=20, decimal_places=8)
    currency: str = Field(default="USD", max_length=3)

    status: str = Field(default="open", max_length=10)  # open, partial, closed
    exit_date: Optional[date] = None
    exit_price: Optional[Decimal] = Field(default=None, max_digits=20, decimal_places=8)
    realized_pl: Optional[Decimal] = Field(default=None, max_digits=20, decimal_places=8)
    realized_pl_percent: Optional[Decimal] = Field(default=None, max_digits=20, decimal_places=8)
    hold_days: Optional[int] = None
    strategy: Optional[str] = Field(default=None, max_length=50)

    updated_at: datetime = Field(default_factory=_utcnow)

    def to_core(self) -> TradeLot:
        return TradeLot(
            lot_id=self.lot_id,
            ticker=self.ticker,
            entry_transaction_id=self.entry_transaction_id,
            entry_date=self.entry_date,
            entry_price=self.entry_price,
            quantity_original=self.quantity_original,
            quantity_remaining=self.quantity_remaining,
            entry_fee=self.entry_fee,
            currency=self.currency,
            status=LotStatus(self.status),
            exit_date=self.exit_date,
            exit_price=self.exit_price,
            realized_pl=self.realized_pl,
            realized_pl_percent=self.realized_pl_percent,
            hold_days=self.hold_days,
            strategy=self.strategy,
        )

    @classmethod
    def from_core(cls, user_id: str, lot: TradeLot) -> "TradeLotRecord":
        return cls(
            lot_id=lot.lot_id,
            user_id=user_id,
            ticker=lot.ticker,
            entry_transaction_id=lot.entry_transaction_id,
            entry_date=lot.entry_date,
            entry_price=lot.entry_price,
            entry_fee=lot.entry_fee,
            quantity_original=lot.quantity_original,
            quantity_remaining=lot.quantity_remaining,
            currency=lot.currency,
            status=lot.status.value,
            exit_date=lot.exit_date,
            exit_price=lot.exit_price,
            realized_pl=lot.realized_pl,
            realized_pl_percent=lot.realized_pl_percent,
            hold_days=lot.hold_days,
            strategy=lot.strategy,
        )


class LotClosureRecord(SQLModel, table=True):
    """Realized P&L of one sell against one lot. Never updated."""

    __tablename__ = "lot_closures"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=64)
    ticker: str = Field(index=True, max_length=10)
    lot_id: str = Field(foreign_key="trade_lots.lot_id", index=True, max_length=32)
    sell_transaction_id: str = Field(foreign_key="transactions.id", index=True, max_length=32)

    entry_date: date
    closure_date: date = Field(index=True)
    quantity: Decimal = Field(max_digits=20, decimal_places=8)
    entry_price: Decimal = Field(max_digits=20, decimal_places=8)
    exit_price: Decimal = Field(max_digits=20, decimal_places=8)
    fee: Decimal = Field(default=Decimal("0"), max_digits=20, decimal_places=8)
    realized_pl: Decimal = Field(max_digits=20, decimal_places=8)
    realized_pl_percent: Decimal = Field(max_digits=20, decimal_places=8)
    hold_days: int
    is_long_term: bool = Field(default=False)

    created_at: datetime = Field(default_factory=_utcnow)

    def to_core(self) -> LotClosure:
        return LotClosure(
            lot_id=self.lot_id,
            ticker=self.ticker,
            sell_transaction_id=self.sell_transaction_id,
            entry_date=self.entry_date,
            date=self.closure_date,
            quantity=self.quantity,
            entry_price=self.entry_price,
            exit_price=self.exit_price,
            fee=self.fee,
            realized_pl=self.realized_pl,
            realized_pl_percent=self.realized_pl_percent,
            hold_days=self.hold_days,
            is_long_term=self.is_long_term,
        )

    @classmethod
    def from_core(cls, user_id: str, closure: LotClosure) -> "LotClosureRecord":
        return cls(
            user_id=user_id,
            ticker=closure.ticker,
            lot_id=closure.lot_id,
            sell_transaction_id=closure.sell_transaction_id,
            entry_date=closure.entry_date,
            closure_date=closure.date,
            quantity=closure.quantity,
            entry_price=closure.entry_price,
            exit_price=closure.exit_price,
            fee=closure.fee,
            realized_pl=closure.realized_pl,
            realized_pl_percent=closure.realized_pl_percent,
            hold_days=closure.hold_days,
            is_long_term=closure.is_long_term,
        )


class PositionRecord(SQLModel, table=True):
    """
    Cached position per (user, ticker), rewritten after every lot change.

    Market-dependent fields are not stored; they are computed at read
    time from a price supplied by the caller.
    """

    __tablename__ = "positions"
    __table_args__ = (UniqueConstraint("user_id", "ticker", name="uq_position_user_ticker"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=64)
    ticker: str = Field(index=True, max_length=10)

    total_shares: Decimal = Field(default=Decimal("0"), max_digits=20, decimal_places=8)
    average_cost: Decimal = Field(default=Decimal("0"), max_digits=20, decimal_places=8)
    realized_pnl: Decimal = Field(default=Decimal("0"), max_digits=20, decimal_places=8)
    is_active: bool = Field(default=True)
    opened_date: Optional[date] = None
    closed_date: Optional[date] = None
    currency: str = Field(default="USD", max_length=3)

    updated_at: datetime = Field(default_factory=_utcnow)

    def update_from(self, position: Position) -> None:
        self.total_shares = position.total_shares
        self.average_cost = position.average_cost
        self.realized_pnl = position.realized_pnl
        self.is_active = position.is_active
        self.opened_date = position.opened_date
        self.closed_date = position.closed_date
        self.currency = position.currency
        self.updated_at = _utcnow()


class CashMovementRecord(SQLModel, table=True):
    """Deposit or withdrawal. trading_currency_value is stored as recorded."""

    __tablename__ = "cash_movements"

    id: str = Field(primary_key=True, max_length=32)
    user_id: str = Field(index=True, max_length=64)

    direction: str = Field(max_length=3)  # in, out
    home_currency: str = Field(default="USD", max_length=3)
    home_currency_value: Decimal = Field(max_digits=20, decimal_places=8)
    trading_currency: str = Field(default="USD", max_length=3)
    trading_currency_value: Decimal = Field(max_digits=20, decimal_places=8)
    spot_rate: Decimal = Field(max_digits=20, decimal_places=10)
    transaction_date: date = Field(index=True)
    period_from: Optional[date] = Field(default=None, index=True)
    period_to: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    created_at: datetime = Field(default_factory=_utcnow)

    def to_core(self) -> CashMovement:
        return CashMovement(
            id=self.id,
            direction=Direction(self.direction),
            home_currency_value=self.home_currency_value,
            trading_currency_value=self.trading_currency_value,
            spot_rate=self.spot_rate,
            transaction_date=self.transaction_date,
            period_from=self.period_from,
            period_to=self.period_to,
            home_currency=self.home_currency,
            trading_currency=self.trading_currency,
            notes=self.notes,
        )

    @classmethod
    def from_core(cls, user_id: str, movement: CashMovement) -> "CashMovementRecord":
        return cls(
            id=movement.id,
            user_id=user_id,
            direction=movement.direction.value,
            home_currency=movement.home_currency,
            home_currency_value=movement.home_currency_value,
            trading_currency=movement.trading_currency,
            trading_currency_value=movement.trading_currency_value,
            spot_rate=movement.spot_rate,
            transaction_date=movement.transaction_date,
            period_from=movement.period_from,
            period_to=movement.period_to,
            notes=movement.notes,
        )


class DividendRecord(SQLModel, table=True):
    """Dividend received on a holding."""

    __tablename__ = "dividends"

    id: str = Field(primary_key=True, max_length=32)
    user_id: str = Field(index=True, max_length=64)
    ticker: str = Field(index=True, max_length=10)

    ex_dividend_date: date
    payment_date: Optional[date] = None
    dividend_per_share: Decimal = Field(max_digits=20, decimal_places=8)
    shares_owned: Decimal = Field(max_digits=20, decimal_places=8)
    currency: str = Field(default="USD", max_length=3)
    notes: Optional[str] = Field(default=None, max_length=500)

    created_at: datetime = Field(default_factory=_utcnow)

    def to_core(self) -> DividendPayment:
        return DividendPayment(
            id=self.id,
            ticker=self.ticker,
            ex_dividend_date=self.ex_dividend_date,
            dividend_per_share=self.dividend_per_share,
            shares_owned=self.shares_owned,
            payment_date=self.payment_date,
            currency=self.currency,
            notes=self.notes,
        )

    @classmethod
    def from_core(cls, user_id: str, payment: DividendPayment) -> "DividendRecord":
        return cls(
            id=payment.id,
            user_id=user_id,
            ticker=payment.ticker,
            ex_dividend_date=payment.ex_dividend_date,
            payment_date=payment.payment_date,
            dividend_per_share=payment.dividend_per_share,
            shares_owned=payment.shares_owned,
            currency=payment.currency,
            notes=payment.notes,
        )
