"""
Domain records for the accounting core.

Plain dataclasses, independent of storage:
- Transaction: Immutable buy/sell event
- TradeLot: One acquisition tranche and its disposition state
- LotClosure: The part of one lot consumed by one sell
- Position: Derived per-ticker aggregate
- CashMovement / PeriodStats / CashBalanceSummary: Funding records
- DividendPayment / DividendYield: Dividend records

Money and quantities are Decimal; dates are datetime.date.
"""

from dataclasses import dataclass, fields
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

Number = Union[int, float, Decimal, str]

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Number) -> Decimal:
    """Convert a numeric value to Decimal safely."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_date(value: Union[date, datetime, str]) -> date:
    """Normalize a date, datetime (taken in UTC) or ISO string to a date."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


class SerializableMixin:
    """Mixin giving dataclasses a JSON-ready dict."""

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _json_value(getattr(self, f.name)) for f in fields(self)}


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class LotStatus(str, Enum):
    OPEN = "open"
    PARTIAL = "partial"
    CLOSED = "closed"


class Direction(str, Enum):
    """Cash movement direction."""

    IN = "in"
    OUT = "out"

    @property
    def multiplier(self) -> int:
        return 1 if self is Direction.IN else -1


@dataclass(frozen=True)
class Transaction(SerializableMixin):
    """
    Immutable buy/sell event.

    Quantity, price and date never change once lots are matched against
    the transaction; editing them means replaying the ticker's history.
    A sell keeps the lot_method it was matched with so a replay closes
    the same lots.
    """

    id: str
    ticker: str
    side: Side
    date: date
    quantity: Decimal
    price: Decimal
    fee: Decimal = ZERO
    currency: str = "USD"
    strategy: Optional[str] = None
    notes: Optional[str] = None
    lot_method: Optional[str] = None  # sells only: fifo, lifo or hifo

    @property
    def trade_value(self) -> Decimal:
        return self.quantity * self.price

    @classmethod
    def create(
        cls,
        id: str,
        ticker: str,
        side: Union[Side, str],
        date: Union[date, datetime, str],
        quantity: Number,
        price: Number,
        fee: Number = 0,
        currency: str = "USD",
        strategy: Optional[str] = None,
        notes: Optional[str] = None,
        lot_method: Optional[str] = None,
    ) -> "Transaction":
        """Build a transaction from loosely typed input (floats, strings, datetimes)."""
        return cls(
            id=str(id),
            ticker=ticker.strip().upper(),
            side=Side(side),
            date=to_date(date),
            quantity=to_decimal(quantity),
            price=to_decimal(price),
            fee=to_decimal(fee),
            currency=currency.upper(),
            strategy=strategy,
            notes=notes,
            lot_method=lot_method.lower() if lot_method else None,
        )


@dataclass
class TradeLot(SerializableMixin):
    """
    A specific acquisition tranche and its disposition.

    Created on a buy; quantity_remaining and status change on later sells.
    The exit fields are set only when the lot fully closes.
    """

    lot_id: str
    ticker: str
    entry_transaction_id: str
    entry_date: date
    entry_price: Decimal
    quantity_original: Decimal
    quantity_remaining: Decimal
    entry_fee: Decimal = ZERO
    currency: str = "USD"
    status: LotStatus = LotStatus.OPEN
    exit_date: Optional[date] = None
    exit_price: Optional[Decimal] = None
    realized_pl: Optional[Decimal] = None
    realized_pl_percent: Optional[Decimal] = None
    hold_days: Optional[int] = None
    strategy: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status is not LotStatus.CLOSED

    @property
    def quantity_closed(self) -> Decimal:
        return self.quantity_original - self.quantity_remaining

    @property
    def cost_basis(self) -> Decimal:
        """Cost of the shares still held (entry fees excluded)."""
        return self.quantity_remaining * self.entry_price


@dataclass(frozen=True)
class LotClosure(SerializableMixin):
    """One sell's consumption of one lot, with its realized P&L."""

    lot_id: str
    ticker: str
    sell_transaction_id: str
    entry_date: date
    date: date
    quantity: Decimal
    entry_price: Decimal
    exit_price: Decimal
    fee: Decimal
    realized_pl: Decimal
    realized_pl_percent: Decimal
    hold_days: int
    is_long_term: bool = False

    @property
    def cost_basis(self) -> Decimal:
        return self.quantity * self.entry_price

    @property
    def proceeds(self) -> Decimal:
        """Net sale proceeds after the allocated fee."""
        return self.quantity * self.exit_price - self.fee


@dataclass
class Position(SerializableMixin):
    """Derived per-ticker aggregate. Never authoritative on its own."""

    ticker: str
    total_shares: Decimal
    average_cost: Decimal
    realized_pnl: Decimal
    is_active: bool
    opened_date: Optional[date] = None
    closed_date: Optional[date] = None
    currency: str = "USD"
    current_market_price: Optional[Decimal] = None
    current_value: Optional[Decimal] = None  # None when no price is known
    unrealized_pnl: Optional[Decimal] = None  # None when no price is known
    lot_count: int = 0

    @property
    def cost_basis(self) -> Decimal:
        return self.total_shares * self.average_cost

    @property
    def unrealized_pnl_percent(self) -> Optional[Decimal]:
        if self.unrealized_pnl is None or self.cost_basis == 0:
            return None
        return self.unrealized_pnl / self.cost_basis * HUNDRED


@dataclass(frozen=True)
class CashMovement(SerializableMixin):
    """Immutable funding event recorded at a point-in-time spot rate."""

    id: str
    direction: Direction
    home_currency_value: Decimal
    trading_currency_value: Decimal
    spot_rate: Decimal
    transaction_date: date
    period_from: Optional[date] = None
    period_to: Optional[date] = None
    home_currency: str = "USD"
    trading_currency: str = "USD"
    notes: Optional[str] = None

    @property
    def multiplier(self) -> int:
        return self.direction.multiplier


@dataclass
class PeriodStats(SerializableMixin):
    """Cash flow totals for one (period_from, period_to) bucket."""

    period_from: Optional[date]
    period_to: Optional[date]
    period_display: str
    inflow_home: Decimal = ZERO
    outflow_home: Decimal = ZERO
    net_flow_home: Decimal = ZERO
    inflow_trading: Decimal = ZERO
    outflow_trading: Decimal = ZERO
    net_flow_trading: Decimal = ZERO
    transaction_count: int = 0
    cumulative_home: Optional[Decimal] = None  # None for the "No Period" bucket
    cumulative_trading: Optional[Decimal] = None


@dataclass
class CashBalanceSummary(SerializableMixin):
    """All-time funding totals for a user."""

    home_currency: str
    trading_currency: str
    total_deposited_home: Decimal = ZERO
    total_withdrawn_home: Decimal = ZERO
    net_home: Decimal = ZERO
    total_deposited_trading: Decimal = ZERO
    total_withdrawn_trading: Decimal = ZERO
    net_trading: Decimal = ZERO
    weighted_avg_rate: Decimal = ZERO
    deposit_count: int = 0
    withdrawal_count: int = 0
    first_transaction_date: Optional[date] = None
    last_transaction_date: Optional[date] = None


@dataclass(frozen=True)
class DividendPayment(SerializableMixin):
    """A dividend received on a holding."""

    id: str
    ticker: str
    ex_dividend_date: date
    dividend_per_share: Decimal
    shares_owned: Decimal
    payment_date: Optional[date] = None
    currency: str = "USD"
    notes: Optional[str] = None

    @property
    def total_amount(self) -> Decimal:
        return self.dividend_per_share * self.shares_owned

    @property
    def effective_date(self) -> date:
        """Payment date, falling back to the ex-dividend date."""
        return self.payment_date or self.ex_dividend_date

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["total_amount"] = float(self.total_amount)
        return data


@dataclass
class DividendYield(SerializableMixin):
    """Dividend yield on cost basis (personal) and on current value (market)."""

    total_received: Decimal
    payment_count: int
    personal_yield: Decimal
    market_yield: Decimal
