"""
Position aggregation over trade lots.

A Position is derived, never stored as the source of truth: shares and
average cost come from the open lots, realized P&L from every closure
ever produced for the ticker. The market price is passed in per call.
"""

import logging
import warnings
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence

from lotbook.core.exceptions import UnknownPriceWarning
from lotbook.core.models import (
    HUNDRED,
    ZERO,
    LotClosure,
    Number,
    Position,
    SerializableMixin,
    TradeLot,
    to_decimal,
)

logger = logging.getLogger(__name__)


@dataclass
class PortfolioSummary(SerializableMixin):
    """Overall portfolio summary."""

    total_cost_basis: Decimal
    total_market_value: Optional[Decimal]  # None when no position is priced
    unrealized_pnl: Optional[Decimal]  # Over priced positions only
    unrealized_pnl_percent: Optional[Decimal]
    realized_pnl_total: Decimal
    position_count: int  # Active positions
    closed_position_count: int
    missing_prices: list[str] = field(default_factory=list)  # Active tickers without a price


def aggregate_position(
    ticker: str,
    lots: Sequence[TradeLot],
    closures: Iterable[LotClosure] = (),
    current_market_price: Optional[Number] = None,
    warn_if_unpriced: bool = True,
) -> Position:
    """
    Fold a ticker's lots into its Position.

    Args:
        ticker: Ticker symbol
        lots: Every lot of the ticker, open and closed
        closures: Every closure produced for the ticker; when empty,
            realized P&L falls back to the lots' running totals
        current_market_price: Latest price, or None if unknown
        warn_if_unpriced: Emit UnknownPriceWarning for an active
            position without a price

    Returns:
        Position. unrealized_pnl and current_value are None when no
        price is supplied.

    Raises:
        ValueError: If a lot belongs to another ticker or the price is negative
    """
    ticker = ticker.strip().upper()
    for lot in lots:
        if lot.ticker != ticker:
            raise ValueError(f"Lot {lot.lot_id} belongs to {lot.ticker}, not {ticker}")

    open_lots = [lot for lot in lots if lot.is_open]
    total_shares = sum((lot.quantity_remaining for lot in open_lots), ZERO)
    total_cost = sum((lot.cost_basis for lot in open_lots), ZERO)
    average_cost = total_cost / total_shares if total_shares > 0 else ZERO

    closures = list(closures)
    if closures:
        realized = sum((c.realized_pl for c in closures), ZERO)
    else:
        realized = sum((lot.realized_pl or ZERO for lot in lots), ZERO)

    is_active = total_shares > 0
    dated = open_lots or list(lots)
    opened_date = min((lot.entry_date for lot in dated), default=None)
    closed_date = None
    if lots and not is_active:
        closed_date = max((lot.exit_date for lot in lots if lot.exit_date), default=None)

    price = to_decimal(current_market_price) if current_market_price is not None else None
    if price is not None and price < 0:
        raise ValueError(f"Market price cannot be negative: {price}")

    current_value = unrealized = None
    if price is not None:
        current_value = price * total_shares
        unrealized = (price - average_cost) * total_shares
    elif is_active and warn_if_unpriced:
        warnings.warn(
            f"No market price for {ticker}; unrealized P&L is unknown",
            UnknownPriceWarning,
            stacklevel=2,
        )

    return Position(
        ticker=ticker,
        total_shares=total_shares,
        average_cost=average_cost,
        realized_pnl=realized,
        is_active=is_active,
        opened_date=opened_date,
        closed_date=closed_date,
        currency=lots[0].currency if lots else "USD",
        current_market_price=price,
        current_value=current_value,
        unrealized_pnl=unrealized,
        lot_count=len(open_lots),
    )


def aggregate_positions(
    lots: Iterable[TradeLot],
    closures: Iterable[LotClosure] = (),
    market_prices: Optional[Mapping[str, Optional[Number]]] = None,
    warn_if_unpriced: bool = True,
) -> list[Position]:
    """
    Aggregate lots of many tickers into one Position per ticker.

    Args:
        lots: Lots of any number of tickers
        closures: Closures of the same tickers
        market_prices: Ticker -> price; missing tickers are unpriced

    Returns:
        Positions sorted by ticker
    """
    market_prices = market_prices or {}
    lots_by_ticker: dict[str, list[TradeLot]] = {}
    for lot in lots:
        lots_by_ticker.setdefault(lot.ticker, []).append(lot)
    closures_by_ticker: dict[str, list[LotClosure]] = {}
    for closure in closures:
        closures_by_ticker.setdefault(closure.ticker, []).append(closure)

    return [
        aggregate_position(
            ticker,
            ticker_lots,
            closures_by_ticker.get(ticker, ()),
            market_prices.get(ticker),
            warn_if_unpriced,
        )
        for ticker, ticker_lots in sorted(lots_by_ticker.items())
    ]


def summarize_portfolio(positions: Iterable[Position]) -> PortfolioSummary:
    """
    Roll positions up into portfolio totals.

    Market value and unrealized P&L only cover priced positions; tickers
    without a price are listed in missing_prices instead of being valued
    at cost.
    """
    positions = list(positions)
    active = [p for p in positions if p.is_active]

    total_cost = sum((p.cost_basis for p in active), ZERO)
    priced = [p for p in active if p.current_value is not None]
    missing = [p.ticker for p in active if p.current_value is None]

    market_value = unrealized = unrealized_pct = None
    if priced:
        market_value = sum((p.current_value for p in priced), ZERO)
        unrealized = sum((p.unrealized_pnl for p in priced), ZERO)
        priced_cost = sum((p.cost_basis for p in priced), ZERO)
        unrealized_pct = unrealized / priced_cost * HUNDRED if priced_cost > 0 else None

    if missing:
        logger.info("Portfolio summary missing prices for: %s", ", ".join(missing))

    return PortfolioSummary(
        total_cost_basis=total_cost,
        total_market_value=market_value,
        unrealized_pnl=unrealized,
        unrealized_pnl_percent=unrealized_pct,
        realized_pnl_total=sum((p.realized_pnl for p in positions), ZERO),
        position_count=len(active),
        closed_position_count=len(positions) - len(active),
        missing_prices=missing,
    )


def realized_history(closures: Iterable[LotClosure]) -> list[LotClosure]:
    """Closures newest sale first, the shape of a realized trade history view."""
    return sorted(closures, key=lambda c: (c.date, c.entry_date), reverse=True)
