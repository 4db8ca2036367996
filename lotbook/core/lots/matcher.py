"""
Lot matching for buy/sell transactions.

Turns one ticker's transactions into trade lots and closure records:
- Buy: opens a new lot at the transaction price
- Sell: consumes open lots in the order chosen by a LotSelectionStrategy
  (FIFO by default, LIFO/HIFO available), producing one LotClosure per
  lot touched, with the sell fee prorated across closures

The matcher is pure. It copies the lots it is given and returns new ones;
a rejected transaction leaves the caller's lots untouched. Persisting the
result (and serializing writers per user and ticker) is the caller's job.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from decimal import Decimal
from typing import Iterable, NamedTuple, Optional, Sequence

from lotbook.core.currency import FxRateProvider, convert
from lotbook.core.exceptions import InsufficientSharesError, InvalidTransactionError
from lotbook.core.models import (
    HUNDRED,
    ZERO,
    LotClosure,
    LotStatus,
    Side,
    TradeLot,
    Transaction,
)

logger = logging.getLogger(__name__)


class MatchResult(NamedTuple):
    """Lots after applying a transaction, plus the closures it produced."""

    lots: list[TradeLot]
    match_log: list[LotClosure]


# ==============================================================================
# Lot selection strategies
# ==============================================================================


class LotSelectionStrategy(ABC):
    """Decides the order in which open lots are consumed by a sell."""

    name: str = ""

    @abstractmethod
    def select_lots_to_close(
        self, open_lots: Sequence[TradeLot], quantity: Decimal
    ) -> list[TradeLot]:
        """Return open lots in consumption order."""


class FIFOStrategy(LotSelectionStrategy):
    """Oldest entry_date first; same-day lots in the order given."""

    name = "fifo"

    def select_lots_to_close(self, open_lots, quantity):
        return sorted(open_lots, key=lambda lot: lot.entry_date)


class LIFOStrategy(LotSelectionStrategy):
    """Newest entry_date first; same-day lots newest-recorded first."""

    name = "lifo"

    def select_lots_to_close(self, open_lots, quantity):
        indexed = list(enumerate(open_lots))
        indexed.sort(key=lambda pair: (pair[1].entry_date, pair[0]), reverse=True)
        return [lot for _, lot in indexed]


class HIFOStrategy(LotSelectionStrategy):
    """Highest entry_price first, oldest first among equal prices."""

    name = "hifo"

    def select_lots_to_close(self, open_lots, quantity):
        return sorted(open_lots, key=lambda lot: (-lot.entry_price, lot.entry_date))


_STRATEGIES = {
    FIFOStrategy.name: FIFOStrategy,
    LIFOStrategy.name: LIFOStrategy,
    HIFOStrategy.name: HIFOStrategy,
}


def get_strategy(name: str) -> LotSelectionStrategy:
    """Look up a lot selection strategy by name (fifo, lifo, hifo)."""
    try:
        return _STRATEGIES[name.lower()]()
    except KeyError:
        raise ValueError(
            f"Invalid lot selection method: {name!r}. "
            f"Must be one of: {', '.join(_STRATEGIES)}"
        ) from None


# ==============================================================================
# Matcher
# ==============================================================================


class LotMatcher:
    """
    Applies transactions to a ticker's lots.

    Args:
        strategy: Lot selection strategy for sells that carry no
            lot_method of their own (default FIFO)
        long_term_days: Closures held longer than this are long-term
    """

    def __init__(
        self,
        strategy: Optional[LotSelectionStrategy] = None,
        long_term_days: int = 365,
    ):
        self.strategy = strategy or FIFOStrategy()
        self.long_term_days = long_term_days

    def apply(
        self,
        transaction: Transaction,
        existing_lots: Sequence[TradeLot],
        fx: Optional[FxRateProvider] = None,
    ) -> MatchResult:
        """
        Apply one transaction to the existing lots of its ticker.

        Args:
            transaction: Buy or sell to apply
            existing_lots: Current lots of the same ticker (not modified)
            fx: Rate provider, required when a sell's currency differs
                from the currency of a lot it closes

        Returns:
            MatchResult with the updated lots and the closures produced

        Raises:
            InvalidTransactionError: If the transaction is malformed or
                predates the position's open lots
            InsufficientSharesError: If a sell exceeds the open quantity
        """
        self._validate(transaction, existing_lots)
        lots = [replace(lot) for lot in existing_lots]

        if transaction.side is Side.BUY:
            lots.append(_open_lot(transaction))
            logger.debug(
                "Opened lot %s: %s %s @ %s",
                transaction.id, transaction.quantity, transaction.ticker, transaction.price,
            )
            return MatchResult(lots, [])

        eligible = self._eligible_lots(transaction, lots, fx)
        closures = self._close_lots(transaction, eligible, fx)
        logger.debug(
            "Sell %s closed %d lot(s) of %s",
            transaction.id, len(closures), transaction.ticker,
        )
        return MatchResult(lots, closures)

    def replay(
        self,
        transactions: Iterable[Transaction],
        fx: Optional[FxRateProvider] = None,
    ) -> MatchResult:
        """
        Rebuild a ticker's lots from its full transaction history.

        Transactions are applied in date order; same-day transactions keep
        the order given. Each sell is matched with its own lot_method when
        it has one, otherwise with this matcher's strategy. Used after a
        transaction is edited, deleted or backdated.

        Returns:
            MatchResult with the final lots and every closure in order
        """
        ordered = sorted(transactions, key=lambda t: t.date)
        tickers = {t.ticker for t in ordered}
        if len(tickers) > 1:
            raise InvalidTransactionError(
                f"Cannot replay transactions for multiple tickers: {sorted(tickers)}"
            )

        lots: list[TradeLot] = []
        match_log: list[LotClosure] = []
        for transaction in ordered:
            lots, closures = self.apply(transaction, lots, fx)
            match_log.extend(closures)
        return MatchResult(lots, match_log)

    def strategy_for(self, sell: Transaction) -> LotSelectionStrategy:
        """Strategy the sell was recorded with, else the matcher's own."""
        if sell.lot_method:
            return get_strategy(sell.lot_method)
        return self.strategy

    def _validate(self, transaction: Transaction, lots: Sequence[TradeLot]) -> None:
        for label, value in (
            ("Quantity", transaction.quantity),
            ("Price", transaction.price),
            ("Fees", transaction.fee),
        ):
            if not value.is_finite():
                raise InvalidTransactionError(f"{label} must be a finite number, got {value}")
        if transaction.lot_method and transaction.lot_method not in _STRATEGIES:
            raise InvalidTransactionError(
                f"Invalid lot selection method: {transaction.lot_method!r}. "
                f"Must be one of: {', '.join(_STRATEGIES)}"
            )
        if transaction.quantity <= 0:
            raise InvalidTransactionError(
                f"Quantity must be positive for {transaction.side.value} transactions"
            )
        if transaction.price <= 0:
            raise InvalidTransactionError("Price must be positive")
        if transaction.fee < 0:
            raise InvalidTransactionError("Fees cannot be negative")

        for lot in lots:
            if lot.ticker != transaction.ticker:
                raise InvalidTransactionError(
                    f"Lot {lot.lot_id} belongs to {lot.ticker}, "
                    f"not {transaction.ticker}"
                )
            if transaction.side is Side.BUY and lot.lot_id == transaction.id:
                raise InvalidTransactionError(
                    f"Transaction {transaction.id} has already been applied"
                )

    def _eligible_lots(
        self,
        sell: Transaction,
        lots: list[TradeLot],
        fx: Optional[FxRateProvider],
    ) -> list[TradeLot]:
        open_lots = [lot for lot in lots if lot.is_open]
        if open_lots:
            earliest = min(lot.entry_date for lot in open_lots)
            if sell.date < earliest:
                raise InvalidTransactionError(
                    f"Sell of {sell.ticker} on {sell.date} predates the "
                    f"earliest open lot ({earliest})"
                )

        eligible = [lot for lot in open_lots if lot.entry_date <= sell.date]
        available = sum((lot.quantity_remaining for lot in eligible), ZERO)
        if sell.quantity > available:
            logger.warning(
                "Rejected sell %s: %s %s requested, %s held",
                sell.id, sell.quantity, sell.ticker, available,
            )
            raise InsufficientSharesError(sell.ticker, sell.quantity, available)

        if fx is None and any(lot.currency != sell.currency for lot in eligible):
            raise InvalidTransactionError(
                f"Sell in {sell.currency} closes lots in another currency; "
                "an FX rate provider is required"
            )
        return eligible

    def _close_lots(
        self,
        sell: Transaction,
        eligible: list[TradeLot],
        fx: Optional[FxRateProvider],
    ) -> list[LotClosure]:
        remaining = sell.quantity
        fee_left = sell.fee
        closures = []

        for lot in self.strategy_for(sell).select_lots_to_close(eligible, sell.quantity):
            if remaining <= 0:
                break

            consumed = min(lot.quantity_remaining, remaining)
            remaining -= consumed

            # Last closure absorbs the rounding remainder of the fee
            fee_share = fee_left if remaining == 0 else sell.fee * consumed / sell.quantity
            fee_left -= fee_share

            exit_price = sell.price
            if lot.currency != sell.currency:
                rate = fx.get_rate(sell.currency, lot.currency)
                exit_price = convert(sell.price, sell.currency, lot.currency, rate)
                fee_share = convert(fee_share, sell.currency, lot.currency, rate)

            realized = consumed * (exit_price - lot.entry_price) - fee_share
            hold_days = (sell.date - lot.entry_date).days
            closure = LotClosure(
                lot_id=lot.lot_id,
                ticker=lot.ticker,
                sell_transaction_id=sell.id,
                entry_date=lot.entry_date,
                date=sell.date,
                quantity=consumed,
                entry_price=lot.entry_price,
                exit_price=exit_price,
                fee=fee_share,
                realized_pl=realized,
                realized_pl_percent=realized / (consumed * lot.entry_price) * HUNDRED,
                hold_days=hold_days,
                is_long_term=hold_days > self.long_term_days,
            )
            closures.append(closure)
            _record_closure(lot, closure)

        return closures


def _open_lot(buy: Transaction) -> TradeLot:
    return TradeLot(
        lot_id=buy.id,
        ticker=buy.ticker,
        entry_transaction_id=buy.id,
        entry_date=buy.date,
        entry_price=buy.price,
        quantity_original=buy.quantity,
        quantity_remaining=buy.quantity,
        entry_fee=buy.fee,
        currency=buy.currency,
        status=LotStatus.OPEN,
        strategy=buy.strategy,
    )


def _record_closure(lot: TradeLot, closure: LotClosure) -> None:
    """Update a (copied) lot after a closure was taken from it."""
    lot.quantity_remaining -= closure.quantity
    lot.realized_pl = (lot.realized_pl or ZERO) + closure.realized_pl

    if lot.quantity_remaining > 0:
        lot.status = LotStatus.PARTIAL
        return

    lot.status = LotStatus.CLOSED
    lot.exit_date = closure.date
    lot.exit_price = closure.exit_price
    lot.hold_days = closure.hold_days
    lot.realized_pl_percent = lot.realized_pl / (lot.quantity_original * lot.entry_price) * HUNDRED
