"""
Custom exceptions for Lotbook accounting operations.

Every rejected operation raises a subclass of LotbookError before any
output is built, so callers never observe partially applied state.
Input errors also subclass ValueError so generic input handling keeps
working.
"""

from decimal import Decimal
from typing import Optional


class LotbookError(Exception):
    """Base exception for all Lotbook errors."""

    pass


class ConfigError(LotbookError):
    """Raised when configuration values are invalid."""

    pass


class InvalidTransactionError(LotbookError, ValueError):
    """
    Raised when a transaction is rejected before lot matching.

    Covers non-positive quantity or price, negative fees, a ticker that
    does not match the supplied lots, and sells dated before the
    position's earliest open lot.
    """

    pass


class InsufficientSharesError(LotbookError, ValueError):
    """
    Raised when a sell requests more shares than the open lots hold.

    User-correctable: no lot is modified when this is raised.
    """

    def __init__(self, ticker: str, requested: Decimal, available: Decimal):
        self.ticker = ticker
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient shares of {ticker} to sell. "
            f"Have {available}, trying to sell {requested}"
        )


class InconsistentCashMovementError(LotbookError, ValueError):
    """
    Raised when a cash movement's trading value does not reconcile
    with home_currency_value * spot_rate.
    """

    def __init__(self, expected: Decimal, actual: Decimal, epsilon: Decimal):
        self.expected = expected
        self.actual = actual
        self.epsilon = epsilon
        super().__init__(
            f"Trading currency value {actual} does not match "
            f"home value * spot rate ({expected}) within {epsilon}"
        )


class RecordNotFoundError(LotbookError, LookupError):
    """Raised when a ledger record does not exist for the current user."""

    def __init__(self, kind: str, record_id: Optional[str]):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")


class UnknownPriceWarning(UserWarning):
    """
    Emitted when a position has no market price.

    Unrealized P&L and current value are left as None; render "N/A",
    never 0.
    """

    pass
