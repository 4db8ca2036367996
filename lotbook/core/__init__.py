"""Pure accounting core: lots, positions, cash flow and dividends."""

from lotbook.core.exceptions import (
    InconsistentCashMovementError,
    InsufficientSharesError,
    InvalidTransactionError,
    LotbookError,
    UnknownPriceWarning,
)

__all__ = [
    "LotbookError",
    "InsufficientSharesError",
    "InvalidTransactionError",
    "InconsistentCashMovementError",
    "UnknownPriceWarning",
]
