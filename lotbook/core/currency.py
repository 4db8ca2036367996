"""
Currency conversion at an externally supplied rate.

Rates are never looked up here: callers pass them in directly or through
an FxRateProvider. The stored spot rate of a cash movement is historical
fact; display-time conversion at a live rate is a separate concern.
"""

from decimal import Decimal
from typing import Mapping, Protocol

from lotbook.core.models import Number, to_decimal


class FxRateProvider(Protocol):
    """Source of FX rates: units of `to_currency` per one unit of `from_currency`."""

    def get_rate(self, from_currency: str, to_currency: str) -> Decimal:
        ...


def convert(amount: Number, from_currency: str, to_currency: str, rate: Number) -> Decimal:
    """
    Convert an amount between currencies.

    Args:
        amount: Amount in from_currency
        from_currency: ISO code of the amount
        to_currency: Target ISO code
        rate: Units of to_currency per unit of from_currency

    Returns:
        Converted amount. Same-currency conversions return the amount
        unchanged and ignore the rate.

    Raises:
        ValueError: If the rate is not positive
    """
    value = to_decimal(amount)
    if from_currency.upper() == to_currency.upper():
        return value
    fx = to_decimal(rate)
    if fx <= 0:
        raise ValueError(f"FX rate must be positive, got {fx}")
    return value * fx


class StaticRateProvider:
    """
    FxRateProvider backed by a fixed rate table.

    Inverse rates are derived when only the opposite pair is known.
    """

    def __init__(self, rates: Mapping[tuple[str, str], Number]):
        self._rates = {
            (src.upper(), dst.upper()): to_decimal(rate) for (src, dst), rate in rates.items()
        }

    def get_rate(self, from_currency: str, to_currency: str) -> Decimal:
        src, dst = from_currency.upper(), to_currency.upper()
        if src == dst:
            return Decimal("1")
        if (src, dst) in self._rates:
            return self._rates[(src, dst)]
        if (dst, src) in self._rates:
            return Decimal("1") / self._rates[(dst, src)]
        raise KeyError(f"No FX rate for {src}->{dst}")
