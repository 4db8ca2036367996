"""
Input validation utilities for CLI commands.

Provides reusable Click parameter types and callbacks for:
- Ticker symbol format validation
- Decimal amounts (quantities, prices, fees, rates)
- TICKER=PRICE market price pairs
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

import click

# Stock ticker format: 1-10 uppercase alphanumeric chars, dots, hyphens
# Covers standard (AAPL), dot-suffix (BRK.A, BF.B), hyphenated (BRK-B),
# and numeric tickers. Matches the ledger's ticker regex.
TICKER_PATTERN = re.compile(r"^[A-Z0-9.\-]{1,10}$")


def _validate_ticker_format(value: str) -> str:
    if not TICKER_PATTERN.match(value):
        raise ValueError(
            f"Invalid ticker format: '{value}'. "
            "Expected 1-10 uppercase characters (e.g., AAPL, BRK.A, BRK-B)"
        )
    return value


class TickerType(click.ParamType):
    """Custom Click parameter type for ticker symbols."""

    name = "ticker"

    def convert(self, value, param, ctx):
        if not value:
            self.fail("Ticker symbol is required", param, ctx)

        value = value.upper().strip()

        try:
            return _validate_ticker_format(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


class DecimalType(click.ParamType):
    """
    Click parameter type parsing exact Decimals.

    Amounts are never routed through float so '0.1' stays 0.1.
    """

    name = "decimal"

    def __init__(self, positive: bool = False, allow_zero: bool = True):
        self.positive = positive
        self.allow_zero = allow_zero

    def convert(self, value, param, ctx):
        if isinstance(value, Decimal):
            result = value
        else:
            try:
                result = Decimal(str(value).strip())
            except InvalidOperation:
                self.fail(f"{value!r} is not a valid number", param, ctx)

        if not result.is_finite():
            self.fail(f"{value!r} is not a finite number", param, ctx)
        if result < 0 or (result == 0 and not self.allow_zero):
            label = "greater than 0" if self.positive or not self.allow_zero else "0 or more"
            self.fail(f"must be {label}", param, ctx)
        return result


def parse_prices(
    ctx: click.Context, param: click.Parameter, values: Optional[tuple[str, ...]]
) -> dict[str, Decimal]:
    """
    Parse repeated TICKER=PRICE options (Click callback).

    Raises:
        click.BadParameter: If a pair is malformed or its price is not a
            non-negative number
    """
    prices: dict[str, Decimal] = {}
    for value in values or ():
        ticker, sep, price = value.partition("=")
        ticker = ticker.strip().upper()
        if not sep or not ticker or not price.strip():
            raise click.BadParameter(f"Expected TICKER=PRICE, got {value!r}")
        try:
            _validate_ticker_format(ticker)
            parsed = Decimal(price.strip())
        except (ValueError, InvalidOperation):
            raise click.BadParameter(f"Invalid price pair: {value!r}")
        if not parsed.is_finite() or parsed < 0:
            raise click.BadParameter(f"Price must be 0 or more: {value!r}")
        prices[ticker] = parsed
    return prices


# Singleton instances for reuse
TICKER = TickerType()
AMOUNT = DecimalType()
POSITIVE = DecimalType(positive=True, allow_zero=False)
