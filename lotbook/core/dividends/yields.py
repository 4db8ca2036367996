"""
Dividend yield and dividend income summaries.

Yield on cost (personal) and yield on current value (market) for one
ticker, plus income rolled up by ticker, quarter and year. Quarter and
year buckets use the payment date, falling back to the ex-dividend date
for announced-but-unpaid dividends.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from lotbook.core.models import (
    HUNDRED,
    ZERO,
    DividendPayment,
    DividendYield,
    Number,
    SerializableMixin,
    to_decimal,
)


@dataclass
class DividendSummary(SerializableMixin):
    """Dividend income for one bucket (a ticker, a quarter or a year)."""

    key: str
    total_payments: int
    total_received: Decimal
    avg_dividend_per_share: Decimal
    tickers: int
    earliest_date: date
    latest_date: date


def _percent(numerator: Decimal, denominator: Optional[Decimal]) -> Decimal:
    if not denominator:
        return ZERO
    return numerator / denominator * HUNDRED


def dividend_yield(
    payments: Iterable[DividendPayment],
    capital_invested: Number,
    current_market_value: Optional[Number],
) -> DividendYield:
    """
    Yield of one ticker's dividends.

    Args:
        payments: Dividends received for a single ticker
        capital_invested: Cost basis of the position
        current_market_value: Position value at the current price, or None

    Returns:
        DividendYield. Each yield is 0 when its denominator is 0 or unknown.

    Raises:
        ValueError: If payments span more than one ticker
    """
    payments = list(payments)
    tickers = {p.ticker for p in payments}
    if len(tickers) > 1:
        raise ValueError(f"Payments span multiple tickers: {sorted(tickers)}")

    total = sum((p.total_amount for p in payments), ZERO)
    capital = to_decimal(capital_invested)
    market = to_decimal(current_market_value) if current_market_value is not None else None

    return DividendYield(
        total_received=total,
        payment_count=len(payments),
        personal_yield=_percent(total, capital),
        market_yield=_percent(total, market),
    )


def _summarize(groups: dict[str, list[DividendPayment]]) -> list[DividendSummary]:
    summaries = []
    for key, items in groups.items():
        dates = [p.effective_date for p in items]
        summaries.append(
            DividendSummary(
                key=key,
                total_payments=len(items),
                total_received=sum((p.total_amount for p in items), ZERO),
                avg_dividend_per_share=sum((p.dividend_per_share for p in items), ZERO) / len(items),
                tickers=len({p.ticker for p in items}),
                earliest_date=min(dates),
                latest_date=max(dates),
            )
        )
    return summaries


def _group(payments: Iterable[DividendPayment], key_fn) -> dict[str, list[DividendPayment]]:
    groups: dict[str, list[DividendPayment]] = {}
    for payment in payments:
        groups.setdefault(key_fn(payment), []).append(payment)
    return groups


def summarize_by_ticker(payments: Iterable[DividendPayment]) -> list[DividendSummary]:
    """Income per ticker, largest total first."""
    summaries = _summarize(_group(payments, lambda p: p.ticker))
    return sorted(summaries, key=lambda s: s.total_received, reverse=True)


def summarize_by_quarter(payments: Iterable[DividendPayment]) -> list[DividendSummary]:
    """Income per calendar quarter ('2024-Q3'), newest first."""
    def quarter(p: DividendPayment) -> str:
        d = p.effective_date
        return f"{d.year}-Q{(d.month - 1) // 3 + 1}"

    return sorted(_summarize(_group(payments, quarter)), key=lambda s: s.key, reverse=True)


def summarize_by_year(payments: Iterable[DividendPayment]) -> list[DividendSummary]:
    """Income per calendar year, newest first."""
    groups = _group(payments, lambda p: str(p.effective_date.year))
    return sorted(_summarize(groups), key=lambda s: s.key, reverse=True)
