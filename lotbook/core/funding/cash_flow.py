"""
Cash flow aggregation for deposits and withdrawals.

Buckets a user's cash movements by funding period and computes:
- Inflow, outflow and net flow per period, in home and trading currency
- Running cumulative balance across periods in period_from order
- All-time balance summary with a value-weighted average spot rate

Cumulative values are a prefix sum, so every call recomputes the whole
series from the full movement list.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Union
from uuid import uuid4

from lotbook.core.exceptions import InconsistentCashMovementError
from lotbook.core.models import (
    ZERO,
    CashBalanceSummary,
    CashMovement,
    Direction,
    Number,
    PeriodStats,
    to_date,
    to_decimal,
)

logger = logging.getLogger(__name__)

NO_PERIOD = "No Period"

DEFAULT_EPSILON = Decimal("0.01")

PeriodKey = tuple[Optional[date], Optional[date]]


def format_period(period_from: Optional[date], period_to: Optional[date]) -> str:
    """Render a period as 'Jan 15, 2024 - Feb 14, 2024', '... - Ongoing' or 'No Period'."""
    if period_from is None:
        return NO_PERIOD
    start = _format_date(period_from)
    if period_to is None:
        return f"{start} - Ongoing"
    return f"{start} - {_format_date(period_to)}"


def _format_date(value: date) -> str:
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def validate_cash_movement(
    movement: CashMovement, epsilon: Decimal = DEFAULT_EPSILON
) -> CashMovement:
    """
    Check a cash movement's invariants.

    Raises:
        ValueError: If amounts or rate are not finite and positive, or the
            period ends before it starts
        InconsistentCashMovementError: If trading_currency_value differs
            from home_currency_value * spot_rate by more than epsilon
    """
    for label, value in (
        ("Cash movement amount", movement.home_currency_value),
        ("Trading currency value", movement.trading_currency_value),
        ("Spot rate", movement.spot_rate),
    ):
        if not value.is_finite():
            raise ValueError(f"{label} must be a finite number, got {value}")
    if movement.home_currency_value <= 0:
        raise ValueError("Cash movement amount must be positive")
    if movement.spot_rate <= 0:
        raise ValueError("Spot rate must be positive")
    if (
        movement.period_from is not None
        and movement.period_to is not None
        and movement.period_to < movement.period_from
    ):
        raise ValueError(
            f"Period ends ({movement.period_to}) before it starts ({movement.period_from})"
        )

    expected = movement.home_currency_value * movement.spot_rate
    if abs(movement.trading_currency_value - expected) > epsilon:
        raise InconsistentCashMovementError(expected, movement.trading_currency_value, epsilon)
    return movement


def new_cash_movement(
    direction: Union[Direction, str],
    home_currency_value: Number,
    spot_rate: Number,
    transaction_date: Union[date, str],
    period_from: Optional[Union[date, str]] = None,
    period_to: Optional[Union[date, str]] = None,
    home_currency: str = "USD",
    trading_currency: str = "USD",
    notes: Optional[str] = None,
    movement_id: Optional[str] = None,
    epsilon: Decimal = DEFAULT_EPSILON,
) -> CashMovement:
    """
    Create a validated cash movement.

    The trading currency value is always derived from the home value and
    the spot rate, never supplied by the caller.
    """
    home = to_decimal(home_currency_value)
    rate = to_decimal(spot_rate)
    if not (home.is_finite() and rate.is_finite()):
        raise ValueError("Cash movement amount and spot rate must be finite numbers")
    movement = CashMovement(
        id=movement_id or uuid4().hex,
        direction=Direction(direction),
        home_currency_value=home,
        trading_currency_value=home * rate,
        spot_rate=rate,
        transaction_date=to_date(transaction_date),
        period_from=to_date(period_from) if period_from else None,
        period_to=to_date(period_to) if period_to else None,
        home_currency=home_currency.upper(),
        trading_currency=trading_currency.upper(),
        notes=notes,
    )
    return validate_cash_movement(movement, epsilon)


def _period_sort_key(key: PeriodKey) -> tuple:
    period_from, period_to = key
    # Open-ended periods sort after closed ones sharing the same start
    return (period_from, period_to is None, period_to or date.min)


def aggregate_periods(movements: Iterable[CashMovement]) -> list[PeriodStats]:
    """
    Bucket cash movements by (period_from, period_to) and compute totals.

    Args:
        movements: All of one user's cash movements, in any order

    Returns:
        PeriodStats ordered by period_from ascending (then period_to, with
        open-ended periods last). Movements without a period_from form a
        single "No Period" bucket at the end whose cumulative fields are
        None; it does not contribute to the running totals.
    """
    buckets: dict[PeriodKey, PeriodStats] = {}
    undated: Optional[PeriodStats] = None

    for movement in movements:
        if movement.period_from is None:
            if undated is None:
                undated = PeriodStats(None, None, NO_PERIOD)
            _add_movement(undated, movement)
            continue

        key = (movement.period_from, movement.period_to)
        stats = buckets.get(key)
        if stats is None:
            stats = PeriodStats(key[0], key[1], format_period(*key))
            buckets[key] = stats
        _add_movement(stats, movement)

    cumulative_home = ZERO
    cumulative_trading = ZERO
    ordered = []
    for key in sorted(buckets, key=_period_sort_key):
        stats = buckets[key]
        cumulative_home += stats.net_flow_home
        cumulative_trading += stats.net_flow_trading
        stats.cumulative_home = cumulative_home
        stats.cumulative_trading = cumulative_trading
        ordered.append(stats)

    if undated is not None:
        ordered.append(undated)
    return ordered


def _add_movement(stats: PeriodStats, movement: CashMovement) -> None:
    multiplier = movement.multiplier
    if multiplier > 0:
        stats.inflow_home += movement.home_currency_value
        stats.inflow_trading += movement.trading_currency_value
    else:
        stats.outflow_home += movement.home_currency_value
        stats.outflow_trading += movement.trading_currency_value
    stats.net_flow_home += movement.home_currency_value * multiplier
    stats.net_flow_trading += movement.trading_currency_value * multiplier
    stats.transaction_count += 1


def unique_periods(movements: Iterable[CashMovement]) -> list[tuple[date, Optional[date], str]]:
    """Distinct dated periods as (period_from, period_to, display), in period order."""
    keys = {
        (m.period_from, m.period_to) for m in movements if m.period_from is not None
    }
    return [(*key, format_period(*key)) for key in sorted(keys, key=_period_sort_key)]


def movements_in_period(
    movements: Iterable[CashMovement],
    period_from: Optional[date],
    period_to: Optional[date] = None,
) -> list[CashMovement]:
    """Movements belonging to one period bucket, newest first."""
    selected = [
        m for m in movements
        if m.period_from == period_from and m.period_to == period_to
    ]
    return sorted(selected, key=lambda m: m.transaction_date, reverse=True)


def summarize_cash_balance(
    movements: Iterable[CashMovement],
    home_currency: str = "USD",
    trading_currency: str = "USD",
) -> CashBalanceSummary:
    """
    All-time deposit and withdrawal totals.

    weighted_avg_rate is total trading value over total home value across
    every movement, i.e. the spot rate weighted by amount. Zero when
    there are no movements.
    """
    summary = CashBalanceSummary(home_currency=home_currency, trading_currency=trading_currency)
    gross_home = ZERO
    gross_trading = ZERO

    for movement in movements:
        if movement.direction is Direction.IN:
            summary.total_deposited_home += movement.home_currency_value
            summary.total_deposited_trading += movement.trading_currency_value
            summary.deposit_count += 1
        else:
            summary.total_withdrawn_home += movement.home_currency_value
            summary.total_withdrawn_trading += movement.trading_currency_value
            summary.withdrawal_count += 1

        gross_home += movement.home_currency_value
        gross_trading += movement.trading_currency_value

        when = movement.transaction_date
        if summary.first_transaction_date is None or when < summary.first_transaction_date:
            summary.first_transaction_date = when
        if summary.last_transaction_date is None or when > summary.last_transaction_date:
            summary.last_transaction_date = when

    summary.net_home = summary.total_deposited_home - summary.total_withdrawn_home
    summary.net_trading = summary.total_deposited_trading - summary.total_withdrawn_trading
    summary.weighted_avg_rate = gross_trading / gross_home if gross_home > 0 else ZERO
    return summary
