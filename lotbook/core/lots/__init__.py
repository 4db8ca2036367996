"""Lot matching and position aggregation."""

from lotbook.core.lots.matcher import (
    FIFOStrategy,
    HIFOStrategy,
    LIFOStrategy,
    LotMatcher,
    LotSelectionStrategy,
    MatchResult,
    get_strategy,
)
from lotbook.core.lots.positions import (
    PortfolioSummary,
    aggregate_position,
    aggregate_positions,
    realized_history,
    summarize_portfolio,
)

__all__ = [
    "LotMatcher",
    "LotSelectionStrategy",
    "FIFOStrategy",
    "LIFOStrategy",
    "HIFOStrategy",
    "MatchResult",
    "get_strategy",
    "PortfolioSummary",
    "aggregate_position",
    "aggregate_positions",
    "realized_history",
    "summarize_portfolio",
]
