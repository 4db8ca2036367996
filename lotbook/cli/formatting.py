"""Centralized formatting utilities for CLI output.

Provides consistent colors and number formatting across all CLI commands.
Unknown values (no market price, open-ended period) render as "N/A",
never as zero.
"""

from decimal import Decimal
from typing import Optional

from rich.console import Console
from rich.text import Text


# =============================================================================
# Standard Padding & Borders
# =============================================================================

TABLE_PADDING = (0, 2)

BORDER_PRIMARY = "blue"      # Main content panels
BORDER_SUCCESS = "green"     # Success/confirmation panels

# Missing value indicator
MISSING = "N/A"


# =============================================================================
# Colors
# =============================================================================


def get_pnl_color(value: Optional[Decimal]) -> str:
    """Get Rich color for a profit/loss amount."""
    if value is None:
        return "dim"
    if value > 0:
        return "green"
    if value < 0:
        return "red"
    return "white"


def get_side_color(side: str) -> str:
    """Get Rich color for a transaction side or cash direction."""
    colors = {
        "buy": "green",
        "in": "green",
        "sell": "red",
        "out": "red",
    }
    return colors.get(side.lower(), "white")


def get_status_color(status: str) -> str:
    """Get Rich color for a lot status."""
    colors = {
        "open": "green",
        "partial": "yellow",
        "closed": "dim",
    }
    return colors.get(status.lower(), "white")


# =============================================================================
# Number Formatting
# =============================================================================


def format_money(value: Optional[Decimal], symbol: str = "$") -> str:
    """Format an amount as '$1,234.56', or N/A when unknown."""
    if value is None:
        return MISSING
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"


def format_shares(value: Optional[Decimal]) -> str:
    """Format a share quantity, dropping trailing zeros."""
    if value is None:
        return MISSING
    text = f"{value:,.8f}".rstrip("0").rstrip(".")
    return text or "0"


def format_percent(value: Optional[Decimal]) -> str:
    if value is None:
        return MISSING
    return f"{value:+.2f}%"


def format_rate(value: Optional[Decimal]) -> str:
    if value is None:
        return MISSING
    return f"{value:.4f}"


def pnl_text(value: Optional[Decimal], percent: Optional[Decimal] = None) -> Text:
    """Colored P&L cell, optionally with its percentage."""
    label = format_money(value)
    if value is not None and percent is not None:
        label = f"{label} ({format_percent(percent)})"
    return Text(label, style=get_pnl_color(value))


def print_empty_state(console: Console, entity: str, hint: str) -> None:
    """
    Print standardized empty state message.

    Args:
        console: Rich console instance
        entity: What's empty (e.g., "positions", "cash movements")
        hint: Command to get started
    """
    console.print(f"[yellow]No {entity} found.[/yellow]")
    console.print(f"[dim]Run `{hint}` to get started[/dim]")
