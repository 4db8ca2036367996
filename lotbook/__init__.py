"""
Lotbook - lot-level cost-basis accounting for a personal portfolio.

Turns buy/sell transactions into open positions with weighted average
cost, closed trade lots with realized P&L, period-bucketed cash-flow
statistics, and dividend yields.
"""

__version__ = "0.1.0"
