"""
Lotbook CLI - Position and lot cost-basis ledger.

Entry point for the command-line interface. Provides commands for:
- Portfolio tracking (buy/sell transactions, lots, positions, realized P&L)
- Funding (deposits/withdrawals per period with running balance)
- Dividends (income records, yield on cost and on market value)
- Database management

Usage:
    lotbook --help
    lotbook db init
    lotbook portfolio buy AAPL -q 10 -p 150
    lotbook portfolio sell AAPL -q 5 -p 175 --method hifo
    lotbook portfolio positions --price AAPL=180
    lotbook funding add --direction in --amount 1000 --rate 1.08 --from 2024-01-01
    lotbook funding periods
    lotbook dividends yield AAPL --price 180
"""

import logging
from collections import OrderedDict

import click
from rich.console import Console

from lotbook import __version__
from lotbook.cli.commands import db, dividends, funding, portfolio
from lotbook.config import config


class OrderedGroup(click.Group):
    """Custom group that displays commands in organized categories."""

    COMMAND_GROUPS: OrderedDict[str, list[str]] = OrderedDict([
        ("Ledger", ["portfolio", "funding", "dividends"]),
        ("Setup", ["db"]),
    ])

    def format_commands(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        """Write commands in organized groups."""
        for group_name, cmd_names in self.COMMAND_GROUPS.items():
            commands = []
            for cmd_name in cmd_names:
                cmd = self.get_command(ctx, cmd_name)
                if cmd:
                    help_text = cmd.get_short_help_str(limit=formatter.width)
                    commands.append((cmd_name, help_text))

            if commands:
                with formatter.section(group_name):
                    formatter.write_dl(commands)


# Global console for rich output
console = Console()


@click.group(cls=OrderedGroup)
@click.version_option(version=__version__, prog_name="lotbook")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """
    Lotbook - lot-level cost basis ledger.

    Records buys and sells as trade lots, matches sells against lots
    (FIFO by default), and reports positions, realized P&L, funding
    periods and dividend yield.

    \b
    Examples:
        lotbook db init                          # Initialize database
        lotbook portfolio buy AAPL -q 10 -p 150  # Record a purchase
        lotbook portfolio positions --json       # Positions as JSON
        lotbook funding summary                  # Deposits/withdrawals
        lotbook dividends summary --by quarter   # Dividend income
    """
    ctx.ensure_object(dict)
    ctx.obj["console"] = console


# Register command groups
cli.add_command(portfolio.portfolio)
cli.add_command(funding.funding)
cli.add_command(dividends.dividends)
cli.add_command(db.db)


def main() -> None:
    """Main entry point for CLI."""
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cli()


if __name__ == "__main__":
    main()
