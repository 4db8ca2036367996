"""Database management commands."""

import logging

import click
from rich.console import Console

from lotbook.cli.error_handler import handle_cli_errors
from lotbook.config import config
from lotbook.db import init_db
from lotbook.ledger import Ledger

logger = logging.getLogger(__name__)


@click.group()
def db() -> None:
    """Database management commands.

    Initialize the local ledger database and rebuild derived lot data.
    """
    pass


@db.command()
@click.pass_context
@handle_cli_errors
def init(ctx: click.Context) -> None:
    """
    Initialize the local database.

    Creates the SQLite schema for transactions, lots, closures,
    positions, cash movements and dividends. Safe to run twice.

    \b
    Example:
        lotbook db init
    """
    console: Console = ctx.obj["console"]

    config.validate()
    config.ensure_directories()

    with console.status("[bold blue]Initializing database...[/bold blue]"):
        init_db()

    console.print("[green]Database initialized successfully![/green]")
    console.print(f"[dim]Database path: {config.db_path}[/dim]")


@db.command()
@click.argument("ticker")
@click.option(
    "--method",
    type=click.Choice(["fifo", "lifo", "hifo"], case_sensitive=False),
    default=None,
    help="Re-match every sell with this method (default: keep each sell's own)",
)
@click.pass_context
@handle_cli_errors
def rebuild(ctx: click.Context, ticker: str, method: str) -> None:
    """
    Rebuild a ticker's lots from its transactions.

    Replays every buy and sell in date order and rewrites the lots,
    closures and cached position. With --method, every sell of the
    ticker is re-matched with that method from now on.

    \b
    Example:
        lotbook db rebuild AAPL --method hifo
    """
    console: Console = ctx.obj["console"]
    init_db()

    result = Ledger().rebuild(ticker, method=method)
    console.print(f"[green]Rebuilt {ticker.upper()}[/green]")
    console.print(f"  Lots: {len(result.lots)}")
    console.print(f"  Closures: {len(result.match_log)}")
