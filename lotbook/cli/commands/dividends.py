"""Dividend commands for income records and yield."""

import json
import logging

import click
from rich.console import Console
from rich.table import Table

from lotbook.cli.error_handler import handle_cli_errors
from lotbook.cli.formatting import format_money, format_shares, print_empty_state
from lotbook.cli.validators import AMOUNT, POSITIVE, TICKER
from lotbook.db import init_db
from lotbook.ledger import Ledger

logger = logging.getLogger(__name__)

DATE = click.DateTime(["%Y-%m-%d"])


@click.group()
@click.pass_context
def dividends(ctx: click.Context) -> None:
    """
    Record dividends and measure yield.

    \b
    Examples:
        lotbook dividends add AAPL --dps 0.24 --shares 10 --ex-date 2024-08-12
        lotbook dividends yield AAPL --price 180
        lotbook dividends summary --by quarter
    """
    init_db()


@dividends.command("add")
@click.argument("ticker", type=TICKER)
@click.option("--dps", type=POSITIVE, required=True, help="Dividend per share")
@click.option("--shares", type=POSITIVE, required=True, help="Shares owned on the ex-date")
@click.option("--ex-date", "ex_date", type=DATE, required=True, help="Ex-dividend date (YYYY-MM-DD)")
@click.option("--pay-date", "pay_date", type=DATE, default=None, help="Payment date (YYYY-MM-DD)")
@click.option("--currency", default="USD", help="Dividend currency")
@click.option("--notes", default=None, help="Notes")
@click.pass_context
@handle_cli_errors
def dividends_add(ctx, ticker, dps, shares, ex_date, pay_date, currency, notes) -> None:
    """Record a dividend received."""
    console: Console = ctx.obj["console"]

    payment = Ledger().add_dividend(
        ticker=ticker,
        ex_dividend_date=ex_date,
        dividend_per_share=dps,
        shares_owned=shares,
        payment_date=pay_date,
        currency=currency,
        notes=notes,
    )

    console.print(f"[green]Recorded dividend for {payment.ticker}[/green]")
    console.print(f"  Per share: {format_money(payment.dividend_per_share)}")
    console.print(f"  Shares: {format_shares(payment.shares_owned)}")
    console.print(f"  Total: {format_money(payment.total_amount)}")


@dividends.command("list")
@click.option("--ticker", type=TICKER, default=None, help="Only this ticker")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_cli_errors
def dividends_list(ctx, ticker, as_json) -> None:
    """List dividends, newest ex-date first."""
    console: Console = ctx.obj["console"]
    payments = Ledger().get_dividends(ticker)

    if as_json:
        click.echo(json.dumps([p.to_dict() for p in payments], indent=2))
        return

    if not payments:
        print_empty_state(console, "dividends", "lotbook dividends add TICKER --dps ... --shares ...")
        return

    table = Table(title="Dividends")
    table.add_column("Ex-Date", style="dim")
    table.add_column("Paid", style="dim")
    table.add_column("Ticker", style="cyan")
    table.add_column("Per Share", justify="right")
    table.add_column("Shares", justify="right")
    table.add_column("Total", justify="right")

    for p in payments:
        table.add_row(
            p.ex_dividend_date.isoformat(),
            p.payment_date.isoformat() if p.payment_date else "-",
            p.ticker,
            format_money(p.dividend_per_share),
            format_shares(p.shares_owned),
            format_money(p.total_amount),
        )

    console.print(table)


@dividends.command("yield")
@click.argument("ticker", type=TICKER)
@click.option("--price", type=AMOUNT, default=None, help="Current price per share")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_cli_errors
def dividends_yield(ctx, ticker, price, as_json) -> None:
    """
    Show personal yield (on cost basis) and market yield (on current value).

    Without --price the market yield is 0.
    """
    console: Console = ctx.obj["console"]
    result = Ledger().get_dividend_yield(ticker, price)

    if as_json:
        click.echo(json.dumps({"ticker": ticker, **result.to_dict()}, indent=2))
        return

    console.print(f"[bold]{ticker} Dividend Yield[/bold]")
    console.print(f"[cyan]Total Received:[/cyan] {format_money(result.total_received)} ({result.payment_count} payments)")
    console.print(f"[cyan]Personal Yield:[/cyan] {result.personal_yield:.2f}%")
    console.print(f"[cyan]Market Yield:[/cyan] {result.market_yield:.2f}%")
    if price is None:
        console.print("[dim]Pass --price for the yield on current value[/dim]")


@dividends.command("summary")
@click.option("--by", "group_by", type=click.Choice(["ticker", "quarter", "year"]), default="ticker",
              help="Grouping")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_cli_errors
def dividends_summary(ctx, group_by, as_json) -> None:
    """Show dividend income by ticker, quarter or year."""
    console: Console = ctx.obj["console"]
    summaries = Ledger().get_dividend_summary(group_by)

    if as_json:
        click.echo(json.dumps([s.to_dict() for s in summaries], indent=2))
        return

    if not summaries:
        print_empty_state(console, "dividends", "lotbook dividends add TICKER --dps ... --shares ...")
        return

    table = Table(title=f"Dividend Income by {group_by.title()}")
    table.add_column(group_by.title(), style="cyan")
    table.add_column("Payments", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Avg / Share", justify="right")
    table.add_column("Tickers", justify="right")
    table.add_column("First", style="dim")
    table.add_column("Last", style="dim")

    for s in summaries:
        table.add_row(
            s.key,
            str(s.total_payments),
            format_money(s.total_received),
            format_money(s.avg_dividend_per_share),
            str(s.tickers),
            s.earliest_date.isoformat(),
            s.latest_date.isoformat(),
        )

    console.print(table)
    console.print(f"\n[bold]Total: {format_money(sum(s.total_received for s in summaries))}[/bold]")
