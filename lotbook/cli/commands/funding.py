"""Funding commands for deposits, withdrawals and period cash flow."""

import json
import logging

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from lotbook.cli.error_handler import handle_cli_errors
from lotbook.cli.formatting import (
    format_money,
    format_rate,
    get_side_color,
    pnl_text,
    print_empty_state,
)
from lotbook.cli.validators import POSITIVE
from lotbook.config import config
from lotbook.db import init_db
from lotbook.ledger import Ledger

logger = logging.getLogger(__name__)

DATE = click.DateTime(["%Y-%m-%d"])


@click.group()
@click.pass_context
def funding(ctx: click.Context) -> None:
    """
    Track deposits and withdrawals by funding period.

    Amounts are entered in the home currency and converted to the
    trading currency at the spot rate given; the rate is stored with the
    movement.

    \b
    Examples:
        lotbook funding add --direction in --amount 1000 --rate 1.08 --from 2024-01-01 --to 2024-01-31
        lotbook funding periods
        lotbook funding summary --json
    """
    init_db()


@funding.command("add")
@click.option("--direction", type=click.Choice(["in", "out"], case_sensitive=False), required=True,
              help="in = deposit, out = withdrawal")
@click.option("--amount", type=POSITIVE, required=True, help="Amount in home currency")
@click.option("--rate", type=POSITIVE, default="1", help="Spot rate (trading units per home unit)")
@click.option("--date", "-d", "transaction_date", type=DATE, default=None,
              help="Movement date (YYYY-MM-DD, default today)")
@click.option("--from", "period_from", type=DATE, default=None, help="Funding period start")
@click.option("--to", "period_to", type=DATE, default=None, help="Funding period end (omit for ongoing)")
@click.option("--notes", default=None, help="Notes")
@click.pass_context
@handle_cli_errors
def funding_add(ctx, direction, amount, rate, transaction_date, period_from, period_to, notes) -> None:
    """Record a deposit or withdrawal."""
    console: Console = ctx.obj["console"]

    if period_to and not period_from:
        raise click.UsageError("--to requires --from")

    movement = Ledger().add_cash_movement(
        direction=direction.lower(),
        amount=amount,
        spot_rate=rate,
        transaction_date=transaction_date,
        period_from=period_from,
        period_to=period_to,
        notes=notes,
    )

    label = "deposit" if movement.direction.value == "in" else "withdrawal"
    console.print(f"[green]Recorded {label}[/green] ({movement.id})")
    console.print(f"  {movement.home_currency}: {format_money(movement.home_currency_value, '')}")
    console.print(f"  {movement.trading_currency}: {format_money(movement.trading_currency_value, '')}")
    console.print(f"  Spot rate: {format_rate(movement.spot_rate)}")


@funding.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_cli_errors
def funding_list(ctx, as_json) -> None:
    """List cash movements, newest first."""
    console: Console = ctx.obj["console"]
    movements = Ledger().get_cash_movements()

    if as_json:
        click.echo(json.dumps([m.to_dict() for m in movements], indent=2))
        return

    if not movements:
        print_empty_state(console, "cash movements", "lotbook funding add --direction in --amount ...")
        return

    table = Table(title="Cash Movements")
    table.add_column("Date", style="dim")
    table.add_column("ID", style="dim")
    table.add_column("Direction", justify="center")
    table.add_column(config.home_currency, justify="right")
    table.add_column("Rate", justify="right")
    table.add_column(config.trading_currency, justify="right")
    table.add_column("Period")

    for m in movements:
        period = "-"
        if m.period_from:
            period = f"{m.period_from.isoformat()} .. {m.period_to.isoformat() if m.period_to else 'ongoing'}"
        table.add_row(
            m.transaction_date.isoformat(),
            m.id[:8],
            Text(m.direction.value.upper(), style=get_side_color(m.direction.value)),
            format_money(m.home_currency_value, ""),
            format_rate(m.spot_rate),
            format_money(m.trading_currency_value, ""),
            period,
        )

    console.print(table)


@funding.command("periods")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_cli_errors
def funding_periods(ctx, as_json) -> None:
    """Show net flow and running balance per funding period."""
    console: Console = ctx.obj["console"]
    stats = Ledger().get_period_stats()

    if as_json:
        click.echo(json.dumps([s.to_dict() for s in stats], indent=2))
        return

    if not stats:
        print_empty_state(console, "funding periods", "lotbook funding add --direction in --amount ...")
        return

    home, trading = config.home_currency, config.trading_currency
    table = Table(title="Funding Periods")
    table.add_column("Period", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column(f"In ({home})", justify="right")
    table.add_column(f"Out ({home})", justify="right")
    table.add_column(f"Net ({home})", justify="right")
    table.add_column(f"Net ({trading})", justify="right")
    table.add_column(f"Cumulative ({home})", justify="right")
    table.add_column(f"Cumulative ({trading})", justify="right")

    for s in stats:
        table.add_row(
            s.period_display,
            str(s.transaction_count),
            format_money(s.inflow_home, ""),
            format_money(s.outflow_home, ""),
            pnl_text(s.net_flow_home),
            pnl_text(s.net_flow_trading),
            format_money(s.cumulative_home, ""),
            format_money(s.cumulative_trading, ""),
        )

    console.print(table)


@funding.command("summary")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_cli_errors
def funding_summary(ctx, as_json) -> None:
    """Show all-time deposit and withdrawal totals."""
    console: Console = ctx.obj["console"]
    summary = Ledger().get_cash_balance_summary()

    if as_json:
        click.echo(json.dumps(summary.to_dict(), indent=2))
        return

    if summary.deposit_count + summary.withdrawal_count == 0:
        print_empty_state(console, "cash movements", "lotbook funding add --direction in --amount ...")
        return

    home, trading = summary.home_currency, summary.trading_currency
    console.print(Panel.fit("[bold]Cash Balance Summary[/bold]"))
    console.print()
    console.print(
        f"[cyan]Deposited:[/cyan] {format_money(summary.total_deposited_home, '')} {home} "
        f"/ {format_money(summary.total_deposited_trading, '')} {trading} "
        f"({summary.deposit_count})"
    )
    console.print(
        f"[cyan]Withdrawn:[/cyan] {format_money(summary.total_withdrawn_home, '')} {home} "
        f"/ {format_money(summary.total_withdrawn_trading, '')} {trading} "
        f"({summary.withdrawal_count})"
    )
    console.print(
        f"[cyan]Net:[/cyan] {format_money(summary.net_home, '')} {home} "
        f"/ {format_money(summary.net_trading, '')} {trading}"
    )
    console.print(f"[cyan]Weighted Avg Rate:[/cyan] {format_rate(summary.weighted_avg_rate)}")
    console.print(
        f"[dim]{summary.first_transaction_date.isoformat()} to "
        f"{summary.last_transaction_date.isoformat()}[/dim]"
    )


@funding.command("delete")
@click.argument("movement_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
@handle_cli_errors
def funding_delete(ctx, movement_id, yes) -> None:
    """Delete a cash movement."""
    console: Console = ctx.obj["console"]

    if not yes:
        click.confirm(f"Delete cash movement {movement_id}?", abort=True)

    Ledger().delete_cash_movement(movement_id)
    console.print(f"[green]Deleted cash movement {movement_id}[/green]")
