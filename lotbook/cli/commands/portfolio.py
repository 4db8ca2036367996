"""Portfolio commands for transactions, lots and positions."""

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
    format_shares,
    get_side_color,
    get_status_color,
    pnl_text,
    print_empty_state,
)
from lotbook.cli.validators import AMOUNT, POSITIVE, TICKER, parse_prices
from lotbook.db import init_db
from lotbook.ledger import Ledger

logger = logging.getLogger(__name__)

METHOD_CHOICE = click.Choice(["fifo", "lifo", "hifo"], case_sensitive=False)


@click.group()
@click.pass_context
def portfolio(ctx: click.Context) -> None:
    """
    Record trades and inspect lots, positions and realized P&L.

    \b
    Examples:
        lotbook portfolio buy AAPL -q 10 -p 150.00
        lotbook portfolio sell AAPL -q 5 -p 175.00
        lotbook portfolio positions --price AAPL=180
        lotbook portfolio lots AAPL
        lotbook portfolio history --ticker AAPL
    """
    init_db()


@portfolio.command("buy")
@click.argument("ticker", type=TICKER)
@click.option("--quantity", "-q", type=POSITIVE, required=True, help="Number of shares")
@click.option("--price", "-p", type=POSITIVE, required=True, help="Price per share")
@click.option("--date", "-d", "transaction_date", type=click.DateTime(["%Y-%m-%d"]), default=None,
              help="Transaction date (YYYY-MM-DD, default today)")
@click.option("--fees", type=AMOUNT, default="0", help="Brokerage fees")
@click.option("--currency", default="USD", help="Trade currency")
@click.option("--strategy", default=None, help="Strategy tag for the lot")
@click.option("--notes", default=None, help="Transaction notes")
@click.pass_context
@handle_cli_errors
def portfolio_buy(ctx, ticker, quantity, price, transaction_date, fees, currency, strategy, notes) -> None:
    """Record a purchase; opens a new lot."""
    console: Console = ctx.obj["console"]

    txn = Ledger().add_buy(
        ticker=ticker,
        quantity=quantity,
        price=price,
        transaction_date=transaction_date,
        fees=fees,
        currency=currency,
        strategy=strategy,
        notes=notes,
    )

    console.print(f"[green]Recorded purchase of {txn.ticker}[/green]")
    console.print(f"  Transaction: {txn.id}")
    console.print(f"  Date: {txn.date.isoformat()}")
    console.print(f"  Shares: {format_shares(txn.quantity)}")
    console.print(f"  Price: {format_money(txn.price)}")
    console.print(f"  Total Cost: {format_money(txn.trade_value)}")
    if txn.fee > 0:
        console.print(f"  Fees: {format_money(txn.fee)}")
    console.print()
    console.print("[dim]Run `lotbook portfolio positions` to see your positions[/dim]")


@portfolio.command("sell")
@click.argument("ticker", type=TICKER)
@click.option("--quantity", "-q", type=POSITIVE, required=True, help="Shares to sell")
@click.option("--price", "-p", type=POSITIVE, required=True, help="Sale price per share")
@click.option("--date", "-d", "transaction_date", type=click.DateTime(["%Y-%m-%d"]), default=None,
              help="Sale date (YYYY-MM-DD, default today)")
@click.option("--fees", type=AMOUNT, default="0", help="Brokerage fees")
@click.option("--currency", default="USD", help="Trade currency")
@click.option("--method", type=METHOD_CHOICE, default=None,
              help="Lot selection method (default: LOTBOOK_LOT_METHOD)")
@click.option("--notes", default=None, help="Transaction notes")
@click.pass_context
@handle_cli_errors
def portfolio_sell(ctx, ticker, quantity, price, transaction_date, fees, currency, method, notes) -> None:
    """Record a sale; closes lots and reports realized P&L."""
    console: Console = ctx.obj["console"]

    txn, closures = Ledger().add_sell(
        ticker=ticker,
        quantity=quantity,
        price=price,
        transaction_date=transaction_date,
        fees=fees,
        currency=currency,
        notes=notes,
        method=method,
    )

    console.print(f"[green]Recorded sale of {txn.ticker}[/green]")
    console.print(f"  Transaction: {txn.id}")
    console.print(f"  Shares: {format_shares(txn.quantity)}")
    console.print(f"  Price: {format_money(txn.price)}")
    console.print(f"  Proceeds: {format_money(txn.trade_value)}")
    if txn.fee > 0:
        console.print(f"  Fees: {format_money(txn.fee)}")

    table = Table(title="Lots Closed")
    table.add_column("Lot", style="dim")
    table.add_column("Entry Date")
    table.add_column("Shares", justify="right")
    table.add_column("Entry", justify="right")
    table.add_column("Realized P&L", justify="right")
    table.add_column("Term", justify="center")
    for c in closures:
        table.add_row(
            c.lot_id[:8],
            c.entry_date.isoformat(),
            format_shares(c.quantity),
            format_money(c.entry_price),
            pnl_text(c.realized_pl, c.realized_pl_percent),
            "Long" if c.is_long_term else "Short",
        )
    console.print(table)

    realized = sum(c.realized_pl for c in closures)
    console.print("  Realized P&L: ", pnl_text(realized))


@portfolio.command("positions")
@click.option("--price", "prices", multiple=True, callback=parse_prices,
              help="Current price as TICKER=PRICE (repeatable)")
@click.option("--all", "include_closed", is_flag=True, help="Include closed positions")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_cli_errors
def portfolio_positions(ctx, prices, include_closed, as_json) -> None:
    """
    Show positions with cost basis and P&L.

    Unrealized P&L is only shown for tickers given a --price; others
    show N/A.
    """
    console: Console = ctx.obj["console"]

    ledger = Ledger()
    positions = ledger.get_positions(prices, include_closed=include_closed)
    summary = ledger.get_portfolio_summary(prices)

    if as_json:
        data = {
            "positions": [
                {**p.to_dict(), "cost_basis": float(p.cost_basis)} for p in positions
            ],
            "summary": summary.to_dict(),
        }
        click.echo(json.dumps(data, indent=2))
        return

    if not positions:
        print_empty_state(console, "positions", "lotbook portfolio buy TICKER -q ... -p ...")
        return

    table = Table(title="Positions")
    table.add_column("Ticker", style="cyan")
    table.add_column("Shares", justify="right")
    table.add_column("Avg Cost", justify="right")
    table.add_column("Cost Basis", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Value", justify="right")
    table.add_column("Unrealized", justify="right")
    table.add_column("Realized", justify="right")
    table.add_column("Lots", justify="right")

    for p in positions:
        table.add_row(
            p.ticker,
            format_shares(p.total_shares),
            format_money(p.average_cost),
            format_money(p.cost_basis),
            format_money(p.current_market_price),
            format_money(p.current_value),
            pnl_text(p.unrealized_pnl, p.unrealized_pnl_percent),
            pnl_text(p.realized_pnl),
            str(p.lot_count),
        )

    console.print(table)
    console.print()
    console.print(Panel.fit("[bold]Portfolio Summary[/bold]"))
    console.print(f"[cyan]Total Cost Basis:[/cyan] {format_money(summary.total_cost_basis)}")
    console.print(f"[cyan]Market Value:[/cyan] {format_money(summary.total_market_value)}")
    console.print("[cyan]Unrealized P&L:[/cyan] ", pnl_text(summary.unrealized_pnl, summary.unrealized_pnl_percent))
    console.print("[cyan]Realized P&L:[/cyan] ", pnl_text(summary.realized_pnl_total))
    console.print(f"[cyan]Positions:[/cyan] {summary.position_count} open, {summary.closed_position_count} closed")
    if summary.missing_prices:
        console.print(
            f"[dim yellow]No price for: {', '.join(summary.missing_prices)} "
            "(pass --price TICKER=PRICE)[/dim yellow]"
        )


@portfolio.command("lots")
@click.argument("ticker", type=TICKER)
@click.option("--open", "open_only", is_flag=True, help="Only open and partial lots")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_cli_errors
def portfolio_lots(ctx, ticker, open_only, as_json) -> None:
    """List a ticker's lots, oldest first."""
    console: Console = ctx.obj["console"]
    ticker = ticker.upper()

    lots = Ledger().get_lots(ticker, include_closed=not open_only)

    if as_json:
        click.echo(json.dumps([lot.to_dict() for lot in lots], indent=2))
        return

    if not lots:
        print_empty_state(console, f"lots for {ticker}", f"lotbook portfolio buy {ticker} -q ... -p ...")
        return

    table = Table(title=f"Lots: {ticker}")
    table.add_column("Lot", style="dim")
    table.add_column("Entry Date")
    table.add_column("Entry", justify="right")
    table.add_column("Original", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Status", justify="center")
    table.add_column("Realized P&L", justify="right")
    table.add_column("Exit Date")

    for lot in lots:
        table.add_row(
            lot.lot_id[:8],
            lot.entry_date.isoformat(),
            format_money(lot.entry_price),
            format_shares(lot.quantity_original),
            format_shares(lot.quantity_remaining),
            Text(lot.status.value.upper(), style=get_status_color(lot.status.value)),
            pnl_text(lot.realized_pl, lot.realized_pl_percent) if lot.realized_pl is not None else Text("-", style="dim"),
            lot.exit_date.isoformat() if lot.exit_date else "-",
        )

    console.print(table)


@portfolio.command("history")
@click.option("--ticker", default=None, help="Only this ticker")
@click.option("--realized", is_flag=True, help="Show realized closures instead of transactions")
@click.option("--limit", type=int, default=50, help="Maximum results")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_cli_errors
def portfolio_history(ctx, ticker, realized, limit, as_json) -> None:
    """Show transaction history, or realized trade history with --realized."""
    console: Console = ctx.obj["console"]
    ledger = Ledger()

    if realized:
        closures = ledger.get_realized_history(ticker=ticker, limit=limit)
        if as_json:
            click.echo(json.dumps([c.to_dict() for c in closures], indent=2))
            return
        if not closures:
            print_empty_state(console, "realized trades", "lotbook portfolio sell TICKER -q ... -p ...")
            return

        table = Table(title="Realized Trades")
        table.add_column("Sold", style="dim")
        table.add_column("Ticker", style="cyan")
        table.add_column("Bought")
        table.add_column("Shares", justify="right")
        table.add_column("Entry", justify="right")
        table.add_column("Exit", justify="right")
        table.add_column("Fee", justify="right")
        table.add_column("Realized P&L", justify="right")
        table.add_column("Days", justify="right")
        for c in closures:
            table.add_row(
                c.date.isoformat(),
                c.ticker,
                c.entry_date.isoformat(),
                format_shares(c.quantity),
                format_money(c.entry_price),
                format_money(c.exit_price),
                format_money(c.fee),
                pnl_text(c.realized_pl, c.realized_pl_percent),
                str(c.hold_days),
            )
        console.print(table)
        return

    transactions = ledger.get_transactions(ticker=ticker, limit=limit)
    if as_json:
        click.echo(json.dumps([t.to_dict() for t in transactions], indent=2))
        return
    if not transactions:
        console.print("[yellow]No transactions found[/yellow]")
        return

    title = f"Transaction History: {ticker.upper()}" if ticker else "Transaction History"
    table = Table(title=title)
    table.add_column("Date", style="dim")
    table.add_column("ID", style="dim")
    table.add_column("Ticker", style="cyan")
    table.add_column("Type", justify="center")
    table.add_column("Shares", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Fees", justify="right")
    table.add_column("Total", justify="right")

    for t in transactions:
        table.add_row(
            t.date.isoformat(),
            t.id[:8],
            t.ticker,
            Text(t.side.value.upper(), style=get_side_color(t.side.value)),
            format_shares(t.quantity),
            format_money(t.price),
            format_money(t.fee),
            format_money(t.trade_value),
        )

    console.print(table)


@portfolio.command("edit")
@click.argument("transaction_id")
@click.option("--quantity", "-q", type=POSITIVE, default=None, help="New share quantity")
@click.option("--price", "-p", type=POSITIVE, default=None, help="New price per share")
@click.option("--date", "-d", "transaction_date", type=click.DateTime(["%Y-%m-%d"]), default=None,
              help="New date (YYYY-MM-DD)")
@click.option("--fees", type=AMOUNT, default=None, help="New fees")
@click.option("--notes", default=None, help="New notes")
@click.pass_context
@handle_cli_errors
def portfolio_edit(ctx, transaction_id, quantity, price, transaction_date, fees, notes) -> None:
    """
    Edit a transaction.

    Changing quantity, price, date or fees replays the ticker's lots; the
    edit is rejected if a later sell would no longer be covered.
    """
    console: Console = ctx.obj["console"]

    if all(v is None for v in (quantity, price, transaction_date, fees, notes)):
        console.print("[yellow]Nothing to change[/yellow]")
        return

    txn = Ledger().edit_transaction(
        transaction_id,
        quantity=quantity,
        price=price,
        transaction_date=transaction_date,
        fees=fees,
        notes=notes,
    )
    console.print(f"[green]Updated {txn.side.value} of {txn.ticker}[/green] ({txn.id})")


@portfolio.command("delete")
@click.argument("transaction_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
@handle_cli_errors
def portfolio_delete(ctx, transaction_id, yes) -> None:
    """Delete a transaction and replay its ticker's lots."""
    console: Console = ctx.obj["console"]

    if not yes:
        click.confirm(f"Delete transaction {transaction_id}?", abort=True)

    Ledger().delete_transaction(transaction_id)
    console.print(f"[green]Deleted transaction {transaction_id}[/green]")
