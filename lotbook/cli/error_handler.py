"""Shared CLI error handling decorator.

Catches the ledger's domain errors in one place so every command renders
them the same way and exits with status 1. Commands can still handle
command-specific exceptions internally before the decorator catches the
rest.

Usage:
    @click.command()
    @click.pass_context
    @handle_cli_errors
    def my_command(ctx, ...):
        ...
"""

import functools
import logging

import click
from rich.console import Console

from lotbook.core.exceptions import (
    ConfigError,
    InconsistentCashMovementError,
    InsufficientSharesError,
    InvalidTransactionError,
    RecordNotFoundError,
)

logger = logging.getLogger(__name__)


def handle_cli_errors(f):
    """Decorator that catches ledger exceptions with Rich-formatted output.

    Must be applied AFTER @click.pass_context so the Click context (which
    provides the console via ctx.obj["console"]) is available.
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        ctx = click.get_current_context(silent=True)
        console = ctx.obj["console"] if ctx and ctx.obj and "console" in ctx.obj else Console()

        try:
            return f(*args, **kwargs)
        except SystemExit:
            raise  # Don't intercept explicit exits
        except InsufficientSharesError as e:
            console.print(f"[red]Insufficient shares:[/red] {e}")
            console.print(
                f"[dim]Run `lotbook portfolio lots {e.ticker}` to see open lots.[/dim]"
            )
            raise SystemExit(1)
        except InvalidTransactionError as e:
            console.print(f"[red]Invalid transaction:[/red] {e}")
            raise SystemExit(1)
        except InconsistentCashMovementError as e:
            console.print(f"[red]Inconsistent cash movement:[/red] {e}")
            raise SystemExit(1)
        except RecordNotFoundError as e:
            console.print(f"[red]Not found:[/red] {e}")
            raise SystemExit(1)
        except ConfigError as e:
            console.print(f"[red]Configuration error:[/red] {e}")
            console.print("[yellow]Check your LOTBOOK_* environment variables or .env file.[/yellow]")
            raise SystemExit(1)
        except (click.exceptions.Exit, click.ClickException, click.Abort):
            raise  # Don't intercept Click exits, usage errors or aborts
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise SystemExit(1)
        except Exception as e:
            logger.exception("Unexpected error in %s command", f.__name__)
            console.print(f"[red]Unexpected error:[/red] {e}")
            raise SystemExit(1)

    return wrapper
