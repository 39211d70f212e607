"""Main CLI entry point for the print queue."""

import click
from rich.console import Console

from printqueue import __version__

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="Print Queue")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Print Queue - karma-ordered queue for a shared 3D printer.

    Users submit print requests, admins price and approve them, and the
    queue is ordered so that light users print before heavy ones.
    """
    from printqueue.config import get_settings
    from printqueue.utils import setup_logging

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging("DEBUG" if verbose else get_settings().log_level)


# Import and register command groups
from printqueue.cli.queue_cmd import queue, run

cli.add_command(queue)


@cli.command("init-db")
def init_db_cmd() -> None:
    """Create the database tables."""
    from printqueue.db import init_db, get_database_url

    run(init_db)
    console.print(f"[green]Database ready[/green] at {get_database_url()}")


@cli.command()
def status() -> None:
    """Show configuration and queue summary."""
    from printqueue.config import get_settings
    from printqueue.queue.board import QueueBoard

    settings = get_settings()

    console.print("[bold]Print Queue Status[/bold]")
    console.print(f"Version: {__version__}")
    console.print()
    console.print("[bold]Configuration:[/bold]")
    console.print(f"  Database: {settings.database_url}")
    console.print(f"  Receipt prefix: {settings.receipt_prefix}")
    console.print(
        f"  Karma: {settings.karma_base:g} / (hours + 1), "
        f"+{settings.gap_filler_bonus:g} under {settings.gap_filler_minutes} min"
    )
    console.print()

    stats = run(QueueBoard().stats)
    console.print("[bold]Queue:[/bold]")
    console.print(f"  Pending review: {stats.total_pending_review}")
    console.print(f"  Queued: {stats.total_queued}")
    console.print(f"  Printing: {stats.total_printing}")


if __name__ == "__main__":
    cli()
