"""
Database management commands.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from .common import CONFIG_OPTION_HELP, load_config_or_exit

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Database operations",
    no_args_is_help=True,
)


@app.command("init")
def init_database(
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help=CONFIG_OPTION_HELP,
    ),
    drop_existing: bool = typer.Option(
        False,
        "--drop",
        help="Drop existing tables before creating",
    ),
) -> None:
    """Initialize the lock table.

    Creates all tables. Use --drop to reset the database, which releases
    every lock.
    """
    from distcron.persistence.db import drop_db, init_db

    config = load_config_or_exit(config_path)

    if drop_existing:
        if not typer.confirm("This will DELETE ALL LOCKS. Continue?", default=False):
            raise typer.Abort()

        console.print("[yellow]Dropping existing tables...[/yellow]")
        drop_db(config.database.url)

    console.print("Creating database schema...")
    init_db(config.database.url, echo=config.database.echo)

    console.print("[green]OK[/green] Database initialized")
