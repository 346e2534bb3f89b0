"""
Distributed lock commands.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from distcron.core.config import LockBackend
from distcron.core.scheduler.locks import Locker, LockInfo, create_locker

from .common import CONFIG_OPTION_HELP, load_config_or_exit

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Inspect and release distributed locks",
    no_args_is_help=True,
)

ConfigOption = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP)


def _open_locker(config_path: Path | None) -> Locker:
    config = load_config_or_exit(config_path)
    if config.locks.backend is LockBackend.MEMORY:
        err_console.print("[red]The memory lock backend is local to one process; nothing to inspect.[/red]")
        raise typer.Exit(2)
    return create_locker(config)


def _format_expiry(expiry_millis: int) -> str:
    if expiry_millis <= 0:
        return "[dim]released[/dim]"
    expires = datetime.fromtimestamp(expiry_millis / 1000, tz=timezone.utc)
    return expires.strftime("%Y-%m-%d %H:%M:%S UTC")


def _status_label(info: LockInfo, now_millis: int) -> str:
    return "[red]HELD[/red]" if info.is_held(now_millis) else "[green]FREE[/green]"


@app.command("list")
def list_locks(config_path: Path | None = ConfigOption) -> None:
    """List every lock record in the store."""
    locker = _open_locker(config_path)

    try:
        records = locker.list_locks()
    except SQLAlchemyError as e:
        err_console.print(f"[red]Cannot read locks:[/red] {e}")
        err_console.print("Create the table with: [yellow]distcron db init[/yellow]")
        raise typer.Exit(1)

    if not records:
        console.print("[dim]No locks recorded yet.[/dim]")
        return

    now = locker.clock.millis()

    table = Table(title="Distributed Locks", show_header=True, header_style="bold magenta")
    table.add_column("Key", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Expires")
    table.add_column("Last Write")

    for info in records:
        table.add_row(
            info.key,
            _status_label(info, now),
            _format_expiry(info.expiry_epoch_millis),
            info.created_at,
        )

    console.print(table)


@app.command("status")
def lock_status(
    key: str = typer.Argument(..., help="Lock key, e.g. LOCK_nightly-report"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Show one lock. Exits with 1 while the lock is held."""
    locker = _open_locker(config_path)

    try:
        info = locker.get_lock(key)
    except SQLAlchemyError as e:
        err_console.print(f"[red]Cannot read lock:[/red] {e}")
        raise typer.Exit(1)

    scoped = locker.scoped_key(key)
    if info is None:
        console.print(f"[green]FREE[/green] {scoped} [dim](never acquired)[/dim]")
        return

    now = locker.clock.millis()
    console.print(f"{_status_label(info, now)} {scoped}")
    console.print(f"[dim]Expires:[/dim] {_format_expiry(info.expiry_epoch_millis)}")
    console.print(f"[dim]Last write:[/dim] {info.created_at}")

    if info.is_held(now):
        raise typer.Exit(1)


@app.command("acquire")
def acquire_lock(
    key: str = typer.Argument(..., help="Lock key"),
    ttl: int = typer.Option(
        600,
        "--ttl",
        "-t",
        min=1,
        help="Expiry in seconds",
    ),
    config_path: Path | None = ConfigOption,
) -> None:
    """Try once to acquire a lock. Exits with 1 if it is held elsewhere."""
    locker = _open_locker(config_path)
    scoped = locker.scoped_key(key)

    if locker.try_lock(key, ttl):
        console.print(f"[green]OK[/green] Acquired {scoped} for {ttl} seconds")
        return

    err_console.print(f"[red]x[/red] Could not acquire {scoped}")
    raise typer.Exit(1)


@app.command("release")
def release_lock(
    key: str = typer.Argument(..., help="Lock key"),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Skip confirmation",
    ),
    config_path: Path | None = ConfigOption,
) -> None:
    """Release a lock regardless of who holds it."""
    locker = _open_locker(config_path)
    scoped = locker.scoped_key(key)

    if not force and not typer.confirm(
        f"Release '{scoped}'? A job still running under it may overlap with the next run."
    ):
        raise typer.Abort()

    locker.unlock(key)
    console.print(f"[yellow]>[/yellow] Released {scoped}")
