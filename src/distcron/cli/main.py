"""
distcron CLI - Main entry point.

Operator tooling for the shared lock table: initialize the store, inspect
which cron jobs currently hold their locks, and free a stuck one.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.traceback import install as install_rich_traceback

from distcron import __app_name__, __version__

# Load environment variables from .env (if present)
load_dotenv()

# Install rich traceback for better error display
install_rich_traceback(show_locals=False, width=120)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name=__app_name__,
    help="Lock-guarded periodic jobs for replicated services",
    rich_markup_mode="rich",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]{__app_name__}[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """distcron - Run each cron job on exactly one replica per period."""
    pass


# =============================================================================
# Import and register subcommand modules
# =============================================================================

from .commands import db, locks  # noqa: E402
from .commands.common import load_config_or_exit  # noqa: E402

app.add_typer(db.app, name="db", help="Database operations")
app.add_typer(locks.app, name="locks", help="Inspect and release distributed locks")


# =============================================================================
# Init Command
# =============================================================================


@app.command()
def init(
    config_path: Path = typer.Option(
        Path("configs/app.yaml"),
        "--config",
        "-c",
        help="Where to write the configuration file",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration",
    ),
) -> None:
    """Write a default configuration and create the lock table."""
    from distcron.core.config.loader import render_default_app_config
    from distcron.persistence.db import init_db

    if not config_path.exists() or force:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(render_default_app_config(), encoding="utf-8")
        wrote = True
    else:
        wrote = False

    config = load_config_or_exit(config_path)
    init_db(config.database.url, echo=config.database.echo)

    lines = ["[bold green]OK - distcron initialized[/bold green]\n"]
    if wrote:
        lines.append(f"Wrote [cyan]{config_path}[/cyan]")
    else:
        lines.append(f"Kept existing [cyan]{config_path}[/cyan] (use --force to overwrite)")
    lines.append(f"Lock table ready in [cyan]{config.database.url}[/cyan]")
    lines.append(f"Environment: [yellow]{config.environment}[/yellow]")

    console.print(Panel.fit(
        "\n".join(lines),
        title="[bold]Initialization Complete[/bold]",
        border_style="green",
    ))


# =============================================================================
# Entry Point
# =============================================================================


def run() -> None:
    """Run the CLI application."""
    app()


if __name__ == "__main__":
    run()
