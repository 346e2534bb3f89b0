"""
Helpers shared by CLI command modules.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from distcron.core.config import AppConfig, ConfigError, load_app_config
from distcron.core.logging import setup_logging

err_console = Console(stderr=True)

CONFIG_OPTION_HELP = "Path to app.yaml (default: configs/app.yaml)"


def load_config_or_exit(path: Path | None) -> AppConfig:
    """Load app.yaml and set up logging, exiting with code 2 on bad config."""
    try:
        config = load_app_config(path)
    except ConfigError as e:
        err_console.print(f"[red]{e}[/red]")
        if e.details:
            err_console.print(f"[dim]{e.details}[/dim]")
        raise typer.Exit(2)

    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        json_format=config.logging.json_format,
        rich_console=config.logging.rich_console,
    )
    return config
