"""Shared CLI helper utilities.

This module provides common utilities used across CLI command modules:
- open_workspace: Resolve a workspace directory or exit
- configure_logging: Root logging setup from settings
- console: Shared Rich Console instance

Usage:
    from taskpilot.cli.helpers import console, open_workspace
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from taskpilot.adapters.workspace import LocalWorkspace

# Shared console instance for all CLI modules
console = Console()

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def open_workspace(path: Optional[Path]) -> LocalWorkspace:
    """Open the workspace at *path* (default: current directory).

    Raises:
        typer.Exit: If the path is not an existing directory (exit code 1)
    """
    root = (path or Path.cwd()).resolve()
    if not root.is_dir():
        console.print(f"[red]Error:[/red] Workspace not found: {root}")
        raise typer.Exit(1)
    return LocalWorkspace(root)


def configure_logging(level: str, verbose: bool = False) -> None:
    """Configure root logging; --verbose forces DEBUG."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        force=True,
    )
