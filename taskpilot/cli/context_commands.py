"""CLI context commands.

This module provides commands for project context management:
- set: Create or replace the project context
- show: Display the stored project context

Usage:
    taskpilot context set my-app --description "Online store" --technology python
    taskpilot context show
"""

import json
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from taskpilot.adapters.workspace import WorkspaceError
from taskpilot.cli.helpers import console, open_workspace
from taskpilot.core.context import (
    CONTEXT_PATH,
    build_project_context,
    load_project_context,
    save_project_context,
)

context_app = typer.Typer(
    name="context",
    help="Project context management",
    no_args_is_help=True,
)


@context_app.command("set")
def context_set(
    name: str = typer.Argument(..., help="Project name"),
    description: str = typer.Option("", "--description", "-d", help="What the project is"),
    technology: Optional[str] = typer.Option(None, "--technology", "-t", help="Main technology"),
    workspace_path: Optional[Path] = typer.Option(
        None, "--workspace", "-w", help="Workspace directory (defaults to current directory)"
    ),
):
    """Create or replace the project context.

    Industry and features are derived from the description.

    Example:

        taskpilot context set shop --description "E-commerce site with payments"
    """
    workspace = open_workspace(workspace_path)
    context = build_project_context(name, description, technology)
    try:
        save_project_context(workspace, context)
    except WorkspaceError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"✓ Saved project context to [bold]{CONTEXT_PATH}[/bold]")
    console.print(f"  Industry: {context.industry}")
    if context.features:
        console.print(f"  Features: {', '.join(context.features)}")


@context_app.command("show")
def context_show(
    workspace_path: Optional[Path] = typer.Option(
        None, "--workspace", "-w", help="Workspace directory (defaults to current directory)"
    ),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
):
    """Display the stored project context.

    Example:

        taskpilot context show --format json
    """
    workspace = open_workspace(workspace_path)
    context = load_project_context(workspace)
    if context is None:
        console.print("[yellow]No project context.[/yellow] Run 'taskpilot context set <name>'")
        raise typer.Exit(1)

    if format == "json":
        console.print_json(
            json.dumps(context.model_dump(mode="json", by_alias=True, exclude_none=True))
        )
        return

    table = Table(title="Project Context", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Name", context.name)
    table.add_row("Description", context.description or "-")
    table.add_row("Technology", context.technology or "-")
    table.add_row("Industry", context.industry or "-")
    table.add_row("Features", ", ".join(context.features) or "-")
    console.print(table)
