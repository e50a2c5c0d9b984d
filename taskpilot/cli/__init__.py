"""Command-line interface for TaskPilot.

The main Typer app is exported for use as the entry point:
    taskpilot = "taskpilot.cli:app"
"""

from taskpilot.cli.app import app

__all__ = ["app"]
