"""Workspace adapter package.

Usage:
    from taskpilot.adapters.workspace import LocalWorkspace

    workspace = LocalWorkspace("/path/to/project")
    result = workspace.exec("ls -la")
"""

from taskpilot.adapters.workspace.base import (
    DEFAULT_IGNORE_PATTERNS,
    DirEntry,
    EntryType,
    ExecResult,
    PathOutsideWorkspaceError,
    WorkspaceBackend,
    WorkspaceError,
    WorkspaceFileNotFound,
    should_ignore,
)
from taskpilot.adapters.workspace.local import LocalWorkspace
from taskpilot.adapters.workspace.memory import InMemoryWorkspace

__all__ = [
    "DEFAULT_IGNORE_PATTERNS",
    "DirEntry",
    "EntryType",
    "ExecResult",
    "PathOutsideWorkspaceError",
    "WorkspaceBackend",
    "WorkspaceError",
    "WorkspaceFileNotFound",
    "should_ignore",
    "LocalWorkspace",
    "InMemoryWorkspace",
]
