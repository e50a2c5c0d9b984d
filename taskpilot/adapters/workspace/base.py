"""Workspace collaborator contract.

The agent never touches files or processes directly: every observable side
effect goes through a WorkspaceBackend. Implementations decide where the
workspace lives (local directory, container, in-memory fake).
"""

import fnmatch
import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Iterator

# Directories and files skipped by recursive walks (search tools)
DEFAULT_IGNORE_PATTERNS = [
    ".git",
    "node_modules",
    "__pycache__",
    ".venv",
    "venv",
    ".pytest_cache",
    ".mypy_cache",
    "dist",
    "build",
    ".taskpilot",
    "*.pyc",
]


class WorkspaceError(Exception):
    """Raised when a workspace operation fails."""


class WorkspaceFileNotFound(WorkspaceError):
    """Raised when a path does not exist in the workspace."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File not found: {path}")


class PathOutsideWorkspaceError(WorkspaceError):
    """Raised when a path resolves outside the workspace root."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Path escapes workspace: {path}")


class EntryType(str, Enum):
    FILE = "file"
    DIR = "dir"


@dataclass
class DirEntry:
    name: str
    type: EntryType

    @property
    def is_dir(self) -> bool:
        return self.type == EntryType.DIR


@dataclass
class ExecResult:
    """Outcome of a shell command.

    Attributes:
        exit_code: Process exit status (124 when the command timed out)
        stdout: Captured standard output
        stderr: Captured standard error
        timed_out: Whether the command was killed by its timeout
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


def should_ignore(rel_path: str) -> bool:
    """Return True if *rel_path* matches any default ignore pattern."""
    name = posixpath.basename(rel_path.rstrip("/"))
    return any(
        fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(name, pattern)
        for pattern in DEFAULT_IGNORE_PATTERNS
    )


class WorkspaceBackend(ABC):
    """Abstract workspace: shell execution plus file access.

    Paths are relative to the workspace root and use forward slashes.
    """

    @abstractmethod
    def exec(self, command: str, cwd: str = ".", timeout_ms: int = 60_000) -> ExecResult:
        """Run a shell command; never raises for a non-zero exit."""

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Return file content.

        Raises:
            WorkspaceFileNotFound: If the file does not exist
        """

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write file content atomically, creating parent directories."""

    @abstractmethod
    def list_directory(self, path: str = ".") -> list[DirEntry]:
        """List the entries of a directory.

        Raises:
            WorkspaceFileNotFound: If the directory does not exist
        """

    def file_exists(self, path: str) -> bool:
        """Check whether a file exists.

        The default implementation calls read_file(); backends with a
        cheaper check should override it.
        """
        try:
            self.read_file(path)
        except WorkspaceFileNotFound:
            return False
        return True

    def walk(self, path: str = ".") -> Iterator[str]:
        """Yield relative paths of all files below *path*, skipping ignored entries."""
        pending = [path]
        while pending:
            current = pending.pop(0)
            for entry in self.list_directory(current):
                rel = entry.name if current in (".", "") else f"{current}/{entry.name}"
                if should_ignore(rel):
                    continue
                if entry.is_dir:
                    pending.append(rel)
                else:
                    yield rel
