"""In-memory workspace for testing.

Holds files in a dict and answers commands from a script, so agent runs
can be exercised without touching the filesystem or spawning processes.
"""

import posixpath
from typing import Callable, Optional

from taskpilot.adapters.workspace.base import (
    DirEntry,
    EntryType,
    ExecResult,
    PathOutsideWorkspaceError,
    WorkspaceBackend,
    WorkspaceError,
    WorkspaceFileNotFound,
)

CommandHandler = Callable[[str, str, int], ExecResult]


class InMemoryWorkspace(WorkspaceBackend):
    """Dict-backed workspace.

    Commands are answered from ``commands`` (exact match) or by
    ``command_handler``; anything else succeeds with empty output.
    All calls are recorded for assertions.
    """

    def __init__(
        self,
        files: Optional[dict[str, str]] = None,
        commands: Optional[dict[str, ExecResult]] = None,
        command_handler: Optional[CommandHandler] = None,
    ):
        self.files: dict[str, str] = {}
        self.commands = dict(commands or {})
        self.command_handler = command_handler
        self.exec_calls: list[tuple[str, str, int]] = []
        self.writes: list[str] = []
        for path, content in (files or {}).items():
            self.files[self._normalize(path)] = content

    def _normalize(self, path: str) -> str:
        normalized = posixpath.normpath(path.replace("\\", "/")).lstrip("/")
        if normalized == ".." or normalized.startswith("../"):
            raise PathOutsideWorkspaceError(path)
        return "" if normalized == "." else normalized

    def _is_dir(self, path: str) -> bool:
        if path == "":
            return True
        prefix = path + "/"
        return any(name.startswith(prefix) for name in self.files)

    def exec(self, command: str, cwd: str = ".", timeout_ms: int = 60_000) -> ExecResult:
        self.exec_calls.append((command, cwd, timeout_ms))
        if command in self.commands:
            return self.commands[command]
        if self.command_handler is not None:
            return self.command_handler(command, cwd, timeout_ms)
        return ExecResult(exit_code=0)

    def read_file(self, path: str) -> str:
        key = self._normalize(path)
        if key in self.files:
            return self.files[key]
        if self._is_dir(key):
            raise WorkspaceError(f"Path is a directory: {path}")
        raise WorkspaceFileNotFound(path)

    def write_file(self, path: str, content: str) -> None:
        key = self._normalize(path)
        if key == "" or self._is_dir(key):
            raise WorkspaceError(f"Path is a directory: {path}")
        self.files[key] = content
        self.writes.append(key)

    def list_directory(self, path: str = ".") -> list[DirEntry]:
        key = self._normalize(path)
        if key in self.files:
            raise WorkspaceError(f"Not a directory: {path}")
        if not self._is_dir(key):
            raise WorkspaceFileNotFound(path)

        prefix = f"{key}/" if key else ""
        entries: dict[str, EntryType] = {}
        for name in self.files:
            if not name.startswith(prefix):
                continue
            head, sep, _ = name[len(prefix):].partition("/")
            entries[head] = EntryType.DIR if sep else EntryType.FILE
        return [DirEntry(name=n, type=t) for n, t in sorted(entries.items())]

    def file_exists(self, path: str) -> bool:
        return self._normalize(path) in self.files
