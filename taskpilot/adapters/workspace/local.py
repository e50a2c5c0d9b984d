"""Local filesystem workspace.

Runs commands with subprocess and edits files under a root directory.
Every path is resolved and checked against the root before use.
"""

import logging
import os
import subprocess
import uuid
from pathlib import Path
from typing import Union

from taskpilot.adapters.workspace.base import (
    DirEntry,
    EntryType,
    ExecResult,
    PathOutsideWorkspaceError,
    WorkspaceBackend,
    WorkspaceError,
    WorkspaceFileNotFound,
)

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


class LocalWorkspace(WorkspaceBackend):
    """Workspace rooted at a local directory."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        if not self.root.is_dir():
            raise WorkspaceError(f"Workspace root is not a directory: {self.root}")

    def resolve(self, path: str) -> Path:
        """Resolve *path* inside the workspace root.

        Raises:
            PathOutsideWorkspaceError: If the path escapes the root
        """
        candidate = (self.root / path).resolve()
        try:
            candidate.relative_to(self.root)
        except ValueError:
            raise PathOutsideWorkspaceError(path) from None
        return candidate

    def exec(self, command: str, cwd: str = ".", timeout_ms: int = 60_000) -> ExecResult:
        workdir = self.resolve(cwd)
        timeout = timeout_ms / 1000

        # Activate a project virtualenv if present
        env = os.environ.copy()
        for venv_dir in (".venv", "venv"):
            venv_bin = self.root / venv_dir / "bin"
            if venv_bin.is_dir():
                env["PATH"] = str(venv_bin) + os.pathsep + env.get("PATH", "")
                env["VIRTUAL_ENV"] = str(self.root / venv_dir)
                break

        logger.debug("exec in %s: %s", workdir, command)
        try:
            proc = subprocess.run(
                command,
                shell=True,
                cwd=workdir,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as exc:
            return ExecResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=_decode(exc.stdout),
                stderr=f"Command timed out after {timeout:g} seconds",
                timed_out=True,
            )
        except OSError as exc:
            raise WorkspaceError(f"Failed to run command: {exc}") from exc

        return ExecResult(exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)

    def read_file(self, path: str) -> str:
        file_path = self.resolve(path)
        if file_path.is_dir():
            raise WorkspaceError(f"Path is a directory: {path}")
        try:
            return file_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            raise WorkspaceFileNotFound(path) from None

    def write_file(self, path: str, content: str) -> None:
        file_path = self.resolve(path)
        if file_path.is_dir():
            raise WorkspaceError(f"Path is a directory: {path}")
        file_path.parent.mkdir(parents=True, exist_ok=True)

        # Write to a sibling temp file, then rename over the target
        temp_path = file_path.with_name(f".{file_path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            temp_path.write_text(content, encoding="utf-8")
            temp_path.replace(file_path)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            raise WorkspaceError(f"Failed to write {path}: {exc}") from exc

    def list_directory(self, path: str = ".") -> list[DirEntry]:
        dir_path = self.resolve(path)
        if not dir_path.exists():
            raise WorkspaceFileNotFound(path)
        if not dir_path.is_dir():
            raise WorkspaceError(f"Not a directory: {path}")
        return [
            DirEntry(
                name=child.name,
                type=EntryType.DIR if child.is_dir() else EntryType.FILE,
            )
            for child in sorted(dir_path.iterdir(), key=lambda p: p.name)
        ]

    def file_exists(self, path: str) -> bool:
        return self.resolve(path).is_file()


def _decode(output) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output
