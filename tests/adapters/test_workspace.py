"""Tests for workspace backends."""

import pytest

from taskpilot.adapters.workspace import (
    EntryType,
    ExecResult,
    InMemoryWorkspace,
    LocalWorkspace,
    PathOutsideWorkspaceError,
    WorkspaceError,
    WorkspaceFileNotFound,
    should_ignore,
)


class TestLocalWorkspace:
    """Tests for LocalWorkspace against a temp directory."""

    @pytest.fixture
    def workspace(self, project_dir):
        return LocalWorkspace(project_dir)

    def test_root_must_exist(self, tmp_path):
        with pytest.raises(WorkspaceError):
            LocalWorkspace(tmp_path / "missing")

    def test_read_file(self, workspace):
        assert workspace.read_file("src/main.py").startswith("def hello")

    def test_read_missing(self, workspace):
        with pytest.raises(WorkspaceFileNotFound):
            workspace.read_file("nope.txt")

    def test_read_directory(self, workspace):
        with pytest.raises(WorkspaceError, match="directory"):
            workspace.read_file("src")

    def test_write_creates_parents(self, workspace, project_dir):
        workspace.write_file("a/b/c.txt", "deep")
        assert (project_dir / "a" / "b" / "c.txt").read_text() == "deep"
        assert not list((project_dir / "a" / "b").glob("*.tmp"))

    def test_path_escape(self, workspace):
        with pytest.raises(PathOutsideWorkspaceError):
            workspace.read_file("../outside.txt")
        with pytest.raises(PathOutsideWorkspaceError):
            workspace.write_file("/etc/passwd", "x")

    def test_list_directory(self, workspace):
        entries = workspace.list_directory()
        assert [(e.name, e.type) for e in entries] == [
            ("README.md", EntryType.FILE),
            ("src", EntryType.DIR),
        ]

    def test_list_missing_directory(self, workspace):
        with pytest.raises(WorkspaceFileNotFound):
            workspace.list_directory("nope")

    def test_file_exists(self, workspace):
        assert workspace.file_exists("README.md")
        assert not workspace.file_exists("src")

    def test_walk_skips_ignored(self, workspace, project_dir):
        (project_dir / "node_modules").mkdir()
        (project_dir / "node_modules" / "x.js").write_text("")
        assert sorted(workspace.walk()) == ["README.md", "src/main.py"]

    def test_exec(self, workspace):
        result = workspace.exec("echo hello")
        assert result.ok
        assert result.stdout.strip() == "hello"

    def test_exec_failure(self, workspace):
        result = workspace.exec("exit 3")
        assert result.exit_code == 3
        assert not result.ok

    def test_exec_timeout(self, workspace):
        result = workspace.exec("sleep 5", timeout_ms=200)
        assert result.timed_out
        assert result.exit_code == 124
        assert not result.ok

    def test_exec_cwd(self, workspace):
        result = workspace.exec("ls", cwd="src")
        assert "main.py" in result.stdout


class TestInMemoryWorkspace:
    def test_scripted_commands(self):
        workspace = InMemoryWorkspace(commands={"make": ExecResult(exit_code=2, stderr="boom")})
        assert workspace.exec("make").exit_code == 2
        assert workspace.exec("other").ok
        assert [c[0] for c in workspace.exec_calls] == ["make", "other"]

    def test_command_handler(self):
        workspace = InMemoryWorkspace(
            command_handler=lambda command, cwd, timeout_ms: ExecResult(exit_code=0, stdout=command)
        )
        assert workspace.exec("echo x").stdout == "echo x"

    def test_directories_are_implicit(self):
        workspace = InMemoryWorkspace(files={"src/a/b.py": "", "top.txt": ""})
        assert [e.name for e in workspace.list_directory()] == ["src", "top.txt"]
        assert workspace.list_directory("src")[0].is_dir
        with pytest.raises(WorkspaceError):
            workspace.read_file("src")

    def test_path_escape(self):
        with pytest.raises(PathOutsideWorkspaceError):
            InMemoryWorkspace().read_file("../x")

    def test_writes_recorded(self):
        workspace = InMemoryWorkspace()
        workspace.write_file("./a.txt", "1")
        assert workspace.writes == ["a.txt"]
        assert workspace.file_exists("a.txt")


@pytest.mark.parametrize(
    "path,ignored",
    [
        (".git", True),
        ("node_modules", True),
        ("src/__pycache__", True),
        ("pkg/mod.pyc", True),
        ("src/main.py", False),
        ("docs", False),
    ],
)
def test_should_ignore(path, ignored):
    assert should_ignore(path) is ignored
