"""Tests for CLI context commands."""

import json

from typer.testing import CliRunner

from taskpilot.cli.context_commands import context_app
from taskpilot.core.context import CONTEXT_PATH

runner = CliRunner()


class TestContextSetCommand:
    """Tests for 'taskpilot context set'."""

    def test_set_context(self, tmp_path):
        result = runner.invoke(
            context_app,
            ["set", "shop", "-d", "Online store with cart", "-t", "django", "-w", str(tmp_path)],
        )

        assert result.exit_code == 0, result.output
        assert "Saved project context" in result.output
        assert "e-commerce" in result.output
        stored = json.loads((tmp_path / CONTEXT_PATH).read_text())
        assert stored["name"] == "shop"
        assert stored["technology"] == "django"
        assert stored["features"] == ["cart"]

    def test_set_replaces_existing(self, tmp_path):
        runner.invoke(context_app, ["set", "old", "-w", str(tmp_path)])
        runner.invoke(context_app, ["set", "new", "-w", str(tmp_path)])

        stored = json.loads((tmp_path / CONTEXT_PATH).read_text())
        assert stored["name"] == "new"

    def test_missing_workspace(self, tmp_path):
        result = runner.invoke(context_app, ["set", "x", "-w", str(tmp_path / "nope")])

        assert result.exit_code == 1


class TestContextShowCommand:
    """Tests for 'taskpilot context show'."""

    def test_show_text(self, tmp_path):
        runner.invoke(context_app, ["set", "blog", "-d", "Personal blog", "-w", str(tmp_path)])

        result = runner.invoke(context_app, ["show", "-w", str(tmp_path)])

        assert result.exit_code == 0
        assert "blog" in result.output
        assert "Personal blog" in result.output

    def test_show_json(self, tmp_path):
        runner.invoke(context_app, ["set", "blog", "-w", str(tmp_path)])

        result = runner.invoke(context_app, ["show", "-w", str(tmp_path), "--format", "json"])

        assert result.exit_code == 0
        assert json.loads(result.output)["name"] == "blog"

    def test_show_without_context(self, tmp_path):
        result = runner.invoke(context_app, ["show", "-w", str(tmp_path)])

        assert result.exit_code == 1
        assert "No project context" in result.output
