"""Unit tests for taskpilot/core/error_tracker.py."""

import pytest

from taskpilot.adapters.llm.base import ToolResult
from taskpilot.core.error_tracker import (
    PIVOT_DIRECTIVE,
    ErrorTracker,
    RepeatedCallTracker,
    call_signature,
    normalize_error,
)


def _error(content: str) -> ToolResult:
    return ToolResult(tool_call_id="c", content=content, is_error=True)


def _ok() -> ToolResult:
    return ToolResult(tool_call_id="c", content="fine")


class TestNormalizeError:
    """Tests for error message normalization."""

    def test_empty(self):
        assert normalize_error("") == ""

    def test_strips_prefix_and_lowercases(self):
        assert normalize_error("Error: File Not Found: a.txt") == "file not found: a.txt"

    def test_line_numbers(self):
        a = normalize_error('File "x.py", line 12, in main')
        b = normalize_error('File "x.py", line 40, in main')
        assert a == b

    def test_temp_paths(self):
        a = normalize_error("cannot open /tmp/pytest-1/abc/out.log")
        b = normalize_error("cannot open /tmp/pytest-7/xyz/out.log")
        assert a == b

    def test_addresses_and_durations(self):
        a = normalize_error("object at 0x7f00aa failed after 1.5s")
        b = normalize_error("object at 0x7f99bb failed after 30 seconds")
        assert a == b

    def test_timestamps(self):
        a = normalize_error("2024-01-01T10:00:00 crash")
        b = normalize_error("2025-06-30 23:59:59.123 crash")
        assert a == b

    def test_whitespace_collapsed(self):
        assert normalize_error("a   b\n\tc") == "a b c"

    def test_different_errors_stay_different(self):
        assert normalize_error("File not found: a.txt") != normalize_error("File not found: b.txt")

    def test_length_capped(self):
        assert len(normalize_error("x" * 2000)) == 500


class TestErrorTracker:
    """Tests for the same-error streak counter."""

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValueError):
            ErrorTracker(threshold=0)

    def test_success_resets(self):
        obs = ErrorTracker().observe("sig", 2, _ok())
        assert obs.signature is None
        assert obs.same_error_count == 0
        assert obs.directive is None

    def test_first_error_starts_streak(self):
        obs = ErrorTracker().observe(None, 0, _error("Error: boom"))
        assert obs.signature == "boom"
        assert obs.same_error_count == 1
        assert obs.directive is None

    def test_different_error_restarts_streak(self):
        obs = ErrorTracker().observe("boom", 2, _error("Error: bang"))
        assert obs.same_error_count == 1

    def test_directive_at_threshold_then_reset(self):
        tracker = ErrorTracker(threshold=3)
        signature, count = None, 0
        directives = []
        for _ in range(6):
            obs = tracker.observe(signature, count, _error("Error: boom"))
            signature, count = obs.signature, obs.same_error_count
            directives.append(obs.directive)

        expected = PIVOT_DIRECTIVE.format(count=3)
        assert directives == [None, None, expected, None, None, expected]
        assert count == 0

    def test_directive_text(self):
        assert PIVOT_DIRECTIVE.format(count=3) == "Same error 3 times. Try a different approach."

    def test_threshold_one(self):
        obs = ErrorTracker(threshold=1).observe(None, 0, _error("Error: x"))
        assert obs.directive is not None
        assert obs.same_error_count == 0


class TestRepeatedCallTracker:
    def test_signature_ignores_key_order(self):
        assert call_signature("t", {"a": 1, "b": 2}) == call_signature("t", {"b": 2, "a": 1})

    def test_directive_after_identical_calls(self):
        tracker = RepeatedCallTracker(threshold=2)
        first = tracker.observe(None, 0, "read_file", {"path": "a"})
        second = tracker.observe(first.signature, first.same_call_count, "read_file", {"path": "a"})
        assert first.directive is None
        assert "read_file" in second.directive
        assert second.same_call_count == 0

    def test_different_input_restarts(self):
        tracker = RepeatedCallTracker(threshold=2)
        first = tracker.observe(None, 0, "read_file", {"path": "a"})
        second = tracker.observe(first.signature, first.same_call_count, "read_file", {"path": "b"})
        assert second.directive is None
        assert second.same_call_count == 1
