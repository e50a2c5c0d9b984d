"""Same-error detection for tool results.

Keeps the model from retrying an identical failing action forever. After
a streak of identical tool errors a single directive is injected telling
the model to change approach, then the streak counter starts over.

This module is headless and pure: the loop owns the RunState and applies
the returned observation.
"""

import json
import re
from dataclasses import dataclass
from typing import Optional

from taskpilot.adapters.llm.base import ToolResult

DEFAULT_SAME_ERROR_THRESHOLD = 3
PIVOT_DIRECTIVE = "Same error {count} times. Try a different approach."
ERROR_PREFIX = "Error: "

_MAX_SIGNATURE_LENGTH = 500


@dataclass(frozen=True)
class ErrorObservation:
    """New error-tracking state after one tool result.

    Attributes:
        signature: Normalized message of the latest error (None after success)
        same_error_count: Consecutive identical errors, 0 after a pivot
        directive: Pivot message to inject, if the threshold was reached
    """

    signature: Optional[str]
    same_error_count: int
    directive: Optional[str] = None


def normalize_error(message: str) -> str:
    """Normalize an error message for comparison.

    Removes the error prefix and variable parts like line numbers,
    absolute paths, memory addresses, timestamps and durations.
    """
    if not message:
        return ""

    normalized = message
    if normalized.startswith(ERROR_PREFIX):
        normalized = normalized[len(ERROR_PREFIX):]
    normalized = normalized.lower()

    normalized = re.sub(r"\bline\s+\d+\b", "line N", normalized)
    normalized = re.sub(
        r"\d{4}-\d{2}-\d{2}[t\s]\d{2}:\d{2}:\d{2}(\.\d+)?", "TIMESTAMP", normalized
    )
    normalized = re.sub(r":\d+:", ":N:", normalized)
    normalized = re.sub(r"(/tmp|/var/folders)/[^\s'\"]+", "TMPPATH", normalized)
    normalized = re.sub(r"0x[0-9a-f]+", "0xADDR", normalized)
    normalized = re.sub(r"\b\d+(\.\d+)?\s*(ms|s|seconds)\b", "N s", normalized)
    normalized = re.sub(r"\s+", " ", normalized).strip()

    return normalized[:_MAX_SIGNATURE_LENGTH]


class ErrorTracker:
    """Counts consecutive identical tool errors.

    Usage:
        tracker = ErrorTracker(threshold=3)
        obs = tracker.observe(state.last_error_signature, state.same_error_count, result)
        state.last_error_signature = obs.signature
        state.same_error_count = obs.same_error_count
        if obs.directive:
            history.append(Message.user(obs.directive))
    """

    def __init__(self, threshold: int = DEFAULT_SAME_ERROR_THRESHOLD):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.threshold = threshold

    def observe(
        self,
        signature: Optional[str],
        count: int,
        result: ToolResult,
    ) -> ErrorObservation:
        """Compute the tracking state that follows *result*.

        Args:
            signature: Current last_error_signature
            count: Current same_error_count
            result: Tool result just produced

        Returns:
            ErrorObservation with the new signature, count and optional directive
        """
        if not result.is_error:
            return ErrorObservation(signature=None, same_error_count=0)

        new_signature = normalize_error(result.content)
        if new_signature == signature:
            count += 1
        else:
            count = 1

        if count >= self.threshold:
            return ErrorObservation(
                signature=new_signature,
                same_error_count=0,
                directive=PIVOT_DIRECTIVE.format(count=count),
            )
        return ErrorObservation(signature=new_signature, same_error_count=count)


# ---------------------------------------------------------------------------
# Repeated identical calls
# ---------------------------------------------------------------------------

REPEATED_CALL_DIRECTIVE = (
    'You have called "{tool}" with the same parameters {count} times in a row. '
    "Do not repeat it; use different parameters or a different tool."
)


@dataclass(frozen=True)
class CallObservation:
    signature: Optional[str]
    same_call_count: int
    directive: Optional[str] = None


def call_signature(name: str, tool_input: dict) -> str:
    """Stable signature of a tool call (name plus canonical JSON input)."""
    return name + ":" + json.dumps(tool_input, sort_keys=True, default=str)


class RepeatedCallTracker:
    """Counts consecutive identical tool calls, successful or not.

    Catches loops that ErrorTracker cannot see, such as re-reading the same
    file over and over.
    """

    def __init__(self, threshold: int = DEFAULT_SAME_ERROR_THRESHOLD):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.threshold = threshold

    def observe(
        self, signature: Optional[str], count: int, name: str, tool_input: dict
    ) -> CallObservation:
        new_signature = call_signature(name, tool_input)
        count = count + 1 if new_signature == signature else 1
        if count >= self.threshold:
            return CallObservation(
                signature=new_signature,
                same_call_count=0,
                directive=REPEATED_CALL_DIRECTIVE.format(tool=name, count=count),
            )
        return CallObservation(signature=new_signature, same_call_count=count)
