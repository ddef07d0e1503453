"""Error detection and loop checking for console output.

``CommandErrorDetector`` classifies a single command's output so a completed
command can still be reported as failed. ``OutputMonitor`` watches every line
that flows back from the console and recognizes when the same kind of error
keeps recurring.
"""

from __future__ import annotations

import re
from collections import Counter, deque
from typing import Protocol

from pydantic import BaseModel

from kosbot.constants import (
    MONITOR_LOOP_THRESHOLD,
    MONITOR_LOOP_WINDOW,
    MONITOR_SIGNATURE_MAX_LEN,
    MONITOR_WINDOW_LINES,
)


class ErrorDetector(Protocol):
    """Protocol for console error detection."""

    def detect_error(self, text: str) -> str | None:
        """Detect errors in console text.

        Args:
            text: Text to check for errors

        Returns:
            Error type identifier if detected, None otherwise
        """
        ...


class BaseErrorDetector:
    """Regex pattern registry keyed by error type."""

    def __init__(self):
        """Initialize base error detector."""
        self.error_patterns: dict[str, list[re.Pattern[str]]] = {}

    def add_error_pattern(self, error_type: str, patterns: list[str]) -> None:
        """Register error patterns for a specific error type.

        Args:
            error_type: Identifier for this error type (e.g., "signal_lost")
            patterns: Regular expressions, matched case-insensitively per line
        """
        self.error_patterns[error_type] = [re.compile(p, re.IGNORECASE) for p in patterns]

    def find_error(self, text: str) -> tuple[str, str] | None:
        """Find the first line matching a registered pattern.

        Returns:
            (error type, matching line) or None
        """
        for line in text.split("\n"):
            for error_type, patterns in self.error_patterns.items():
                if any(p.search(line) for p in patterns):
                    return error_type, line.strip()
        return None

    def detect_error(self, text: str) -> str | None:
        """Detect errors in text using registered patterns.

        Args:
            text: Text to check for errors

        Returns:
            Error type identifier if detected, None otherwise
        """
        found = self.find_error(text)
        return found[0] if found else None


class CommandErrorDetector(BaseErrorDetector):
    """Diagnostics kOS prints when a command fails."""

    def __init__(self):
        super().__init__()
        self.add_error_pattern("signal_lost", [r"Signal lost\. Waiting to re-acquire signal"])
        self.add_error_pattern("unknown_suffix", [r"Cannot find suffixed term"])
        self.add_error_pattern("program_aborted", [r"Program aborted"])
        self.add_error_pattern("syntax_error", [r"Syntax error"])
        self.add_error_pattern("invalid_operation", [r"Cannot (?:perform|do) .* on"])
        self.add_error_pattern("no_node", [r"No such node"])
        self.add_error_pattern("no_target", [r"No target"])
        self.add_error_pattern("connection", [r"Connection refused", r"Unable to connect"])


_MONITOR_PATTERNS = [
    re.compile(r"Error:", re.IGNORECASE),
    re.compile(r"Exception", re.IGNORECASE),
    re.compile(r"GET Suffix.*not found", re.IGNORECASE),
    re.compile(r"SET Suffix.*not found", re.IGNORECASE),
    re.compile(r"Tried to push Infinity", re.IGNORECASE),
    re.compile(r"null reference", re.IGNORECASE),
    re.compile(r"^kOS: "),
]
_DIGITS_RE = re.compile(r"\d+")
_SINGLE_QUOTED_RE = re.compile(r"'[^']*'")
_DOUBLE_QUOTED_RE = re.compile(r'"[^"]*"')


def is_error_line(line: str) -> bool:
    return any(p.search(line) for p in _MONITOR_PATTERNS)


def normalize_error(line: str) -> str:
    """Reduce an error line to its signature so recurring kinds compare equal."""
    signature = _DIGITS_RE.sub("N", line.strip())
    signature = _SINGLE_QUOTED_RE.sub("'X'", signature)
    signature = _DOUBLE_QUOTED_RE.sub('"X"', signature)
    return signature[:MONITOR_SIGNATURE_MAX_LEN]


class MonitorStatus(BaseModel):
    recent_lines: list[str]
    has_errors: bool
    is_looping: bool
    error_pattern: str | None
    error_count: int
    last_error: str | None


class OutputMonitor:
    """Sliding-window classifier over console output lines.

    Keeps the last 100 lines. A loop is reported when one normalized error
    signature occurs at least 5 times within the 20 most recent lines.
    """

    def __init__(
        self,
        window: int = MONITOR_WINDOW_LINES,
        loop_window: int = MONITOR_LOOP_WINDOW,
        loop_threshold: int = MONITOR_LOOP_THRESHOLD,
    ) -> None:
        self.loop_window = loop_window
        self.loop_threshold = loop_threshold
        self._lines: deque[str] = deque(maxlen=window)
        self._error_counts: Counter[str] = Counter()
        self._last_error: str | None = None

    def track_line(self, line: str) -> None:
        stripped = (line or "").strip()
        if not stripped:
            return
        self._lines.append(stripped)
        if is_error_line(stripped):
            self._error_counts[normalize_error(stripped)] += 1
            self._last_error = stripped

    def track_lines(self, lines: list[str]) -> None:
        for line in lines:
            self.track_line(line)

    def clear(self) -> None:
        """Reset state; call between independent operations."""
        self._lines.clear()
        self._error_counts.clear()
        self._last_error = None

    def detect_loop(self) -> str | None:
        """Return the looping error signature, if any."""
        recent = list(self._lines)[-self.loop_window :]
        counts = Counter(normalize_error(line) for line in recent if is_error_line(line))
        if not counts:
            return None
        pattern, count = counts.most_common(1)[0]
        return pattern if count >= self.loop_threshold else None

    @property
    def error_count(self) -> int:
        return sum(self._error_counts.values())

    def get_status(self) -> MonitorStatus:
        pattern = self.detect_loop()
        return MonitorStatus(
            recent_lines=list(self._lines)[-50:],
            has_errors=bool(self._error_counts),
            is_looping=pattern is not None,
            error_pattern=pattern,
            error_count=self.error_count,
            last_error=self._last_error,
        )

    def get_summary(self) -> str:
        pattern = self.detect_loop()
        if pattern is not None:
            return f'ERROR LOOP DETECTED: "{pattern}" ({self.error_count} total errors)'
        if self.error_count:
            return f'{self.error_count} errors detected, last: "{self._last_error}"'
        return f"No errors ({len(self._lines)} lines tracked)"
