# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Text normalization for the kOS telnet console.

kOS drives its terminal with characters from the Unicode private-use area
rather than ANSI sequences. Only the subset the console actually emits is
handled here; everything else in the private-use range is dropped.
"""

from __future__ import annotations

import re

_ANSI_ESCAPE_RE = re.compile(r"\x1b(?:\[[0-?]*[ -/]*[@-~]|[@-_])")
# Control characters other than newline and tab.
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")

# kOS private-use screen commands
PUA_START = 0xE000
PUA_END = 0xF8FF
TELNET_MOVE_TO = 0xE006  # followed by column and row characters
TELNET_RESIZE = 0xE016  # followed by width and height characters
TELNET_TITLE_BEGIN = 0xE004
TELNET_TITLE_END = 0xE005
TELNET_LINE_BREAKS = frozenset({0xE011, 0xE012, 0xE013})

_NOISE_RE = re.compile(r"^(?:detaching|connecting to cpu|choose a cpu|selecting cpu)", re.IGNORECASE)
_PROMPT_ONLY_RE = re.compile(r"^\s*>\s*$")


def strip_kos_control(text: str) -> str:
    """Remove kOS private-use screen commands from console text.

    Cursor positioning and resize commands swallow their two parameter
    characters, a title sequence is dropped up to its terminator, and the
    line-break commands become ``\\n``.
    """
    if not text:
        return ""
    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        code = ord(text[i])
        if not PUA_START <= code <= PUA_END:
            out.append(text[i])
            i += 1
            continue
        if code in (TELNET_MOVE_TO, TELNET_RESIZE):
            i += 3
        elif code == TELNET_TITLE_BEGIN:
            end = text.find(chr(TELNET_TITLE_END), i + 1)
            i = n if end == -1 else end + 1
        elif code in TELNET_LINE_BREAKS:
            out.append("\n")
            i += 1
        else:
            i += 1
    return "".join(out)


def normalize_terminal_text(text: str) -> str:
    """Normalize console text for robust matching.

    - Removes kOS private-use commands and ANSI escape sequences.
    - Normalizes line endings to ``\\n``.
    - Drops remaining control characters.
    """
    if not text:
        return ""
    cleaned = strip_kos_control(text)
    cleaned = _ANSI_ESCAPE_RE.sub("", cleaned)
    cleaned = cleaned.replace("\r\n", "\n").replace("\r", "\n")
    cleaned = _CONTROL_RE.sub("", cleaned)
    return cleaned


def split_lines(text: str) -> list[str]:
    """Split normalized text into non-empty, right-stripped lines."""
    return [line.rstrip() for line in text.split("\n") if line.strip()]


def clean_output(text: str, echo_prefixes: tuple[str, ...] = ()) -> str:
    """Reduce raw command output to what the command printed.

    Args:
        text: Output text (raw or already normalized)
        echo_prefixes: Lines starting with any of these are treated as echo

    Returns:
        Output with prompt, noise and echo lines removed, trimmed
    """
    kept: list[str] = []
    for line in normalize_terminal_text(text).split("\n"):
        stripped = line.strip()
        if not stripped or _PROMPT_ONLY_RE.match(stripped):
            continue
        if _NOISE_RE.match(stripped):
            continue
        if any(prefix and stripped.startswith(prefix) for prefix in echo_prefixes):
            continue
        kept.append(line.rstrip())
    return "\n".join(kept).strip()
