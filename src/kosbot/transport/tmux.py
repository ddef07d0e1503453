# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""tmux-backed transport for debugging console sessions by eye.

The console runs inside a detached tmux session (``telnet host port`` by
default) so a developer can ``tmux attach`` and watch the exchange live.
Reads capture the pane and hand out only what changed since the last capture.
"""

from __future__ import annotations

import asyncio
import shlex
import shutil

import structlog

from kosbot.constants import DEFAULT_HOST, DEFAULT_PORT
from kosbot.errors import TransportError
from kosbot.transport.base import ConnectionTransport

log = structlog.get_logger()

DEFAULT_HISTORY_LINES = 2000
DEFAULT_TMUX_POLL_S = 0.2


def pane_delta(previous: str, current: str) -> str:
    """Return the part of ``current`` that was not in ``previous``.

    When the pane scrolled so ``previous`` is no longer a prefix, the longest
    tail of ``previous`` that starts ``current`` is used as the anchor.
    """
    if not previous:
        return current
    if current.startswith(previous):
        return current[len(previous) :]
    prev_lines = previous.split("\n")
    cur_lines = current.split("\n")
    for start in range(1, len(prev_lines)):
        tail = prev_lines[start:]
        if cur_lines[: len(tail)] == tail:
            return "\n".join(cur_lines[len(tail) :])
    return current


class TmuxTransport(ConnectionTransport):
    """Transport that drives a console through a tmux pane."""

    poll_interval_s = DEFAULT_TMUX_POLL_S

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        session_name: str = "kosbot",
        command: str | None = None,
        history_lines: int = DEFAULT_HISTORY_LINES,
    ) -> None:
        """Initialize tmux transport.

        Args:
            host: Console hostname
            port: Console port
            session_name: tmux session to create
            command: Shell command run in the pane (defaults to telnet)
            history_lines: Scrollback lines captured on each read
        """
        self.host = host
        self.port = port
        self.session_name = session_name
        self.command = command or f"telnet {shlex.quote(host)} {int(port)}"
        self.history_lines = history_lines
        self._open = False
        self._last_capture = ""

    async def _tmux(self, *args: str, check: bool = True) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                "tmux",
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransportError(f"tmux unavailable: {e}") from e
        stdout, stderr = await proc.communicate()
        if check and proc.returncode != 0:
            raise TransportError(f"tmux {args[0]} failed: {stderr.decode('utf-8', errors='replace').strip()}")
        return stdout.decode("utf-8", errors="replace")

    async def _session_exists(self) -> bool:
        proc = await asyncio.create_subprocess_exec(
            "tmux",
            "has-session",
            "-t",
            self.session_name,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        return await proc.wait() == 0

    async def open(self) -> None:
        if shutil.which("tmux") is None:
            raise TransportError("tmux is not installed")
        if await self._session_exists():
            await self._tmux("kill-session", "-t", self.session_name, check=False)
        await self._tmux("new-session", "-d", "-s", self.session_name, "-x", "200", "-y", "50", self.command)
        self._open = True
        self._last_capture = ""
        log.info("tmux_connected", session=self.session_name, command=self.command)

    async def close(self) -> None:
        if not self._open:
            return
        self._open = False
        self._last_capture = ""
        await self._tmux("send-keys", "-t", self.session_name, "C-d", check=False)
        await self._tmux("kill-session", "-t", self.session_name, check=False)
        log.info("tmux_disconnected", session=self.session_name)

    async def send(self, data: str) -> None:
        if not self._open:
            raise TransportError("Not connected")
        # Line terminators become Enter key presses; the rest is sent literally.
        parts = data.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        for index, part in enumerate(parts):
            if part:
                await self._tmux("send-keys", "-t", self.session_name, "-l", part)
            if index < len(parts) - 1:
                await self._tmux("send-keys", "-t", self.session_name, "Enter")

    async def send_line(self, line: str) -> None:
        await self.send(line + "\n")

    async def read_available(self) -> str:
        if not self._open:
            raise TransportError("Not connected")
        if not await self._session_exists():
            self._open = False
            raise TransportError("tmux session ended")
        capture = await self._tmux(
            "capture-pane", "-p", "-J", "-t", self.session_name, "-S", f"-{self.history_lines}"
        )
        current = capture.rstrip("\n")
        delta = pane_delta(self._last_capture, current)
        self._last_capture = current
        return delta

    def is_open(self) -> bool:
        return self._open
