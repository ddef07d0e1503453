# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Abstract base class for console transports."""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod

from kosbot.constants import DEFAULT_POLL_INTERVAL_S, LINE_TERMINATOR
from kosbot.terminal.screen_utils import normalize_terminal_text


class ConnectionTransport(ABC):
    """Abstract base for console transports (telnet socket, tmux pane)."""

    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S

    @abstractmethod
    async def open(self) -> None:
        """Open the channel to the remote console.

        Raises:
            TransportError: If the channel cannot be opened
        """

    @abstractmethod
    async def close(self) -> None:
        """Close channel and cleanup resources.

        Should be idempotent - safe to call multiple times.
        """

    @abstractmethod
    async def send(self, data: str) -> None:
        """Send raw text with proper protocol encoding/escaping.

        Args:
            data: Text to send, without an added terminator

        Raises:
            TransportError: If not open or send fails
        """

    @abstractmethod
    async def read_available(self) -> str:
        """Return text that arrived since the previous call.

        Never blocks waiting for data.

        Returns:
            Newly arrived text (empty when nothing is new)

        Raises:
            TransportError: If the channel was lost
        """

    @abstractmethod
    def is_open(self) -> bool:
        """Check if the channel is open.

        Returns:
            True if open, False otherwise
        """

    async def send_line(self, line: str) -> None:
        """Send a line followed by the console terminator."""
        await self.send(line + LINE_TERMINATOR)

    async def wait_for_data(self, timeout_s: float) -> None:
        """Wait until new data may be available or ``timeout_s`` elapses.

        Polling transports sleep for one poll interval; event-driven
        transports override this to wake on arrival.
        """
        await asyncio.sleep(max(0.0, min(timeout_s, self.poll_interval_s)))

    async def wait_for(self, pattern: str, timeout_ms: int) -> tuple[bool, str]:
        """Accumulate text until ``pattern`` appears or the timeout elapses.

        Args:
            pattern: Case-insensitive substring to wait for
            timeout_ms: Timeout in milliseconds

        Returns:
            (found, accumulated raw text)
        """
        deadline = time.monotonic() + timeout_ms / 1000
        needle = pattern.lower()
        buffer = ""
        while True:
            buffer += await self.read_available()
            if needle in normalize_terminal_text(buffer).lower():
                return True, buffer
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False, buffer
            await self.wait_for_data(remaining)
