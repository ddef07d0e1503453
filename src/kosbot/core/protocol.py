# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Sentinel-framed request/response protocol over the kOS console.

The console echoes every submitted line before running it, so a command is
framed as ``<command> PRINT "<token>".``. The quoted token in the echo marks
where the echo ends; the bare token alone on a line marks where the output
ends. Only text between the two is the command's output.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
import secrets
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, ConfigDict

from kosbot.constants import DEFAULT_COMMAND_TIMEOUT_MS
from kosbot.core.error_detection import CommandErrorDetector, OutputMonitor
from kosbot.errors import ProtocolTimeout, TransportError
from kosbot.logging import get_logger
from kosbot.terminal.screen_utils import clean_output, normalize_terminal_text, split_lines
from kosbot.transport.base import ConnectionTransport

logger = get_logger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_ECHO_PREFIX_LEN = 20
_STALE_TOKENS_KEPT = 8


class CommandResult(BaseModel):
    """Outcome of one command; immutable once produced."""

    model_config = ConfigDict(frozen=True)

    success: bool
    output: str = ""
    error: str | None = None
    error_type: str | None = None
    timed_out: bool = False


@dataclass
class PendingCommand:
    """The single in-flight command of an engine."""

    command: str
    token: str
    framed: str
    deadline: float
    buffer: str = ""
    state: Literal["pending", "resolved", "rejected"] = "pending"
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def make_sentinel(seq: int) -> str:
    """Build a completion token that cannot occur in ordinary output."""
    return f"__KOSBOT_{_base36(seq)}_{secrets.token_hex(4).upper()}__"


def frame_command(command: str, token: str) -> str:
    """Join a command into one line followed by the sentinel statement."""
    body = " ".join(part.strip() for part in command.strip().splitlines() if part.strip())
    if body and not body.endswith((".", "}")):
        body += "."
    sentinel = f'PRINT "{token}".'
    return f"{body} {sentinel}" if body else sentinel


def _sentinel_re(token: str) -> re.Pattern[str]:
    # Bare token on its own line; the quoted echo never matches.
    return re.compile(rf"(?m)^[ \t>]*{re.escape(token)}[ \t]*$")


def _after_echo(text: str, token: str) -> tuple[str, bool]:
    """Return text after the echoed request line and whether the echo was seen."""
    echo_at = text.rfind(f'"{token}"')
    if echo_at == -1:
        return text, False
    newline = text.find("\n", echo_at)
    return ("" if newline == -1 else text[newline + 1 :]), True


class CommandEngine:
    """Single-flight command executor bound to one transport.

    Concurrent ``execute`` calls queue in FIFO order behind an ``asyncio.Lock``;
    the console cannot separate interleaved commands, so at most one command
    is ever on the wire.
    """

    def __init__(
        self,
        transport: ConnectionTransport,
        *,
        monitor: OutputMonitor | None = None,
        error_detector: CommandErrorDetector | None = None,
        default_timeout_ms: int = DEFAULT_COMMAND_TIMEOUT_MS,
    ) -> None:
        self.transport = transport
        self.monitor = monitor or OutputMonitor()
        self.error_detector = error_detector or CommandErrorDetector()
        self.default_timeout_ms = default_timeout_ms
        self._lock = asyncio.Lock()
        self._seq = 0
        self._residual = ""
        self._pending: PendingCommand | None = None
        # Sentinels of timed-out commands whose tails may still arrive.
        self._stale_tokens: deque[str] = deque(maxlen=_STALE_TOKENS_KEPT)

    @property
    def pending(self) -> PendingCommand | None:
        return self._pending

    @property
    def lock(self) -> asyncio.Lock:
        """Lock serializing console access; holders may bypass framing."""
        return self._lock

    def is_busy(self) -> bool:
        return self._lock.locked()

    async def execute(
        self,
        command: str,
        timeout_ms: int | None = None,
        *,
        detach: bool = False,
    ) -> CommandResult:
        """Run a command and wait for its sentinel.

        Args:
            command: kOS statement(s) to run
            timeout_ms: Deadline for the sentinel (defaults to engine default)
            detach: Send without framing and return at once; for commands
                that tear the session down (e.g. quickload)

        Returns:
            CommandResult; transport failures and timeouts are reported as
            ``success=False`` rather than raised
        """
        timeout_ms = timeout_ms if timeout_ms is not None else self.default_timeout_ms
        async with self._lock:
            if not self.transport.is_open():
                return CommandResult(success=False, error="Not connected", error_type="TransportError")
            try:
                await self._drain_residual()
                if detach:
                    await self.transport.send_line(command.strip())
                    logger.info("command_detached", command=command)
                    return CommandResult(success=True)
                return await self._run(command, timeout_ms)
            except ProtocolTimeout as e:
                return CommandResult(
                    success=False,
                    output=e.partial_output,
                    error=str(e),
                    error_type=type(e).__name__,
                    timed_out=True,
                )
            except TransportError as e:
                logger.warning("command_transport_error", command=command, error=str(e))
                return CommandResult(success=False, error=str(e), error_type="TransportError")
            finally:
                self._pending = None

    async def _drain_residual(self) -> None:
        """Discard text left over from earlier commands, feeding it to the monitor."""
        leftover = self._residual + await self.transport.read_available()
        self._residual = ""
        if leftover:
            lines = split_lines(normalize_terminal_text(leftover))
            self._forget_stale_tokens_in(lines)
            self.monitor.track_lines(lines)
            logger.debug("residual_discarded", lines=len(lines))

    async def _run(self, command: str, timeout_ms: int) -> CommandResult:
        self._seq += 1
        token = make_sentinel(self._seq)
        pending = PendingCommand(
            command=command,
            token=token,
            framed=frame_command(command, token),
            deadline=time.monotonic() + timeout_ms / 1000,
        )
        self._pending = pending
        sentinel = _sentinel_re(token)

        logger.debug("command_sent", command=command, token=token)
        await self.transport.send_line(pending.framed)

        while True:
            pending.buffer += await self.transport.read_available()
            text = normalize_terminal_text(pending.buffer)
            match = sentinel.search(text)
            if match:
                pending.state = "resolved"
                self._residual = text[match.end() :]
                return self._complete(pending, text[: match.start()])

            remaining = pending.deadline - time.monotonic()
            if remaining <= 0:
                pending.state = "rejected"
                partial = self._extract(pending, text)
                self._stale_tokens.append(token)
                self.monitor.track_lines(split_lines(partial))
                logger.warning("command_timeout", command=command, timeout_ms=timeout_ms)
                raise ProtocolTimeout(f"Command timed out after {timeout_ms} ms", partial_output=partial)
            await self.transport.wait_for_data(remaining)

    def _extract(self, pending: PendingCommand, text: str) -> str:
        body, echo_seen = _after_echo(text, pending.token)
        body = self._drop_stale_tail(body)
        if echo_seen:
            return clean_output(body)
        return clean_output(body, echo_prefixes=(pending.framed[:_ECHO_PREFIX_LEN],))

    def _drop_stale_tail(self, body: str) -> str:
        """Cut everything up to the last sentinel of a timed-out command.

        A late response can land after the next command's echo; the bare stale
        token marks where that response ends.
        """
        cut = -1
        seen: list[str] = []
        for token in self._stale_tokens:
            for match in _sentinel_re(token).finditer(body):
                cut = max(cut, match.end())
                seen.append(token)
        if cut == -1:
            return body
        late = body[:cut]
        self.monitor.track_lines([line for line in split_lines(late) if line.strip() not in seen])
        self._forget(seen)
        logger.debug("stale_output_discarded", tokens=len(seen))
        return body[cut:]

    def _forget_stale_tokens_in(self, lines: list[str]) -> None:
        self._forget([token for token in self._stale_tokens if any(line.strip() == token for line in lines)])

    def _forget(self, tokens: list[str]) -> None:
        for token in set(tokens):
            with contextlib.suppress(ValueError):
                self._stale_tokens.remove(token)

    def _complete(self, pending: PendingCommand, text: str) -> CommandResult:
        output = self._extract(pending, text)
        self.monitor.track_lines(split_lines(output))
        found = self.error_detector.find_error(output)
        logger.debug("command_completed", command=pending.command, elapsed_ms=pending.elapsed_ms)
        if found:
            error_type, line = found
            return CommandResult(success=False, output=output, error=line, error_type=error_type)
        return CommandResult(success=True, output=output)
