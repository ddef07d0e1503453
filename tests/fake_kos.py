"""Scripted kOS console doubles for testing."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable

from kosbot.core.error_detection import OutputMonitor
from kosbot.core.protocol import CommandResult
from kosbot.errors import TransportError
from kosbot.transport.base import ConnectionTransport

FRAMED_RE = re.compile(r'^(.*?)\s*PRINT "(__KOSBOT_[^"]+__)"\.$')

MENU = (
    "Terminal: type = XTERM, size = 80x24\r\n"
    "__________________________________________\r\n"
    "Choose a CPU to attach to by typing a selection number and pressing\r\n"
    "return/enter. Or enter [Q] to quit terminal server.\r\n"
    "\r\n"
    "   [#] Gui  Telnets Vessel Name (CPU tagname)\r\n"
    "   ---------------------------------------------\r\n"
    "   [1]   no    0     stick 1 (RC-L01(guidance))\r\n"
    "   [2]   yes   1     stick 1 (RC-L01(lander))\r\n"
    "   [3]   no    0     Relay Sat (KAL9000())\r\n"
    "--------------------------------------------------\r\n"
    "> "
)

Responder = Callable[[str], "str | None"]


def echo_print(command: str) -> str:
    """Answer ``PRINT <x>.`` with ``<x>``; everything else prints nothing."""
    body = command.strip().rstrip(".")
    if body.upper().startswith("PRINT "):
        return body[6:].strip().strip('"')
    return ""


class FakeKos(ConnectionTransport):
    """In-memory kOS console.

    Framed commands are echoed, answered by ``responder`` and terminated with
    the bare sentinel line. A responder returning None never completes.
    """

    poll_interval_s = 0.005

    def __init__(
        self,
        responder: Responder | None = None,
        *,
        menu: str | None = None,
        response_delay_s: float = 0.0,
    ) -> None:
        self.responder = responder or echo_print
        self.menu = menu
        self.response_delay_s = response_delay_s
        self.sent: list[str] = []
        self.commands: list[str] = []
        self.raw_lines: list[str] = []
        self.unanswered_tokens: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.fail_reads = False
        self.open_count = 0
        self._out: list[str] = []
        self._open = False

    def inject(self, text: str) -> None:
        """Queue unsolicited console output."""
        self._out.append(text)

    async def open(self) -> None:
        self._open = True
        self.open_count += 1
        if self.menu:
            self._out.append(self.menu)

    async def close(self) -> None:
        self._open = False

    async def send(self, data: str) -> None:
        if not self._open:
            raise TransportError("Not connected")
        self.sent.append(data)
        line = data.rstrip("\r\n")
        match = FRAMED_RE.match(line)
        if not match:
            self.raw_lines.append(line)
            if self.menu and line.strip().isdigit():
                self._out.append(f"Selecting CPU {line.strip()}\r\nProceed.\r\n")
            return

        command, token = match.groups()
        self.commands.append(command)
        self._out.append(line + "\r\n")
        output = self.responder(command)
        if output is None:
            self.unanswered_tokens.append(token)
            return
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        body = "".join(f"{part}\r\n" for part in output.split("\n")) if output else ""
        reply = f"{body}{token}\r\n> "
        if self.response_delay_s > 0:
            asyncio.get_running_loop().call_later(self.response_delay_s, self._deliver, reply)
        else:
            self._deliver(reply)

    def _deliver(self, reply: str) -> None:
        self.in_flight -= 1
        self._out.append(reply)

    async def read_available(self) -> str:
        if self.fail_reads:
            raise TransportError("Connection closed by remote")
        text = "".join(self._out)
        self._out.clear()
        return text

    def is_open(self) -> bool:
        return self._open


class ScriptedRunner:
    """Command runner answering from a handler, for autopilot procedures."""

    def __init__(self, handler: Callable[[str], "str | CommandResult | None"]) -> None:
        self.handler = handler
        self.commands: list[str] = []
        self.monitor = OutputMonitor()

    async def execute(
        self,
        command: str,
        timeout_ms: int | None = None,
        *,
        detach: bool = False,
    ) -> CommandResult:
        self.commands.append(command)
        out = self.handler(command)
        result = out if isinstance(out, CommandResult) else CommandResult(success=True, output=out or "")
        self.monitor.track_lines(result.output.splitlines())
        return result


class MockKosServer:
    """Minimal kOS telnet server: CPU menu, attach, framed command replies."""

    def __init__(
        self,
        responder: Responder | None = None,
        *,
        menu: str = MENU,
        menu_on_connect: bool = True,
        host: str = "127.0.0.1",
    ) -> None:
        self.responder = responder or echo_print
        self.menu = menu
        self.menu_on_connect = menu_on_connect
        self.host = host
        self.port = 0
        self.server: asyncio.Server | None = None
        self.received: list[str] = []
        self.connections = 0
        self._writers: list[asyncio.StreamWriter] = []

    async def __aenter__(self) -> MockKosServer:
        self.server = await asyncio.start_server(self._handle_client, self.host, 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *exc: object) -> None:
        assert self.server is not None
        self.server.close()
        for writer in self._writers:
            writer.close()
        await self.server.wait_closed()

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.append(writer)
        attached = False
        if self.menu_on_connect:
            writer.write(self.menu.encode("utf-8"))
            await writer.drain()
        try:
            while True:
                raw = await reader.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                self.received.append(line)
                writer.write(self._reply(line, attached).encode("utf-8"))
                if not attached and line.strip().isdigit():
                    attached = True
                await writer.drain()
        except (ConnectionResetError, BrokenPipeError):
            pass
        finally:
            writer.close()

    def _reply(self, line: str, attached: bool) -> str:
        if line.strip() == "REBOOT.":
            return self.menu
        if not attached:
            if line.strip().isdigit():
                return f"Selecting CPU {line.strip()}\r\nProceed.\r\n"
            return ""
        match = FRAMED_RE.match(line)
        if not match:
            return line + "\r\n"
        command, token = match.groups()
        output = self.responder(command)
        if output is None:
            return line + "\r\n"
        body = "".join(f"{part}\r\n" for part in output.split("\n")) if output else ""
        return f"{line}\r\n{body}{token}\r\n> "
