# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Telnet socket transport for the kOS console."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import socket
from typing import TYPE_CHECKING

import structlog

from kosbot.constants import DEFAULT_CONNECT_TIMEOUT_MS, DEFAULT_HOST, DEFAULT_MAX_BYTES, DEFAULT_PORT, DETACH_KEY
from kosbot.errors import TransportError
from kosbot.transport.base import ConnectionTransport

if TYPE_CHECKING:
    from asyncio import StreamReader, StreamWriter

log = structlog.get_logger()

# Telnet protocol constants
IAC = 255  # Interpret As Command
DONT = 254
DO = 253
WONT = 252
WILL = 251
SB = 250  # Subnegotiation Begin
SE = 240  # Subnegotiation End

# Telnet options
OPT_BINARY = 0
OPT_ECHO = 1
OPT_SGA = 3  # Suppress Go Ahead

KEEPALIVE_IDLE_S = 30
KEEPALIVE_INTERVAL_S = 10


class TelnetTransport(ConnectionTransport):
    """Event-driven telnet transport.

    A reader task drains the socket into a text buffer so arrivals are never
    lost between polls; ``read_available`` hands out and clears that buffer.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS,
    ) -> None:
        """Initialize telnet transport.

        Args:
            host: Console hostname or IP address
            port: Console port number
            connect_timeout_ms: Connection timeout in milliseconds
        """
        self.host = host
        self.port = port
        self.connect_timeout_ms = connect_timeout_ms
        self._reader: StreamReader | None = None
        self._writer: StreamWriter | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._negotiation_tasks: set[asyncio.Task[None]] = set()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._negotiated: dict[str, set[int]] = {"do": set(), "dont": set(), "will": set(), "wont": set()}
        self._rx_pending = bytearray()
        self._buffer: list[str] = []
        self._data_event = asyncio.Event()
        self._closed_by_remote = False

    async def open(self) -> None:
        """Open the telnet connection and start the reader task.

        Raises:
            TransportError: If connection fails or times out
        """
        if self._writer:
            await self.close()

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout_ms / 1000,
            )
        except TimeoutError as e:
            raise TransportError(f"Connection timeout to {self.host}:{self.port}") from e
        except OSError as e:
            raise TransportError(f"Failed to connect to {self.host}:{self.port}: {e}") from e

        self._enable_keepalive()
        self._closed_by_remote = False
        self._reader_task = asyncio.create_task(self._reader_loop())
        log.info("telnet_connected", host=self.host, port=self.port)

    def _enable_keepalive(self) -> None:
        sock = self._writer.get_extra_info("socket") if self._writer else None
        if sock is None:
            return
        with contextlib.suppress(OSError):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            if hasattr(socket, "TCP_KEEPIDLE"):
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, KEEPALIVE_IDLE_S)
            if hasattr(socket, "TCP_KEEPINTVL"):
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, KEEPALIVE_INTERVAL_S)

    async def close(self) -> None:
        """Detach from the CPU (best effort) and close the connection."""
        if not self._writer:
            return

        writer = self._writer
        if not writer.is_closing():
            with contextlib.suppress(ConnectionResetError, BrokenPipeError, RuntimeError):
                writer.write(DETACH_KEY.encode("ascii"))
                await writer.drain()

        if self._reader_task is not None:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None

        for task in list(self._negotiation_tasks):
            task.cancel()
        self._negotiation_tasks.clear()

        try:
            writer.close()
            await writer.wait_closed()
        except (ConnectionResetError, BrokenPipeError, RuntimeError):
            pass
        finally:
            self._writer = None
            self._reader = None
            self._rx_pending.clear()
            self._buffer.clear()
            self._decoder.reset()
            self._negotiated = {"do": set(), "dont": set(), "will": set(), "wont": set()}
            self._data_event.set()

        log.info("telnet_disconnected", host=self.host, port=self.port)

    async def send(self, data: str) -> None:
        """Send text, escaping IAC bytes per RFC 854.

        Args:
            data: Text to send

        Raises:
            TransportError: If not connected or send fails
        """
        if not self.is_open() or self._writer is None:
            raise TransportError("Not connected")

        escaped = data.encode("utf-8").replace(b"\xff", b"\xff\xff")

        try:
            self._writer.write(escaped)
            await self._writer.drain()
        except (ConnectionResetError, BrokenPipeError) as e:
            self._closed_by_remote = True
            raise TransportError("Send failed") from e

    async def read_available(self) -> str:
        """Return and clear text buffered by the reader task.

        Raises:
            TransportError: If the connection was lost and nothing is buffered
        """
        if self._buffer:
            text = "".join(self._buffer)
            self._buffer.clear()
            self._data_event.clear()
            return text
        self._data_event.clear()
        if self._writer is None:
            raise TransportError("Not connected")
        if self._closed_by_remote:
            raise TransportError("Connection closed by remote")
        return ""

    async def wait_for_data(self, timeout_s: float) -> None:
        if self._buffer or not self.is_open():
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._data_event.wait(), timeout=max(0.0, timeout_s))

    def is_open(self) -> bool:
        """Check if connection is active.

        Returns:
            True if connected, False otherwise
        """
        return self._writer is not None and not self._writer.is_closing() and not self._closed_by_remote

    async def _reader_loop(self) -> None:
        assert self._reader is not None
        try:
            while True:
                chunk = await self._reader.read(DEFAULT_MAX_BYTES)
                if not chunk:
                    break
                text = self._decoder.decode(self._handle_telnet(chunk))
                if text:
                    self._buffer.append(text)
                    self._data_event.set()
        except (ConnectionResetError, BrokenPipeError, OSError) as e:
            log.warning("telnet_read_failed", host=self.host, port=self.port, error=str(e))
        except asyncio.CancelledError:
            return
        self._closed_by_remote = True
        self._data_event.set()
        log.info("telnet_closed_by_remote", host=self.host, port=self.port)

    def _handle_telnet(self, chunk: bytes) -> bytes:
        """Process telnet protocol commands and return clean data.

        Commands split across reads are held back until complete.

        Args:
            chunk: Raw bytes from the socket

        Returns:
            Data with telnet commands processed and removed
        """
        self._rx_pending.extend(chunk)
        data = bytes(self._rx_pending)
        self._rx_pending.clear()

        result = bytearray()
        i = 0
        while i < len(data):
            byte = data[i]
            if byte != IAC:
                result.append(byte)
                i += 1
                continue
            if i + 1 >= len(data):
                self._rx_pending.extend(data[i:])
                break
            cmd = data[i + 1]
            if cmd == IAC:
                # Escaped IAC (0xFF 0xFF) → single 0xFF
                result.append(IAC)
                i += 2
            elif cmd in (DO, DONT, WILL, WONT):
                if i + 2 >= len(data):
                    self._rx_pending.extend(data[i:])
                    break
                task = asyncio.create_task(self._negotiate(cmd, data[i + 2]))
                self._negotiation_tasks.add(task)
                task.add_done_callback(self._negotiation_done)
                i += 3
            elif cmd == SB:
                end = data.find(bytes([IAC, SE]), i + 2)
                if end == -1:
                    self._rx_pending.extend(data[i:])
                    break
                i = end + 2
            else:
                i += 2
        return bytes(result)

    def _negotiation_done(self, task: asyncio.Task[None]) -> None:
        self._negotiation_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.warning("telnet_negotiation_failed", error=str(task.exception()))

    async def _negotiate(self, cmd: int, opt: int) -> None:
        """Handle telnet option negotiation.

        Args:
            cmd: Negotiation command (DO/DONT/WILL/WONT)
            opt: Option code
        """
        if not self._writer:
            return

        try:
            if cmd == DO:
                if opt in (OPT_BINARY, OPT_SGA):
                    await self._send_cmd("will", WILL, opt)
                else:
                    await self._send_cmd("wont", WONT, opt)
            elif cmd == DONT:
                await self._send_cmd("wont", WONT, opt)
            elif cmd == WILL:
                if opt in (OPT_ECHO, OPT_SGA, OPT_BINARY):
                    await self._send_cmd("do", DO, opt)
                else:
                    await self._send_cmd("dont", DONT, opt)
            elif cmd == WONT:
                await self._send_cmd("dont", DONT, opt)
        except (ConnectionResetError, BrokenPipeError):
            pass

    async def _send_cmd(self, kind: str, cmd: int, opt: int) -> None:
        """Send a telnet command once per option.

        Args:
            kind: Negotiation bucket name
            cmd: Command byte
            opt: Option byte
        """
        if opt in self._negotiated[kind]:
            return
        if not self._writer or self._writer.is_closing():
            return
        self._negotiated[kind].add(opt)
        self._writer.write(bytes([IAC, cmd, opt]))
        with contextlib.suppress(ConnectionResetError, BrokenPipeError):
            await self._writer.drain()
