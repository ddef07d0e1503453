# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Transport wrapper that records the wire exchange to a trace file."""

from __future__ import annotations

from kosbot.errors import TransportError
from kosbot.logging.trace import TraceLogger
from kosbot.transport.base import ConnectionTransport


class TracingTransport(ConnectionTransport):
    def __init__(self, inner: ConnectionTransport, trace: TraceLogger) -> None:
        self._inner = inner
        self._trace = trace
        self.poll_interval_s = inner.poll_interval_s

    async def open(self) -> None:
        self._trace.start()
        try:
            await self._inner.open()
        except TransportError as e:
            self._trace.log_error("open_failed", error=str(e))
            raise
        self._trace.log_info("opened", transport=type(self._inner).__name__)

    async def close(self) -> None:
        await self._inner.close()
        self._trace.log_info("closed")
        self._trace.stop()

    async def send(self, data: str) -> None:
        self._trace.log_send(data)
        try:
            await self._inner.send(data)
        except TransportError as e:
            self._trace.log_error("send_failed", error=str(e))
            raise

    async def read_available(self) -> str:
        try:
            text = await self._inner.read_available()
        except TransportError as e:
            self._trace.log_error("read_failed", error=str(e))
            raise
        self._trace.log_recv(text)
        return text

    async def wait_for_data(self, timeout_s: float) -> None:
        await self._inner.wait_for_data(timeout_s)

    def is_open(self) -> bool:
        return self._inner.is_open()
