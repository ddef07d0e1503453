# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Fault-injection transport wrapper (deterministic).

This is used for resilience testing. It wraps a real transport and injects
dropped reads/disconnects at deterministic intervals so tests are repeatable.
"""

from __future__ import annotations

import asyncio
import contextlib
import random

from kosbot.errors import TransportError
from kosbot.transport.base import ConnectionTransport


class ChaosTransport(ConnectionTransport):
    def __init__(
        self,
        inner: ConnectionTransport,
        *,
        seed: int = 1,
        disconnect_every_n_reads: int = 0,
        drop_every_n_reads: int = 0,
        max_jitter_ms: int = 0,
        label: str = "chaos",
    ) -> None:
        self._inner = inner
        self._rng = random.Random(int(seed))
        self._disconnect_n = int(disconnect_every_n_reads or 0)
        self._drop_n = int(drop_every_n_reads or 0)
        self._max_jitter_ms = int(max_jitter_ms or 0)
        self._label = str(label or "chaos")
        self._rx_count = 0
        self.poll_interval_s = inner.poll_interval_s

    async def open(self) -> None:
        await self._inner.open()

    async def close(self) -> None:
        await self._inner.close()

    async def send(self, data: str) -> None:
        await self._inner.send(data)

    async def read_available(self) -> str:
        self._rx_count += 1

        if self._max_jitter_ms > 0:
            await asyncio.sleep(self._rng.uniform(0.0, float(self._max_jitter_ms)) / 1000.0)

        if self._disconnect_n > 0 and (self._rx_count % self._disconnect_n) == 0:
            with contextlib.suppress(Exception):
                await self._inner.close()
            raise TransportError(f"{self._label}: injected disconnect on read #{self._rx_count}")

        if self._drop_n > 0 and (self._rx_count % self._drop_n) == 0:
            # Data stays buffered in the inner transport for the next read.
            return ""

        return await self._inner.read_available()

    async def wait_for_data(self, timeout_s: float) -> None:
        await self._inner.wait_for_data(timeout_s)

    def is_open(self) -> bool:
        return self._inner.is_open()
