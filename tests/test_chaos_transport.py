from __future__ import annotations

import pytest

from kosbot.core.protocol import CommandEngine
from kosbot.errors import TransportError
from kosbot.transport.chaos import ChaosTransport

from .fake_kos import FakeKos


@pytest.mark.asyncio
async def test_chaos_disconnect_every_n_reads() -> None:
    inner = FakeKos()
    transport = ChaosTransport(inner, seed=1, disconnect_every_n_reads=2, label="t")
    await transport.open()
    inner.inject("hello")

    assert await transport.read_available() == "hello"
    assert inner.is_open()

    with pytest.raises(TransportError, match="t: injected disconnect on read #2"):
        await transport.read_available()
    assert not inner.is_open()


@pytest.mark.asyncio
async def test_chaos_dropped_read_keeps_data_buffered() -> None:
    inner = FakeKos()
    transport = ChaosTransport(inner, seed=1, drop_every_n_reads=1)
    await transport.open()
    inner.inject("hello")

    assert await transport.read_available() == ""
    assert await inner.read_available() == "hello"


@pytest.mark.asyncio
async def test_engine_survives_dropped_reads() -> None:
    inner = FakeKos()
    transport = ChaosTransport(inner, seed=7, drop_every_n_reads=2, max_jitter_ms=2)
    await transport.open()

    result = await CommandEngine(transport).execute("PRINT 5.")

    assert result.success
    assert result.output == "5"


@pytest.mark.asyncio
async def test_engine_reports_injected_disconnect() -> None:
    transport = ChaosTransport(FakeKos(), disconnect_every_n_reads=1)
    await transport.open()

    result = await CommandEngine(transport).execute("PRINT 5.")

    assert not result.success
    assert result.error_type == "TransportError"
