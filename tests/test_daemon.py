# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Tests for the daemon server and client."""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

from kosbot.core.session_manager import SessionManager
from kosbot.daemon import DaemonClient, KosDaemon, is_daemon_running
from kosbot.errors import TransportError
from kosbot.settings import Settings

from .fake_kos import MENU, FakeKos, echo_print


@asynccontextmanager
async def running_daemon(settings: Settings, console: FakeKos) -> AsyncIterator[KosDaemon]:
    manager = SessionManager(settings, transport_factory=lambda: console)
    daemon = KosDaemon(settings, manager)
    await daemon.start()
    try:
        yield daemon
    finally:
        await daemon.stop()


@pytest.mark.asyncio
async def test_start_writes_pid_and_socket(settings: Settings) -> None:
    async with running_daemon(settings, FakeKos(menu=MENU)) as daemon:
        assert daemon.socket_path.exists()
        assert daemon.pid_path.read_text() == str(os.getpid())
        assert is_daemon_running(settings)

    assert not daemon.socket_path.exists()
    assert not daemon.pid_path.exists()


@pytest.mark.asyncio
async def test_ping(settings: Settings) -> None:
    async with running_daemon(settings, FakeKos(menu=MENU)):
        assert await DaemonClient(settings=settings).ping()


@pytest.mark.asyncio
async def test_execute_connects_on_demand(settings: Settings) -> None:
    console = FakeKos(menu=MENU)
    async with running_daemon(settings, console):
        client = DaemonClient(settings=settings)

        response = await client.execute("PRINT 2.")
        status = await client.status()

    assert response.success
    assert response.output == "2"
    assert response.connected
    assert response.cpu_id == 1
    assert response.vessel == "stick 1"
    assert status.connected
    assert status.output == "No errors (1 lines tracked)"
    assert console.open_count == 1


@pytest.mark.asyncio
async def test_connect_with_selector(settings: Settings) -> None:
    async with running_daemon(settings, FakeKos(menu=MENU)):
        client = DaemonClient(settings=settings)

        response = await client.connect(cpu_label="lander")
        disconnected = await client.disconnect()

    assert response.success
    assert response.cpu_id == 2
    assert response.cpu_label == "lander"
    assert not disconnected.connected


@pytest.mark.asyncio
async def test_connect_unknown_cpu_is_reported(settings: Settings) -> None:
    async with running_daemon(settings, FakeKos(menu=MENU)):
        response = await DaemonClient(settings=settings).connect(cpu_id=7)

    assert not response.success
    assert response.error_type == "NoSuchCpu"
    assert not response.connected


@pytest.mark.asyncio
async def test_concurrent_clients_are_serialized(settings: Settings) -> None:
    console = FakeKos(menu=MENU, response_delay_s=0.01)
    async with running_daemon(settings, console):
        clients = [DaemonClient(settings=settings) for _ in range(4)]

        responses = await asyncio.gather(*(c.execute(f"PRINT {n}.") for n, c in enumerate(clients)))

    assert [r.output for r in responses] == ["0", "1", "2", "3"]
    assert console.max_in_flight == 1


@pytest.mark.asyncio
async def test_detach_drops_session(settings: Settings) -> None:
    console = FakeKos(menu=MENU)
    async with running_daemon(settings, console):
        client = DaemonClient(settings=settings)

        response = await client.execute("KUNIVERSE:QUICKLOAD().", detach=True)

    assert response.success
    assert not response.connected
    assert "KUNIVERSE:QUICKLOAD()." in console.raw_lines


@pytest.mark.asyncio
async def test_missing_command(settings: Settings) -> None:
    async with running_daemon(settings, FakeKos(menu=MENU)):
        response = await DaemonClient(settings=settings).execute("")

    assert not response.success
    assert response.error == "Missing command"


@pytest.mark.asyncio
async def test_invalid_request_line(settings: Settings) -> None:
    async with running_daemon(settings, FakeKos(menu=MENU)) as daemon:
        reader, writer = await asyncio.open_unix_connection(str(daemon.socket_path))
        writer.write(b'{"type": "explode"}\n')
        await writer.drain()
        line = await reader.readline()
        writer.close()
        await writer.wait_closed()

    assert b'"success":false' in line
    assert b"Invalid request" in line


@pytest.mark.asyncio
async def test_shutdown_request_stops_daemon(settings: Settings) -> None:
    manager = SessionManager(settings, transport_factory=lambda: FakeKos(menu=MENU))
    daemon = KosDaemon(settings, manager)
    await daemon.start()

    response = await DaemonClient(settings=settings).shutdown()
    await asyncio.wait_for(daemon.wait_stopped(), timeout=2)

    assert response.success
    assert not daemon.socket_path.exists()


@pytest.mark.asyncio
async def test_idle_timeout_stops_daemon(settings: Settings) -> None:
    idle = settings.model_copy(update={"daemon_idle_timeout_s": 0.1})
    daemon = KosDaemon(idle, SessionManager(idle, transport_factory=lambda: FakeKos(menu=MENU)))
    await daemon.start()

    await asyncio.wait_for(daemon.wait_stopped(), timeout=2)

    assert not daemon.pid_path.exists()


@pytest.mark.asyncio
async def test_live_daemon_blocks_start(settings: Settings, tmp_path: Path) -> None:
    (tmp_path / "kosbot.sock").write_text("")
    (tmp_path / "kosbot.pid").write_text("1")

    with pytest.raises(RuntimeError, match="already running"):
        await KosDaemon(settings, SessionManager(settings)).start()


@pytest.mark.asyncio
async def test_stale_files_are_replaced(settings: Settings, tmp_path: Path) -> None:
    (tmp_path / "kosbot.sock").write_text("")
    (tmp_path / "kosbot.pid").write_text("999999999")

    async with running_daemon(settings, FakeKos(menu=MENU)):
        assert await DaemonClient(settings=settings).ping()


@pytest.mark.asyncio
async def test_client_without_daemon(settings: Settings) -> None:
    client = DaemonClient(settings=settings)

    assert not await client.ping()
    assert not is_daemon_running(settings)
    with pytest.raises(TransportError, match="not reachable"):
        await client.status()


@pytest.mark.asyncio
async def test_silent_console_is_reattached_after_timeout(settings: Settings) -> None:
    consoles: list[FakeKos] = []

    def factory() -> FakeKos:
        console = FakeKos(menu=MENU)
        consoles.append(console)
        return console

    daemon = KosDaemon(settings, SessionManager(settings, transport_factory=factory))
    await daemon.start()
    try:
        client = DaemonClient(settings=settings)
        await client.connect()
        consoles[0].responder = lambda command: None

        timed_out = await client.execute("PRINT 2.", timeout_ms=100)
        response = await client.execute("PRINT 3.")
    finally:
        await daemon.stop()

    assert not timed_out.success
    assert timed_out.connected
    assert len(consoles) == 2
    assert not consoles[0].is_open()
    assert response.success
    assert response.output == "3"


@pytest.mark.asyncio
async def test_slow_command_keeps_healthy_session(settings: Settings) -> None:
    console = FakeKos(menu=MENU, responder=lambda command: None if command.startswith("WAIT") else echo_print(command))
    async with running_daemon(settings, console):
        client = DaemonClient(settings=settings)

        timed_out = await client.execute("WAIT 10.", timeout_ms=100)
        response = await client.execute("PRINT 4.")

    assert not timed_out.success
    assert timed_out.connected
    assert console.open_count == 1
    assert console.commands[-2:] == ["PRINT 1.", "PRINT 4."]
    assert response.output == "4"
