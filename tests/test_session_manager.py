# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Tests for SessionManager against a mock kOS telnet server."""

from __future__ import annotations

import pytest

from kosbot.core.menu import CpuSelector
from kosbot.core.session_manager import SessionManager
from kosbot.errors import NoSuchCpu, SessionStale, TransportError
from kosbot.settings import Settings

from .fake_kos import MENU, FakeKos, MockKosServer

RELOADED_MENU = (
    MENU.replace("(RC-L01(guidance))", "(RC-L01(tmp))")
    .replace("(RC-L01(lander))", "(RC-L01(guidance))")
    .replace("(RC-L01(tmp))", "(RC-L01(lander))")
)


def server_settings(settings: Settings, server: MockKosServer) -> Settings:
    return settings.model_copy(update={"host": server.host, "port": server.port})


@pytest.mark.asyncio
async def test_connect_attaches_to_first_cpu(settings: Settings) -> None:
    async with MockKosServer() as server:
        manager = SessionManager(server_settings(settings, server))

        state = await manager.connect()

        assert state.connected
        assert state.cpu_id == 1
        assert state.cpu_label == "guidance"
        assert state.vessel_name == "stick 1"
        assert "1" in server.received
        await manager.disconnect()
        assert not manager.is_connected()


@pytest.mark.asyncio
async def test_connect_by_label(settings: Settings) -> None:
    async with MockKosServer() as server:
        manager = SessionManager(server_settings(settings, server))

        state = await manager.connect(CpuSelector(label="lander"))

        assert state.cpu_id == 2
        await manager.disconnect()


@pytest.mark.asyncio
async def test_connect_unknown_cpu(settings: Settings) -> None:
    async with MockKosServer() as server:
        manager = SessionManager(server_settings(settings, server))

        with pytest.raises(NoSuchCpu, match="Available"):
            await manager.connect(CpuSelector(cpu_id=9))

        assert not manager.is_connected()


@pytest.mark.asyncio
async def test_execute_after_connect(settings: Settings) -> None:
    async with MockKosServer() as server:
        manager = SessionManager(server_settings(settings, server))
        await manager.connect()

        result = await manager.execute("PRINT 2.")
        health = await manager.health_check()

        assert result.success
        assert result.output == "2"
        assert health.healthy
        assert health.reason == "ok"
        await manager.disconnect()


@pytest.mark.asyncio
async def test_list_cpus_does_not_attach(settings: Settings) -> None:
    async with MockKosServer() as server:
        manager = SessionManager(server_settings(settings, server))

        entries = await manager.list_cpus()

        assert [e.id for e in entries] == [1, 2, 3]
        assert not manager.is_connected()
        assert not any(line.strip().isdigit() for line in server.received)


@pytest.mark.asyncio
async def test_reboot_when_menu_missing(settings: Settings) -> None:
    async with MockKosServer(menu_on_connect=False) as server:
        manager = SessionManager(server_settings(settings, server).model_copy(update={"cpu_menu_timeout_ms": 200}))

        state = await manager.connect()

        assert state.connected
        assert "REBOOT." in server.received
        await manager.disconnect()


@pytest.mark.asyncio
async def test_connect_refused(settings: Settings) -> None:
    async with MockKosServer() as server:
        port = server.port
    manager = SessionManager(settings.model_copy(update={"host": "127.0.0.1", "port": port}))

    with pytest.raises(TransportError):
        await manager.connect()


@pytest.mark.asyncio
async def test_execute_without_session(settings: Settings) -> None:
    manager = SessionManager(settings)

    result = await manager.execute("PRINT 1.")
    health = await manager.health_check()

    assert result.error == "Not connected"
    assert health.reason == "not_connected"


@pytest.mark.asyncio
async def test_ensure_connected_reconnects_stale_session(settings: Settings) -> None:
    consoles: list[FakeKos] = []

    def factory() -> FakeKos:
        console = FakeKos(menu=MENU)
        consoles.append(console)
        return console

    manager = SessionManager(settings, transport_factory=factory)
    await manager.connect(CpuSelector(cpu_id=2))
    consoles[0].responder = lambda command: "Signal lost. Waiting to re-acquire signal."

    state = await manager.ensure_connected()

    assert state.connected
    assert state.cpu_id == 2
    assert len(consoles) == 2
    assert not consoles[0].is_open()


@pytest.mark.asyncio
async def test_ensure_connected_raises_when_reconnect_fails(settings: Settings) -> None:
    consoles: list[FakeKos] = []

    def factory() -> FakeKos:
        console = FakeKos(menu=MENU if not consoles else "Signal lost.\r\n")
        consoles.append(console)
        return console

    fast = settings.model_copy(update={"reboot_timeout_ms": 50, "cpu_menu_timeout_ms": 100})
    manager = SessionManager(fast, transport_factory=factory)
    await manager.connect()
    consoles[0].responder = lambda command: None

    with pytest.raises(SessionStale, match="no_response"):
        await manager.ensure_connected()


@pytest.mark.asyncio
async def test_transport_loss_marks_session_disconnected(settings: Settings) -> None:
    console = FakeKos(menu=MENU)
    manager = SessionManager(settings, transport_factory=lambda: console)
    await manager.connect()
    console.fail_reads = True

    result = await manager.execute("PRINT 1.")

    assert result.error_type == "TransportError"
    assert not manager.is_connected()


@pytest.mark.asyncio
async def test_try_detach_sees_menu(settings: Settings) -> None:
    console = FakeKos(menu=MENU)
    manager = SessionManager(settings, transport_factory=lambda: console)
    await manager.connect()
    console.inject(MENU)

    assert await manager.try_detach()
    assert console.sent[-1] == "\x04"
    assert not manager.is_connected()


@pytest.mark.asyncio
async def test_reconnect_follows_label_when_ids_shift(settings: Settings) -> None:
    menus = iter([MENU, RELOADED_MENU])
    consoles: list[FakeKos] = []

    def factory() -> FakeKos:
        console = FakeKos(menu=next(menus))
        consoles.append(console)
        return console

    manager = SessionManager(settings, transport_factory=factory)
    await manager.connect(CpuSelector(cpu_id=2))
    consoles[0].responder = lambda command: None

    state = await manager.ensure_connected()

    assert state.cpu_label == "lander"
    assert state.cpu_id == 1
    assert consoles[1].raw_lines[0] == "1"


@pytest.mark.asyncio
async def test_reconnect_after_transport_loss_reuses_selector(settings: Settings) -> None:
    consoles: list[FakeKos] = []

    def factory() -> FakeKos:
        console = FakeKos(menu=MENU)
        consoles.append(console)
        return console

    manager = SessionManager(settings, transport_factory=factory)
    await manager.connect(CpuSelector(label="lander"))
    consoles[0].fail_reads = True
    await manager.execute("PRINT 1.")

    state = await manager.ensure_connected()

    assert state.cpu_id == 2
    assert state.cpu_label == "lander"
