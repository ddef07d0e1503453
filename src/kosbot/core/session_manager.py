# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Connect, attach, health-check and reconnect a kOS session."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from typing import Literal

from pydantic import BaseModel

from kosbot.constants import ATTACH_ACK, CPU_MENU_PROMPT, DETACH_KEY, REBOOT_COMMAND
from kosbot.core.error_detection import OutputMonitor
from kosbot.core.menu import CpuSelector, MenuEntry, parse_cpu_menu, select_entry
from kosbot.core.protocol import CommandResult
from kosbot.core.session import Session, SessionState
from kosbot.errors import KosError, SessionStale, TransportError
from kosbot.logging import get_logger
from kosbot.settings import Settings
from kosbot.transport import create_transport
from kosbot.transport.base import ConnectionTransport

log = get_logger(__name__)

MENU_SETTLE_S = 0.2


class HealthCheckResult(BaseModel):
    healthy: bool
    reason: Literal["ok", "not_connected", "signal_lost", "no_response", "error"]
    detail: str | None = None


class SessionManager:
    """Owns at most one attached Session at a time.

    Independent managers share nothing, so several can run side by side
    against different CPUs.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport_factory: Callable[[], ConnectionTransport] | None = None,
        monitor: OutputMonitor | None = None,
    ) -> None:
        """Initialize session manager.

        Args:
            settings: Connection settings (defaults to environment settings)
            transport_factory: Builds an unopened transport per connect
            monitor: Output monitor shared by every session of this manager
        """
        self.settings = settings or Settings()
        self._transport_factory = transport_factory or (lambda: create_transport(self.settings))
        self.monitor = monitor or OutputMonitor()
        self._session: Session | None = None
        self._lock = asyncio.Lock()
        self._last_selector: CpuSelector | None = None

    @property
    def session(self) -> Session | None:
        return self._session

    def default_selector(self) -> CpuSelector:
        return CpuSelector(cpu_id=self.settings.cpu_id, label=self.settings.cpu_label)

    async def connect(self, selector: CpuSelector | None = None) -> SessionState:
        """Open a transport, select a CPU from the menu and attach.

        Args:
            selector: CPU id or label (defaults to settings, then first CPU)

        Returns:
            State of the new session

        Raises:
            TransportError: If the console is unreachable or shows no menu
            NoSuchCpu: If no menu row matches the selector
        """
        async with self._lock:
            if self._session is not None:
                await self._close_session()

            selector = selector or self.default_selector()
            self._last_selector = selector
            transport = self._transport_factory()
            await transport.open()
            try:
                entries = await self._read_menu(transport)
                entry = select_entry(entries, selector)
                await transport.send_line(str(entry.id))
                acked, _ = await transport.wait_for(ATTACH_ACK, self.settings.proceed_timeout_ms)
                if not acked:
                    # Reattaching to a CPU with scrollback shows no acknowledgment.
                    log.info("attach_ack_missing", cpu_id=entry.id)
                await asyncio.sleep(self.settings.connect_delay_ms / 1000)
                await transport.read_available()
            except (KosError, OSError):
                with contextlib.suppress(KosError, OSError):
                    await transport.close()
                raise

            self._session = Session(
                transport=transport,
                cpu_id=entry.id,
                cpu_label=entry.label,
                vessel_name=entry.vessel,
                command_timeout_ms=self.settings.command_timeout_ms,
                monitor=self.monitor,
            )
            log.info("session_connected", cpu_id=entry.id, cpu_label=entry.label, vessel=entry.vessel)
            return self._session.state()

    async def _read_menu(self, transport: ConnectionTransport) -> list[MenuEntry]:
        found, text = await transport.wait_for(CPU_MENU_PROMPT, self.settings.cpu_menu_timeout_ms)
        if not found:
            # Already attached from an earlier client: reboot back to the menu.
            log.info("cpu_menu_missing_rebooting")
            await transport.send_line(REBOOT_COMMAND)
            found, text = await transport.wait_for(CPU_MENU_PROMPT, self.settings.reboot_timeout_ms)
            if not found:
                raise TransportError("CPU menu not found; is kOS telnet enabled?")
        return parse_cpu_menu(text + await self._settle(transport))

    async def _settle(self, transport: ConnectionTransport) -> str:
        """Read until the menu stops arriving."""
        collected = ""
        deadline = time.monotonic() + self.settings.cpu_menu_timeout_ms / 1000
        while time.monotonic() < deadline:
            await transport.wait_for_data(MENU_SETTLE_S)
            chunk = await transport.read_available()
            if not chunk:
                break
            collected += chunk
        return collected

    async def list_cpus(self) -> list[MenuEntry]:
        """Read the CPU menu without attaching."""
        transport = self._transport_factory()
        await transport.open()
        try:
            return await self._read_menu(transport)
        finally:
            await transport.close()

    async def disconnect(self) -> None:
        """Detach and close; safe on an already closed session."""
        async with self._lock:
            await self._close_session()

    async def _close_session(self) -> None:
        session = self._session
        self._session = None
        if session is None:
            return
        try:
            await session.disconnect()
        except (KosError, OSError) as e:
            log.warning("session_close_failed", cpu_id=session.cpu_id, error=str(e))
        log.info("session_disconnected", cpu_id=session.cpu_id)

    def is_connected(self) -> bool:
        return self._session is not None and self._session.is_connected()

    def get_state(self) -> SessionState:
        if self._session is None:
            return SessionState(connected=False)
        return self._session.state()

    async def execute(
        self,
        command: str,
        timeout_ms: int | None = None,
        *,
        detach: bool = False,
    ) -> CommandResult:
        """Execute on the current session without reconnecting."""
        session = self._session
        if session is None or not session.is_connected():
            return CommandResult(success=False, error="Not connected", error_type="TransportError")
        return await session.execute(command, timeout_ms, detach=detach)

    async def health_check(self) -> HealthCheckResult:
        """Verify the attached CPU still answers.

        The console can reset silently (scene change, quickload) while the
        socket stays open, so an open transport alone proves nothing.
        """
        if not self.is_connected():
            return HealthCheckResult(healthy=False, reason="not_connected")
        result = await self.execute("PRINT 1.", self.settings.health_check_timeout_ms)
        if result.success and "1" in result.output:
            return HealthCheckResult(healthy=True, reason="ok")
        if "signal lost" in (result.output + (result.error or "")).lower():
            return HealthCheckResult(healthy=False, reason="signal_lost", detail=result.error)
        if result.timed_out:
            return HealthCheckResult(healthy=False, reason="no_response", detail=result.error)
        return HealthCheckResult(healthy=False, reason="error", detail=result.error)

    async def ensure_connected(self, selector: CpuSelector | None = None) -> SessionState:
        """Return a healthy session, reconnecting when the current one is stale."""
        if self.is_connected():
            health = await self.health_check()
            if health.healthy:
                return self.get_state()
            log.warning("session_stale", reason=health.reason, detail=health.detail)
            selector = selector or self._current_selector()
            await self.disconnect()
            try:
                return await self.connect(selector)
            except TransportError as e:
                raise SessionStale(f"Session went stale ({health.reason}) and reconnect failed: {e}") from e
        return await self.connect(selector or self._current_selector())

    def _current_selector(self) -> CpuSelector | None:
        """Selector that finds the attached CPU again after a reload.

        Menu ids are positional and can shift when vessels load in a different
        order, so the part tag is preferred; untagged CPUs fall back to the
        selector used for the original connect.
        """
        if self._session is None:
            return self._last_selector
        if self._session.cpu_label:
            return CpuSelector(label=self._session.cpu_label)
        last = self._last_selector
        if last is not None and (last.cpu_id is not None or last.label):
            return last
        return CpuSelector(cpu_id=self._session.cpu_id)

    async def try_detach(self) -> bool:
        """Send Ctrl+D and report whether the CPU menu came back.

        The menu returning means the channel is alive and the CPU merely lost
        power; silence means the channel itself is gone.
        """
        session = self._session
        if session is None or not session.transport.is_open():
            return False
        async with session.engine.lock:
            try:
                await session.transport.send(DETACH_KEY)
                found, _ = await session.transport.wait_for(CPU_MENU_PROMPT, self.settings.cpu_menu_timeout_ms)
            except TransportError:
                found = False
        session.connected = False
        return found
