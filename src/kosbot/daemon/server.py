# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Long-lived daemon sharing one console attachment between CLI invocations."""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import time
from pathlib import Path

import structlog
from pydantic import ValidationError

from kosbot.core.menu import CpuSelector
from kosbot.core.session_manager import SessionManager
from kosbot.daemon.protocol import DaemonRequest, DaemonResponse
from kosbot.errors import KosError
from kosbot.paths import daemon_pid_path, daemon_socket_path
from kosbot.settings import Settings

log = structlog.get_logger()

IDLE_CHECK_INTERVAL_S = 5.0


def read_pid(pid_path: Path) -> int | None:
    try:
        return int(pid_path.read_text().strip())
    except (OSError, ValueError):
        return None


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class KosDaemon:
    """Unix-socket server in front of a single SessionManager.

    Requests from every client pass through one lock, so commands reach the
    console strictly one at a time in arrival order.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        manager: SessionManager | None = None,
        socket_path: Path | None = None,
        pid_path: Path | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.manager = manager or SessionManager(self.settings)
        self.socket_path = socket_path or daemon_socket_path(self.settings.runtime_dir)
        self.pid_path = pid_path or daemon_pid_path(self.settings.runtime_dir)
        self._server: asyncio.AbstractServer | None = None
        self._request_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._idle_task: asyncio.Task[None] | None = None
        self._active_clients = 0
        self._writers: set[asyncio.StreamWriter] = set()
        self._last_activity = time.monotonic()

    async def start(self) -> None:
        """Bind the socket and write the pid file.

        Raises:
            RuntimeError: If another live daemon owns the socket
        """
        if self._server is not None:
            return
        existing = read_pid(self.pid_path)
        if existing is not None and existing != os.getpid() and pid_alive(existing) and self.socket_path.exists():
            raise RuntimeError(f"Daemon already running (pid {existing})")
        # Stale leftovers from a crashed daemon.
        for path in (self.socket_path, self.pid_path):
            with contextlib.suppress(FileNotFoundError):
                path.unlink()

        self.socket_path.parent.mkdir(parents=True, exist_ok=True)
        self._server = await asyncio.start_unix_server(self._on_client, path=str(self.socket_path))
        self.pid_path.write_text(str(os.getpid()))
        self._last_activity = time.monotonic()
        if self.settings.daemon_idle_timeout_s > 0:
            self._idle_task = asyncio.create_task(self._idle_watch())
        log.info("daemon_started", socket=str(self.socket_path), pid=os.getpid())

    def request_stop(self) -> None:
        self._stop_event.set()

    async def wait_stopped(self) -> None:
        """Block until a stop is requested, then shut down."""
        await self._stop_event.wait()
        await self.stop()

    async def stop(self) -> None:
        if self._server is None:
            return
        self._stop_event.set()
        self._server.close()
        for writer in list(self._writers):
            writer.close()
        await self._server.wait_closed()
        self._server = None
        if self._idle_task is not None:
            self._idle_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._idle_task
            self._idle_task = None
        await self.manager.disconnect()
        for path in (self.socket_path, self.pid_path):
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
        log.info("daemon_stopped")

    async def _idle_watch(self) -> None:
        timeout = self.settings.daemon_idle_timeout_s
        interval = min(IDLE_CHECK_INTERVAL_S, timeout / 2)
        while not self._stop_event.is_set():
            await asyncio.sleep(interval)
            idle_for = time.monotonic() - self._last_activity
            if self._active_clients == 0 and not self._request_lock.locked() and idle_for >= timeout:
                log.info("daemon_idle_shutdown", idle_s=round(idle_for, 1))
                self.request_stop()
                return

    async def _on_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._active_clients += 1
        self._writers.add(writer)
        self._last_activity = time.monotonic()
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                try:
                    request = DaemonRequest.model_validate_json(line)
                except ValidationError as e:
                    response = DaemonResponse(success=False, error=f"Invalid request: {e.errors()[0]['msg']}")
                else:
                    response = await self.handle(request)
                writer.write(response.model_dump_json().encode("utf-8") + b"\n")
                await writer.drain()
                self._last_activity = time.monotonic()
                if self._stop_event.is_set():
                    break
        except (ConnectionResetError, BrokenPipeError) as e:
            log.info("daemon_client_dropped", error=str(e))
        finally:
            self._active_clients -= 1
            self._writers.discard(writer)
            self._last_activity = time.monotonic()
            with contextlib.suppress(ConnectionResetError, BrokenPipeError):
                writer.close()
                await writer.wait_closed()

    async def handle(self, request: DaemonRequest) -> DaemonResponse:
        """Serve one request; never raises."""
        async with self._request_lock:
            log.debug("daemon_request", type=request.type)
            try:
                return await self._dispatch(request)
            except KosError as e:
                log.warning("daemon_request_failed", type=request.type, error=str(e))
                return self._response(success=False, error=str(e), error_type=type(e).__name__)

    async def _dispatch(self, request: DaemonRequest) -> DaemonResponse:
        if request.type == "ping":
            return self._response(success=True, output="pong")

        if request.type == "status":
            session = self.manager.session
            summary = session.monitor.get_summary() if session is not None else None
            return self._response(success=True, output=summary)

        if request.type == "connect":
            selector = self._selector(request)
            await self.manager.connect(selector)
            return self._response(success=True)

        if request.type == "disconnect":
            await self.manager.disconnect()
            return self._response(success=True)

        if request.type == "execute":
            if not request.command:
                return self._response(success=False, error="Missing command")
            if not self.manager.is_connected():
                await self.manager.connect(self._selector(request))
            result = await self.manager.execute(request.command, request.timeout_ms, detach=request.detach)
            if result.error_type == "TransportError" or request.detach:
                # The channel is gone (or about to be); reconnect on next use.
                await self.manager.disconnect()
            elif result.timed_out:
                await self._recheck_session()
            return self._response(
                success=result.success,
                output=result.output,
                error=result.error,
                error_type=result.error_type,
            )

        # shutdown
        self.request_stop()
        return self._response(success=True, output="shutting down")

    async def _recheck_session(self) -> None:
        """Reattach if the console stopped answering.

        A quickload or scene change resets the console without closing the
        socket, which looks exactly like a slow command.
        """
        try:
            await self.manager.ensure_connected()
        except KosError as e:
            # Disconnected now; the next execute connects from scratch.
            log.warning("daemon_session_stale", error=str(e))

    def _selector(self, request: DaemonRequest) -> CpuSelector:
        if request.cpu_id is None and request.cpu_label is None:
            return self.manager.default_selector()
        return CpuSelector(cpu_id=request.cpu_id, label=request.cpu_label)

    def _response(self, **fields: object) -> DaemonResponse:
        state = self.manager.get_state()
        return DaemonResponse(
            connected=state.connected,
            vessel=state.vessel_name,
            cpu_id=state.cpu_id,
            cpu_label=state.cpu_label,
            **fields,
        )


async def run_daemon(settings: Settings | None = None) -> None:
    """Run the daemon until shutdown, idle timeout or SIGTERM/SIGINT."""
    daemon = KosDaemon(settings)
    await daemon.start()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, daemon.request_stop)
    await daemon.wait_stopped()
