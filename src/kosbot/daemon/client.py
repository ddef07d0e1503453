# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Client side of the daemon socket, with auto-spawn."""

from __future__ import annotations

import asyncio
import contextlib
import os
import subprocess
import sys
from pathlib import Path

import structlog

from kosbot.constants import DAEMON_CONNECT_TIMEOUT_S, DAEMON_SPAWN_INTERVAL_S, DAEMON_SPAWN_RETRIES
from kosbot.daemon.protocol import DaemonRequest, DaemonResponse
from kosbot.daemon.server import pid_alive, read_pid
from kosbot.errors import TransportError
from kosbot.paths import daemon_pid_path, daemon_socket_path
from kosbot.settings import Settings

log = structlog.get_logger()

# Slack on top of the command timeout for daemon-side connect and framing.
RESPONSE_MARGIN_S = 5.0

SPAWN_ENV_FIELDS = ("host", "port", "transport", "tmux_session", "cpu_id", "cpu_label", "log_level", "runtime_dir")


class DaemonClient:
    """One request per connection to the daemon socket."""

    def __init__(self, socket_path: Path | None = None, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self.socket_path = socket_path or daemon_socket_path(self.settings.runtime_dir)

    async def request(self, request: DaemonRequest) -> DaemonResponse:
        """Send one request and wait for its response.

        Raises:
            TransportError: If the daemon is unreachable or does not answer
        """
        timeout_ms = request.timeout_ms or self.settings.command_timeout_ms
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_unix_connection(str(self.socket_path)),
                timeout=DAEMON_CONNECT_TIMEOUT_S,
            )
        except (OSError, TimeoutError) as e:
            raise TransportError(f"Daemon not reachable at {self.socket_path}") from e

        try:
            writer.write(request.model_dump_json().encode("utf-8") + b"\n")
            await writer.drain()
            line = await asyncio.wait_for(reader.readline(), timeout=timeout_ms / 1000 + RESPONSE_MARGIN_S)
        except TimeoutError as e:
            raise TransportError(f"Daemon did not answer '{request.type}' in time") from e
        except (ConnectionResetError, BrokenPipeError) as e:
            raise TransportError("Daemon connection lost") from e
        finally:
            writer.close()
            with contextlib.suppress(ConnectionResetError, BrokenPipeError):
                await writer.wait_closed()

        if not line:
            raise TransportError("Daemon closed the connection without answering")
        return DaemonResponse.model_validate_json(line)

    async def ping(self) -> bool:
        try:
            response = await self.request(DaemonRequest(type="ping", timeout_ms=1000))
        except TransportError:
            return False
        return response.success

    async def connect(self, cpu_id: int | None = None, cpu_label: str | None = None) -> DaemonResponse:
        return await self.request(DaemonRequest(type="connect", cpu_id=cpu_id, cpu_label=cpu_label))

    async def disconnect(self) -> DaemonResponse:
        return await self.request(DaemonRequest(type="disconnect"))

    async def execute(self, command: str, timeout_ms: int | None = None, *, detach: bool = False) -> DaemonResponse:
        return await self.request(DaemonRequest(type="execute", command=command, timeout_ms=timeout_ms, detach=detach))

    async def status(self) -> DaemonResponse:
        return await self.request(DaemonRequest(type="status"))

    async def shutdown(self) -> DaemonResponse:
        return await self.request(DaemonRequest(type="shutdown"))


def is_daemon_running(settings: Settings | None = None) -> bool:
    """Cheap check: pid file names a live process and the socket exists."""
    settings = settings or Settings()
    pid = read_pid(daemon_pid_path(settings.runtime_dir))
    return pid is not None and pid_alive(pid) and daemon_socket_path(settings.runtime_dir).exists()


async def ensure_daemon_running(settings: Settings | None = None) -> DaemonClient:
    """Return a client for a running daemon, spawning one if needed.

    Raises:
        TransportError: If a spawned daemon never answers
    """
    settings = settings or Settings()
    client = DaemonClient(settings=settings)
    if is_daemon_running(settings) and await client.ping():
        return client

    log.info("daemon_spawning")
    env = dict(os.environ)
    # Carry command-line overrides into the spawned process.
    for name in SPAWN_ENV_FIELDS:
        value = getattr(settings, name)
        if value is not None:
            env[f"KOSBOT_{name.upper()}"] = str(value)
    subprocess.Popen(
        [sys.executable, "-m", "kosbot", "daemon", "--log-to-file"],
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )

    for _ in range(DAEMON_SPAWN_RETRIES):
        await asyncio.sleep(DAEMON_SPAWN_INTERVAL_S)
        if await client.ping():
            log.info("daemon_spawned")
            return client

    raise TransportError("Failed to start daemon")
