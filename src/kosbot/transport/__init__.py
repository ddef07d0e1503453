# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Transport layer for kOS console connections."""

from __future__ import annotations

from typing import TYPE_CHECKING

from kosbot.logging.trace import TraceLogger
from kosbot.paths import trace_log_path
from kosbot.transport.base import ConnectionTransport
from kosbot.transport.chaos import ChaosTransport
from kosbot.transport.telnet import TelnetTransport
from kosbot.transport.tmux import TmuxTransport
from kosbot.transport.tracing import TracingTransport

if TYPE_CHECKING:
    from kosbot.settings import Settings

__all__ = [
    "ChaosTransport",
    "ConnectionTransport",
    "TelnetTransport",
    "TmuxTransport",
    "TracingTransport",
    "create_transport",
]


def create_transport(settings: Settings) -> ConnectionTransport:
    """Build the transport selected by settings.

    Args:
        settings: Application settings

    Returns:
        Unopened transport, wrapped for tracing when enabled

    Raises:
        ValueError: If the transport type is unknown
    """
    transport: ConnectionTransport
    if settings.transport == "telnet":
        transport = TelnetTransport(settings.host, settings.port, connect_timeout_ms=settings.connect_timeout_ms)
    elif settings.transport == "tmux":
        transport = TmuxTransport(
            settings.host,
            settings.port,
            session_name=settings.tmux_session,
            command=settings.tmux_command,
        )
    else:
        raise ValueError(f"Unknown transport: {settings.transport}")

    if settings.trace:
        trace = TraceLogger(trace_log_path(settings.runtime_dir), label=settings.transport)
        transport = TracingTransport(transport, trace)
    return transport
