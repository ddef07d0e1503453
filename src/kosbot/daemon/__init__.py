# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Background daemon holding one shared console attachment."""

from __future__ import annotations

from kosbot.daemon.client import DaemonClient, ensure_daemon_running, is_daemon_running
from kosbot.daemon.protocol import DaemonRequest, DaemonResponse
from kosbot.daemon.server import KosDaemon, run_daemon

__all__ = [
    "DaemonClient",
    "DaemonRequest",
    "DaemonResponse",
    "KosDaemon",
    "ensure_daemon_running",
    "is_daemon_running",
    "run_daemon",
]
