# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Core session management and command protocol."""

from __future__ import annotations

from kosbot.core.error_detection import CommandErrorDetector, MonitorStatus, OutputMonitor
from kosbot.core.menu import CpuSelector, MenuEntry, parse_cpu_menu, select_entry
from kosbot.core.progress import ProgressChannel, ProgressEvent
from kosbot.core.protocol import CommandEngine, CommandResult, PendingCommand
from kosbot.core.session import Session, SessionState
from kosbot.core.session_manager import HealthCheckResult, SessionManager

__all__ = [
    "CommandEngine",
    "CommandErrorDetector",
    "CommandResult",
    "CpuSelector",
    "HealthCheckResult",
    "MenuEntry",
    "MonitorStatus",
    "OutputMonitor",
    "PendingCommand",
    "ProgressChannel",
    "ProgressEvent",
    "Session",
    "SessionManager",
    "SessionState",
    "parse_cpu_menu",
    "select_entry",
]
