# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Shared constants for kosbot."""

from __future__ import annotations

# Remote console
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5410
LINE_TERMINATOR = "\r\n"
DETACH_KEY = "\x04"  # Ctrl+D

# Console markers
CPU_MENU_PROMPT = "Choose a CPU"
ATTACH_ACK = "Proceed"
REBOOT_COMMAND = "REBOOT."

# Default timeouts
DEFAULT_CONNECT_TIMEOUT_MS = 10000
DEFAULT_CPU_MENU_TIMEOUT_MS = 5000
DEFAULT_REBOOT_TIMEOUT_MS = 8000
DEFAULT_PROCEED_TIMEOUT_MS = 3000
DEFAULT_COMMAND_TIMEOUT_MS = 30000
DEFAULT_CONNECT_DELAY_MS = 500
DEFAULT_HEALTH_CHECK_TIMEOUT_MS = 1500
DEFAULT_QUERY_TIMEOUT_MS = 2000

# Reader
DEFAULT_MAX_BYTES = 8192
DEFAULT_POLL_INTERVAL_S = 0.05

# Output monitor
MONITOR_WINDOW_LINES = 100
MONITOR_LOOP_WINDOW = 20
MONITOR_LOOP_THRESHOLD = 5
MONITOR_SIGNATURE_MAX_LEN = 100

# Daemon
DAEMON_SOCKET_NAME = "kosbot.sock"
DAEMON_PID_NAME = "kosbot.pid"
DEFAULT_DAEMON_IDLE_TIMEOUT_S = 300.0
DAEMON_SPAWN_RETRIES = 15
DAEMON_SPAWN_INTERVAL_S = 0.2
DAEMON_CONNECT_TIMEOUT_S = 5.0
