# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Filesystem paths for daemon and trace files."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_runtime_dir

from kosbot.constants import DAEMON_PID_NAME, DAEMON_SOCKET_NAME

ENV_RUNTIME_DIR = "KOSBOT_RUNTIME_DIR"


def runtime_dir(override: Path | None = None) -> Path:
    """Get (and create) the runtime directory for sockets, pid and trace files."""
    if override is not None:
        root = Path(override)
    else:
        env_root = os.getenv(ENV_RUNTIME_DIR)
        root = Path(env_root) if env_root else Path(user_runtime_dir("kosbot", "kosbot"))
    root.mkdir(parents=True, exist_ok=True)
    return root


def daemon_socket_path(override: Path | None = None) -> Path:
    return runtime_dir(override) / DAEMON_SOCKET_NAME


def daemon_pid_path(override: Path | None = None) -> Path:
    return runtime_dir(override) / DAEMON_PID_NAME


def trace_log_path(override: Path | None = None) -> Path:
    return runtime_dir(override) / "transport-trace.jsonl"


def daemon_log_path(override: Path | None = None) -> Path:
    return runtime_dir(override) / "daemon.log"
