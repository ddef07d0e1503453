# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Tests for settings and runtime paths."""

from __future__ import annotations

from pathlib import Path

import pytest

from kosbot.paths import daemon_pid_path, daemon_socket_path, runtime_dir, trace_log_path
from kosbot.settings import Settings


def test_defaults() -> None:
    settings = Settings()

    assert settings.host == "127.0.0.1"
    assert settings.port == 5410
    assert settings.transport == "telnet"
    assert settings.command_timeout_ms == 30000
    assert settings.half_burn_correction is True


def test_env_var_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KOSBOT_PORT", "5411")
    monkeypatch.setenv("KOSBOT_CPU_LABEL", "guidance")
    monkeypatch.setenv("KOSBOT_HALF_BURN_CORRECTION", "false")

    settings = Settings()

    assert settings.port == 5411
    assert settings.cpu_label == "guidance"
    assert settings.half_burn_correction is False


def test_runtime_dir_env_var(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "run"
    monkeypatch.setenv("KOSBOT_RUNTIME_DIR", str(target))

    assert runtime_dir() == target
    assert target.is_dir()


def test_runtime_dir_override_wins(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KOSBOT_RUNTIME_DIR", str(tmp_path / "env"))

    assert runtime_dir(tmp_path / "explicit") == tmp_path / "explicit"


def test_runtime_dir_platformdirs_default(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("kosbot.paths.user_runtime_dir", lambda *args: str(tmp_path / "xdg"))

    assert runtime_dir() == tmp_path / "xdg"


def test_daemon_files_share_runtime_dir(tmp_path: Path) -> None:
    assert daemon_socket_path(tmp_path) == tmp_path / "kosbot.sock"
    assert daemon_pid_path(tmp_path) == tmp_path / "kosbot.pid"
    assert trace_log_path(tmp_path).parent == tmp_path
