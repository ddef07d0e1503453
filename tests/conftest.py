# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from kosbot.settings import Settings

from .fake_kos import MENU, FakeKos

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer KOSBOT_* variables out of the tests."""
    for name in list(os.environ):
        if name.startswith("KOSBOT_"):
            monkeypatch.delenv(name)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with short timeouts for local fakes."""
    return Settings(
        runtime_dir=tmp_path,
        connect_delay_ms=0,
        proceed_timeout_ms=500,
        cpu_menu_timeout_ms=1000,
        reboot_timeout_ms=1000,
        command_timeout_ms=2000,
        health_check_timeout_ms=500,
        daemon_idle_timeout_s=0,
    )


@pytest.fixture
def fake_kos() -> FakeKos:
    """Console double answering PRINT commands."""
    return FakeKos()


@pytest.fixture
def fake_kos_with_menu() -> FakeKos:
    """Console double that starts at the CPU menu."""
    return FakeKos(menu=MENU)
