# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Application settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from kosbot.constants import (
    DEFAULT_COMMAND_TIMEOUT_MS,
    DEFAULT_CONNECT_DELAY_MS,
    DEFAULT_CONNECT_TIMEOUT_MS,
    DEFAULT_CPU_MENU_TIMEOUT_MS,
    DEFAULT_DAEMON_IDLE_TIMEOUT_S,
    DEFAULT_HEALTH_CHECK_TIMEOUT_MS,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_PROCEED_TIMEOUT_MS,
    DEFAULT_REBOOT_TIMEOUT_MS,
)


class Settings(BaseSettings):
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    transport: Literal["telnet", "tmux"] = "telnet"
    tmux_session: str = "kosbot"
    tmux_command: str | None = None

    cpu_id: int | None = None
    cpu_label: str | None = None

    connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
    cpu_menu_timeout_ms: int = DEFAULT_CPU_MENU_TIMEOUT_MS
    reboot_timeout_ms: int = DEFAULT_REBOOT_TIMEOUT_MS
    proceed_timeout_ms: int = DEFAULT_PROCEED_TIMEOUT_MS
    command_timeout_ms: int = DEFAULT_COMMAND_TIMEOUT_MS
    connect_delay_ms: int = DEFAULT_CONNECT_DELAY_MS
    health_check_timeout_ms: int = DEFAULT_HEALTH_CHECK_TIMEOUT_MS

    # MechJeb centers ignition on the node time; shift it by half the burn.
    half_burn_correction: bool = True

    trace: bool = False
    log_level: str = "WARNING"
    runtime_dir: Path | None = None
    daemon_idle_timeout_s: float = Field(default=DEFAULT_DAEMON_IDLE_TIMEOUT_S, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="KOSBOT_",
        env_nested_delimiter="__",
        extra="ignore",
    )
