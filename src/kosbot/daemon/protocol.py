# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Newline-delimited JSON messages exchanged with the daemon."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

RequestType = Literal["ping", "connect", "disconnect", "execute", "status", "shutdown"]


class DaemonRequest(BaseModel):
    type: RequestType
    command: str | None = None
    timeout_ms: int | None = None
    detach: bool = False
    cpu_id: int | None = None
    cpu_label: str | None = None


class DaemonResponse(BaseModel):
    success: bool
    output: str | None = None
    error: str | None = None
    error_type: str | None = None
    connected: bool = False
    vessel: str | None = None
    cpu_id: int | None = None
    cpu_label: str | None = None
