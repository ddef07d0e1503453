# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Automation client for the kOS scripting console."""

from __future__ import annotations

from kosbot.core.protocol import CommandEngine, CommandResult
from kosbot.core.session import Session, SessionState
from kosbot.core.session_manager import SessionManager
from kosbot.settings import Settings

__all__ = ["CommandEngine", "CommandResult", "Session", "SessionManager", "SessionState", "Settings"]
