# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Closed-loop autopilot procedures built on the command protocol."""

from __future__ import annotations

from kosbot.autopilot.crash_avoidance import (
    CrashAvoidanceOptions,
    CrashAvoidanceResult,
    CrashAvoidanceState,
    calculate_throttle,
    crash_avoidance,
)
from kosbot.autopilot.execute_node import (
    ExecuteNodeOptions,
    ExecuteNodeResult,
    ManeuverAttempt,
    ManeuverExecutor,
    ManeuverState,
    disable_node_executor,
    execute_node,
    get_node_progress,
    is_node_executor_enabled,
)

__all__ = [
    "CrashAvoidanceOptions",
    "CrashAvoidanceResult",
    "CrashAvoidanceState",
    "ExecuteNodeOptions",
    "ExecuteNodeResult",
    "ManeuverAttempt",
    "ManeuverExecutor",
    "ManeuverState",
    "calculate_throttle",
    "crash_avoidance",
    "disable_node_executor",
    "execute_node",
    "get_node_progress",
    "is_node_executor_enabled",
]
