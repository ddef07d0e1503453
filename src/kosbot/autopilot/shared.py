# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Building blocks shared by autopilot procedures."""

from __future__ import annotations

import asyncio
from typing import Protocol

from kosbot.constants import DEFAULT_QUERY_TIMEOUT_MS
from kosbot.core.error_detection import OutputMonitor
from kosbot.core.protocol import CommandResult
from kosbot.errors import ErrorLoopDetected, TransportError
from kosbot.parsing import parse_node_info, parse_number

NODE_INFO_COMMAND = (
    'IF HASNODE { PRINT "NODE|" + NEXTNODE:DELTAV:MAG + "|" + NEXTNODE:ETA. } ELSE { PRINT "NONODE". }'
)


class CommandRunner(Protocol):
    """Anything that runs console commands: a Session, SessionManager or CommandEngine."""

    monitor: OutputMonitor

    async def execute(
        self,
        command: str,
        timeout_ms: int | None = None,
        *,
        detach: bool = False,
    ) -> CommandResult: ...


async def run_checked(runner: CommandRunner, command: str, timeout_ms: int | None = None) -> CommandResult:
    """Execute a command, raising when the channel itself is gone.

    Console-level failures (kOS errors, timeouts) are returned for the caller
    to judge; a lost transport aborts the procedure.
    """
    result = await runner.execute(command, timeout_ms)
    if result.error_type == "TransportError":
        raise TransportError(result.error or "Transport lost")
    return result


def raise_if_looping(runner: CommandRunner) -> None:
    """Abort when the output monitor sees one error recurring.

    Raises:
        ErrorLoopDetected: With the normalized error signature
    """
    status = runner.monitor.get_status()
    if status.is_looping and status.error_pattern is not None:
        raise ErrorLoopDetected(status.error_pattern, status.last_error)


async def query_number(
    runner: CommandRunner, expression: str, timeout_ms: int = DEFAULT_QUERY_TIMEOUT_MS
) -> float | None:
    """``PRINT <expression>.`` parsed as a number; None when unavailable."""
    result = await run_checked(runner, f"PRINT {expression}.", timeout_ms)
    if not result.success:
        return None
    return parse_number(result.output)


async def query_bool(runner: CommandRunner, expression: str, timeout_ms: int = DEFAULT_QUERY_TIMEOUT_MS) -> bool:
    result = await run_checked(runner, f"PRINT {expression}.", timeout_ms)
    return result.success and "true" in result.output.lower()


async def query_node_info(runner: CommandRunner) -> tuple[float, float] | None:
    """Remaining delta-v and ETA of the next node, or None without a node."""
    result = await run_checked(runner, NODE_INFO_COMMAND, DEFAULT_QUERY_TIMEOUT_MS)
    return parse_node_info(result.output) if result.success else None


async def unlock_controls(runner: CommandRunner) -> CommandResult:
    return await run_checked(runner, "UNLOCK STEERING. UNLOCK THROTTLE.", DEFAULT_QUERY_TIMEOUT_MS)


async def time_warp_kick(runner: CommandRunner, level: int = 1, hold_s: float = 1.0) -> None:
    """Briefly engage physics-less warp to wake a stalled executor."""
    await run_checked(runner, f"SET WARP TO {int(level)}.", DEFAULT_QUERY_TIMEOUT_MS)
    await asyncio.sleep(hold_s)
    await run_checked(runner, "SET WARP TO 0.", DEFAULT_QUERY_TIMEOUT_MS)


async def warp_to(runner: CommandRunner, seconds_from_now: float) -> CommandResult:
    return await run_checked(
        runner, f"KUNIVERSE:TIMEWARP:WARPTO(TIME:SECONDS + {seconds_from_now:.1f}).", DEFAULT_QUERY_TIMEOUT_MS
    )


async def cancel_warp(runner: CommandRunner) -> CommandResult:
    return await run_checked(runner, "KUNIVERSE:TIMEWARP:CANCELWARP().", DEFAULT_QUERY_TIMEOUT_MS)
