# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Emergency burn that raises periapsis above a safe altitude.

Throttle follows alignment: the ship points radial-out under SAS and thrust
ramps from zero at the start angle to full at the full-throttle angle, so
propellant is not wasted pushing sideways. Once safe (or once the ship has
tilted horizontal) the controller hands off to a circularization burn.
"""

from __future__ import annotations

import asyncio
import time
from typing import Literal

from pydantic import BaseModel

from kosbot.autopilot.execute_node import ExecuteNodeOptions, execute_node
from kosbot.autopilot.shared import CommandRunner, query_number, raise_if_looping, run_checked, unlock_controls
from kosbot.core.progress import ProgressChannel
from kosbot.errors import KosError, UnsafeTimeout
from kosbot.logging import get_logger

logger = get_logger(__name__)

THROTTLE_VAR = "KOSBOT_THR"
SURFACE_ANGLE = "VANG(SHIP:FACING:FOREVECTOR, SHIP:UP:FOREVECTOR)"
ORBIT_ANGLE = (
    "VANG(SHIP:FACING:FOREVECTOR, "
    "VCRS(SHIP:VELOCITY:ORBIT, VCRS(-SHIP:BODY:POSITION, SHIP:VELOCITY:ORBIT)):NORMALIZED)"
)
CIRCULARIZE = 'SET PLANNER TO ADDONS:MJ:MANEUVERPLANNER. PRINT PLANNER:CIRCULARIZE("APOAPSIS").'
CIRCULARIZE_TIMEOUT_MS = 10_000
SETUP_TIMEOUT_MS = 4000


class CrashAvoidanceOptions(BaseModel):
    target_periapsis: float = 10_000.0
    timeout_ms: int = 300_000
    poll_interval_s: float = 1.0
    full_throttle_angle: float = 10.0
    start_throttle_angle: float = 45.0
    stage_threshold: float = 1.0
    horizontal_angle_threshold: float = 80.0
    min_vertical_speed: float = 20.0
    throttle_step: float = 0.02
    stage_settle_s: float = 0.5
    circularize: bool = True
    execute_node: ExecuteNodeOptions | None = None


class CrashAvoidanceState(BaseModel):
    initial_periapsis: float
    current_periapsis: float
    current_apoapsis: float | None = None
    initial_delta_v: float
    stages_used: int = 0
    throttle: float = 0.0
    nav_mode: Literal["surface", "orbit"] = "orbit"
    outcome: Literal["running", "safe", "circularized", "failed"] = "running"


class CrashAvoidanceResult(BaseModel):
    success: bool
    error: str | None = None
    error_type: str | None = None
    initial_periapsis: float | None = None
    final_periapsis: float | None = None
    final_apoapsis: float | None = None
    delta_v_used: float = 0.0
    stages_used: int = 0
    circularized: bool = False
    outcome: Literal["safe", "circularized", "failed"] = "failed"


def calculate_throttle(angle: float, full_throttle_angle: float, start_angle: float) -> float:
    """Linear throttle ramp: 1.0 at/below ``full_throttle_angle``, 0.0 at/above ``start_angle``."""
    if angle <= full_throttle_angle:
        return 1.0
    if angle >= start_angle:
        return 0.0
    return 1.0 - (angle - full_throttle_angle) / (start_angle - full_throttle_angle)


class _CrashAvoidance:
    def __init__(self, runner: CommandRunner, options: CrashAvoidanceOptions, progress: ProgressChannel | None) -> None:
        self.runner = runner
        self.options = options
        self.progress = progress
        self.state: CrashAvoidanceState | None = None
        self._throttle_locked = False

    def _publish(self, stage: str, message: str, **data: object) -> None:
        if self.progress is not None:
            self.progress.publish(stage, message, **data)

    async def run(self) -> CrashAvoidanceResult:
        opts = self.options
        self.runner.monitor.clear()
        try:
            initial_pe = await query_number(self.runner, "PERIAPSIS")
            initial_dv = await query_number(self.runner, "SHIP:DELTAV:CURRENT") or 0.0
        except KosError as e:
            return CrashAvoidanceResult(success=False, error=str(e), error_type=type(e).__name__)
        if initial_pe is None:
            return CrashAvoidanceResult(success=False, error="Could not read periapsis", error_type="KosError")

        logger.info("crash_avoidance_start", periapsis=initial_pe, target=opts.target_periapsis, delta_v=initial_dv)
        if initial_pe > opts.target_periapsis:
            self._publish("safe", "already safe, no burn needed", periapsis=initial_pe)
            return CrashAvoidanceResult(
                success=True,
                initial_periapsis=initial_pe,
                final_periapsis=initial_pe,
                outcome="safe",
            )
        if initial_dv < 1:
            return CrashAvoidanceResult(
                success=False,
                error="No delta-v available",
                error_type="KosError",
                initial_periapsis=initial_pe,
                final_periapsis=initial_pe,
            )

        self.state = CrashAvoidanceState(
            initial_periapsis=initial_pe, current_periapsis=initial_pe, initial_delta_v=initial_dv
        )
        try:
            await self._burn_until_safe()
        except KosError as e:
            await self._release()
            self.state.outcome = "failed"
            return await self._finish(error=str(e), error_type=type(e).__name__)
        except asyncio.CancelledError:
            await asyncio.shield(self._release())
            raise
        await self._release()
        return await self._finish()

    async def _burn_until_safe(self) -> None:
        opts = self.options
        state = self.state
        assert state is not None

        await run_checked(self.runner, 'RCS ON. SAS ON. WAIT 1. SET SASMODE TO "RADIALOUT". WAIT 0.5.', SETUP_TIMEOUT_MS)
        navmode = await run_checked(self.runner, "PRINT NAVMODE.")
        state.nav_mode = "surface" if "SURFACE" in navmode.output.upper() else "orbit"
        angle_expr = SURFACE_ANGLE if state.nav_mode == "surface" else ORBIT_ANGLE
        self._publish("burning", "aligning radial-out", nav_mode=state.nav_mode)

        await run_checked(self.runner, f"SET {THROTTLE_VAR} TO 0.")
        await run_checked(self.runner, f"LOCK THROTTLE TO {THROTTLE_VAR}.")
        self._throttle_locked = True

        deadline = time.monotonic() + opts.timeout_ms / 1000
        last_throttle: float | None = None
        while time.monotonic() < deadline:
            angle = await query_number(self.runner, angle_expr)
            raise_if_looping(self.runner)
            throttle = calculate_throttle(
                angle if angle is not None else 180.0, opts.full_throttle_angle, opts.start_throttle_angle
            )
            if last_throttle is None or abs(throttle - last_throttle) > opts.throttle_step:
                await run_checked(self.runner, f"SET {THROTTLE_VAR} TO {throttle:.2f}.")
                last_throttle = throttle
                state.throttle = throttle

            state.current_periapsis = await query_number(self.runner, "PERIAPSIS") or state.current_periapsis
            state.current_apoapsis = await query_number(self.runner, "APOAPSIS")

            if await self._is_safe():
                state.outcome = "safe"
                await self._hand_off(required=False)
                return

            up_angle = await query_number(self.runner, SURFACE_ANGLE)
            if up_angle is not None and up_angle > opts.horizontal_angle_threshold:
                self._publish("burning", "ship horizontal, handing off to circularization", up_angle=up_angle)
                await self._hand_off(required=True)
                return

            if throttle > 0:
                stage_dv = await query_number(self.runner, "STAGE:DELTAV:CURRENT")
                if stage_dv is not None and stage_dv < opts.stage_threshold:
                    await run_checked(self.runner, "STAGE.")
                    state.stages_used += 1
                    self._publish("staging", "stage depleted, staged", stages_used=state.stages_used)
                    await asyncio.sleep(opts.stage_settle_s)
                    continue

            self._publish(
                "burning",
                "burn progress",
                angle=angle,
                throttle=throttle,
                periapsis=state.current_periapsis,
            )
            await asyncio.sleep(opts.poll_interval_s)

        raise UnsafeTimeout(state.current_periapsis, opts.target_periapsis)

    async def _is_safe(self) -> bool:
        opts = self.options
        state = self.state
        assert state is not None
        if state.nav_mode == "surface":
            vertical = await query_number(self.runner, "SHIP:VERTICALSPEED")
            return (
                vertical is not None
                and vertical >= opts.min_vertical_speed
                and state.current_apoapsis is not None
                and state.current_apoapsis > opts.target_periapsis
            )
        return state.current_periapsis > opts.target_periapsis

    async def _hand_off(self, *, required: bool) -> None:
        """Stop the burn and circularize at apoapsis.

        When the ship is already safe a failed circularization is only logged;
        after a horizontal transition it is the only way to safety.
        """
        state = self.state
        assert state is not None
        await self._release()
        if not self.options.circularize:
            if required:
                raise KosError("Ship horizontal before reaching a safe periapsis")
            return

        created = await run_checked(self.runner, CIRCULARIZE, CIRCULARIZE_TIMEOUT_MS)
        if "True" not in created.output:
            logger.warning("circularize_node_failed", output=created.output)
            if required:
                raise KosError(f"Failed to create circularization node: {created.output or created.error}")
            return

        result = await execute_node(self.runner, self.options.execute_node, self.progress)
        if result.success:
            state.outcome = "circularized"
        elif required:
            raise KosError(f"Circularization failed: {result.error}")
        else:
            logger.warning("circularize_failed", error=result.error)

    async def _release(self) -> None:
        """Zero throttle and unlock controls; safe to repeat."""
        try:
            if self._throttle_locked:
                await run_checked(self.runner, f"SET {THROTTLE_VAR} TO 0.")
            await unlock_controls(self.runner)
            self._throttle_locked = False
        except KosError as e:
            logger.warning("crash_avoidance_release_failed", error=str(e))

    async def _finish(self, error: str | None = None, error_type: str | None = None) -> CrashAvoidanceResult:
        state = self.state
        assert state is not None
        final_dv = final_pe = final_ap = None
        try:
            final_dv = await query_number(self.runner, "SHIP:DELTAV:CURRENT")
            final_pe = await query_number(self.runner, "PERIAPSIS")
            final_ap = await query_number(self.runner, "APOAPSIS")
        except KosError as e:
            logger.warning("crash_avoidance_final_query_failed", error=str(e))

        final_pe = final_pe if final_pe is not None else state.current_periapsis
        success = error is None and state.outcome in ("safe", "circularized")
        logger.info(
            "crash_avoidance_done",
            outcome=state.outcome,
            periapsis=final_pe,
            stages_used=state.stages_used,
        )
        return CrashAvoidanceResult(
            success=success,
            error=error,
            error_type=error_type,
            initial_periapsis=state.initial_periapsis,
            final_periapsis=final_pe,
            final_apoapsis=final_ap if final_ap is not None else state.current_apoapsis,
            delta_v_used=max(0.0, state.initial_delta_v - final_dv) if final_dv is not None else 0.0,
            stages_used=state.stages_used,
            circularized=state.outcome == "circularized",
            outcome=state.outcome if success else "failed",
        )


async def crash_avoidance(
    runner: CommandRunner,
    options: CrashAvoidanceOptions | None = None,
    progress: ProgressChannel | None = None,
) -> CrashAvoidanceResult:
    """Burn radial-out until periapsis clears the target altitude.

    Args:
        runner: Session attached to the vessel's CPU
        options: Thresholds and timing overrides
        progress: Optional channel receiving burn progress

    Returns:
        Result with altitudes, delta-v used and stages used; failures are
        reported, not raised
    """
    return await _CrashAvoidance(runner, options or CrashAvoidanceOptions(), progress).run()
