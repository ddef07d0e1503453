# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Execute the next maneuver node with MechJeb's node executor.

The procedure is a small state machine::

    IDLE -> VALIDATING -> ALIGNING -> WARPING -> BURNING -> COMPLETED
                             ^                     |
                             +---- retry (<= 3) ---+          any -> FAILED

Every exit other than COMPLETED runs the cleanup path (staging trigger
disarmed, executor off, steering and throttle unlocked), including timeouts,
error loops and cancellation. COMPLETED disarms the staging trigger too; only
``wait_for_completion=False`` leaves it armed for the burn still under way.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from kosbot.autopilot.shared import (
    CommandRunner,
    cancel_warp,
    query_bool,
    query_node_info,
    query_number,
    raise_if_looping,
    run_checked,
    time_warp_kick,
    unlock_controls,
    warp_to,
)
from kosbot.core.progress import ProgressChannel
from kosbot.errors import AlignmentFailure, BurnIncomplete, InsufficientDeltaV, KosError, ManeuverTimeout
from kosbot.logging import get_logger
from kosbot.parsing import parse_delimited, parse_number

logger = get_logger(__name__)

ENABLE_EXECUTOR = "SET ADDONS:MJ:NODE:ENABLED TO TRUE."
DISABLE_EXECUTOR = "SET ADDONS:MJ:NODE:ENABLED TO FALSE."
AUTOSTAGE_FLAG = "KOSBOT_AUTOSTAGE"
# Guarded by a flag so cleanup can disarm it; kOS has no way to remove a WHEN.
STAGING_TRIGGER = (
    f"SET {AUTOSTAGE_FLAG} TO TRUE. "
    f'WHEN {AUTOSTAGE_FLAG} AND STAGE:DELTAV:CURRENT < 1 THEN {{ STAGE. PRINT "Auto-staged during burn". }}'
)
DISARM_STAGING = f"SET {AUTOSTAGE_FLAG} TO FALSE."
ALIGN_ANGLE = "VANG(SHIP:FACING:FOREVECTOR, NEXTNODE:BURNVECTOR)"
POINT_AT_NODE = 'SAS ON. WAIT 1. SET SASMODE TO "MANEUVER". WAIT 0.5.'
BURN_POLL = 'IF HASNODE { PRINT NEXTNODE:DELTAV:MAG + "|" + ADDONS:MJ:NODE:ENABLED. } ELSE { PRINT "NONODE". }'
REMOVE_NODE = "IF HASNODE { REMOVE NEXTNODE. }"

BURN_POLL_TIMEOUT_MS = 3000
WARP_KICK_MIN_ETA_S = 30.0
WARP_EXIT_MARGIN_S = 5.0


class ManeuverState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    ALIGNING = "aligning"
    WARPING = "warping"
    BURNING = "burning"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecuteNodeOptions(BaseModel):
    timeout_ms: int = 600_000
    poll_interval_s: float = 10.0
    max_attempts: int = Field(default=3, ge=1)
    complete_threshold: float = 0.5
    align_threshold_deg: float = 3.0
    align_progress_deg: float = 0.5
    align_stuck_s: float = 3.0
    align_timeout_s: float = 60.0
    align_poll_s: float = 1.0
    warp_lead_s: float = 30.0
    warp_min_eta_s: float = 60.0
    warp_poll_s: float = 1.0
    warp_max_polls: int = 600
    warp_kick_hold_s: float = 1.0
    retry_delay_s: float = 2.0
    half_burn_correction: bool = True
    wait_for_completion: bool = True


class ManeuverAttempt(BaseModel):
    """State of one pass through align, warp and burn."""

    attempt: int
    required: float
    available: float | None = None
    remaining: float | None = None
    angle: float | None = None
    executor_enabled: bool = False


class DeltaVSummary(BaseModel):
    required: float
    available: float | None = None
    remaining: float | None = None


class ExecuteNodeResult(BaseModel):
    success: bool
    nodes_executed: int = 0
    error: str | None = None
    error_type: str | None = None
    delta_v: DeltaVSummary | None = None
    attempts: int = 0
    final_state: ManeuverState = ManeuverState.IDLE


class _Plan(BaseModel):
    required: float
    available: float | None
    stage_available: float | None
    burn_time: float
    needs_staging: bool


class ManeuverExecutor:
    """Runs one node execution; create a new executor per node."""

    def __init__(
        self,
        runner: CommandRunner,
        options: ExecuteNodeOptions | None = None,
        progress: ProgressChannel | None = None,
    ) -> None:
        self.runner = runner
        self.options = options or ExecuteNodeOptions()
        self.progress = progress
        self.state = ManeuverState.IDLE
        self.attempts: list[ManeuverAttempt] = []
        self._plan: _Plan | None = None
        self._staging_armed = False

    def _transition(self, state: ManeuverState, message: str = "", **data: object) -> None:
        logger.info("maneuver_state", previous=self.state.value, state=state.value, **data)
        self.state = state
        self._publish(message or state.value, **data)

    def _publish(self, message: str, **data: object) -> None:
        if self.progress is not None:
            self.progress.publish(self.state.value, message, **data)

    async def run(self) -> ExecuteNodeResult:
        self.runner.monitor.clear()
        try:
            return await self._run()
        except KosError as e:
            await self._cleanup()
            self._transition(ManeuverState.FAILED, str(e), error_type=type(e).__name__)
            return self._result(success=False, error=str(e), error_type=type(e).__name__)
        except asyncio.CancelledError:
            await asyncio.shield(self._cleanup())
            self._transition(ManeuverState.FAILED, "cancelled")
            raise

    async def _run(self) -> ExecuteNodeResult:
        opts = self.options
        deadline = time.monotonic() + opts.timeout_ms / 1000

        self._transition(ManeuverState.VALIDATING)
        plan = self._plan = await self._validate()
        if opts.half_burn_correction and plan.burn_time > 0:
            await self._apply_half_burn(plan.burn_time)

        remaining: float | None = plan.required
        for number in range(1, opts.max_attempts + 1):
            attempt = ManeuverAttempt(attempt=number, required=plan.required, available=plan.available)
            self.attempts.append(attempt)

            self._transition(ManeuverState.ALIGNING, attempt=number)
            attempt.angle = await self._align()

            self._transition(ManeuverState.WARPING, attempt=number)
            await self._warp()

            self._transition(ManeuverState.BURNING, attempt=number)
            outcome = await self._burn(attempt, deadline)
            remaining = attempt.remaining
            if outcome == "started":
                self._publish("executor enabled; not waiting for completion")
                return self._result(success=True)
            if outcome == "complete":
                await self._disarm_staging()
                self._transition(ManeuverState.COMPLETED, remaining=remaining)
                return self._result(success=True, nodes_executed=1)

            logger.warning("burn_stalled", attempt=number, remaining=remaining)
            if number < opts.max_attempts:
                self._publish(f"executor stopped with {remaining:.1f} m/s left, retrying", remaining=remaining)
                await asyncio.sleep(opts.retry_delay_s)

        raise BurnIncomplete(opts.max_attempts, remaining or 0.0)

    async def _validate(self) -> _Plan:
        if not await query_bool(self.runner, "HASNODE"):
            raise KosError("No maneuver node planned")

        required = await query_number(self.runner, "NEXTNODE:DELTAV:MAG")
        if required is None:
            raise KosError("Could not read maneuver node delta-v")
        available = await query_number(self.runner, "SHIP:DELTAV:CURRENT")
        stage_available = await query_number(self.runner, "STAGE:DELTAV:CURRENT")

        if available is not None and available < required:
            raise InsufficientDeltaV(required, available)

        needs_staging = stage_available is not None and available is not None and stage_available < required
        if needs_staging:
            self._staging_armed = True
            await run_checked(self.runner, STAGING_TRIGGER)
            self._publish("staging trigger installed", stage_available=stage_available)

        burn_time = await query_number(self.runner, "ADDONS:MJ:INFO:NEXTMANEUVERNODEBURNTIME") or 0.0
        self._publish(
            "delta-v budget ok",
            required=required,
            available=available,
            burn_time=burn_time,
            needs_staging=needs_staging,
        )
        return _Plan(
            required=required,
            available=available,
            stage_available=stage_available,
            burn_time=burn_time,
            needs_staging=needs_staging,
        )

    async def _apply_half_burn(self, burn_time: float) -> None:
        half = burn_time / 2
        await run_checked(self.runner, f"SET nd TO NEXTNODE. SET nd:ETA TO nd:ETA - {half:.2f}.")
        self._publish("node shifted earlier by half the burn", shift_s=half)

    async def _align(self) -> float:
        opts = self.options
        rcs_was_on = await query_bool(self.runner, "RCS")
        await run_checked(self.runner, POINT_AT_NODE)

        start = time.monotonic()
        last_progress = start
        best = float("inf")
        angle: float | None = None
        rcs_forced = False
        try:
            while True:
                angle = await query_number(self.runner, ALIGN_ANGLE)
                raise_if_looping(self.runner)
                now = time.monotonic()
                if angle is not None:
                    self._publish("aligning", angle=angle)
                    if angle < opts.align_threshold_deg:
                        return angle
                    if angle < best - opts.align_progress_deg:
                        best = angle
                        last_progress = now

                if not rcs_was_on and not rcs_forced and now - last_progress >= opts.align_stuck_s:
                    # Reaction wheels alone can stall on heavy craft.
                    await run_checked(self.runner, "RCS ON.")
                    rcs_forced = True
                    self._publish("rotation stalled, RCS enabled", angle=angle)

                if now - start >= opts.align_timeout_s:
                    await run_checked(self.runner, "SAS OFF.")
                    raise AlignmentFailure(angle, now - start)
                await asyncio.sleep(opts.align_poll_s)
        finally:
            if rcs_forced:
                with contextlib.suppress(KosError):
                    await run_checked(self.runner, "RCS OFF.")

    async def _warp(self) -> None:
        opts = self.options
        eta = await query_number(self.runner, "NEXTNODE:ETA")
        if eta is None or eta <= opts.warp_min_eta_s:
            return
        await warp_to(self.runner, eta - opts.warp_lead_s)
        self._publish("warping to node", eta=eta)
        for _ in range(opts.warp_max_polls):
            await asyncio.sleep(opts.warp_poll_s)
            eta = await query_number(self.runner, "NEXTNODE:ETA")
            raise_if_looping(self.runner)
            if eta is not None and eta <= opts.warp_lead_s + WARP_EXIT_MARGIN_S:
                break
        await cancel_warp(self.runner)

    async def _burn(
        self, attempt: ManeuverAttempt, deadline: float
    ) -> Literal["complete", "stalled", "started"]:
        opts = self.options
        await run_checked(self.runner, ENABLE_EXECUTOR)
        await run_checked(self.runner, "SAS OFF.")
        attempt.executor_enabled = True

        eta = await query_number(self.runner, "NEXTNODE:ETA")
        if eta is not None and eta > WARP_KICK_MIN_ETA_S:
            await time_warp_kick(self.runner, hold_s=opts.warp_kick_hold_s)

        if not opts.wait_for_completion:
            return "started"

        while True:
            if time.monotonic() >= deadline:
                raise ManeuverTimeout(opts.timeout_ms / 1000, attempt.remaining)
            await asyncio.sleep(opts.poll_interval_s)

            result = await run_checked(self.runner, BURN_POLL, BURN_POLL_TIMEOUT_MS)
            raise_if_looping(self.runner)
            if not result.success:
                continue
            if "NONODE" in result.output:
                attempt.remaining = 0.0
                return "complete"
            fields = parse_delimited(result.output)
            if not fields or len(fields) != 2:
                continue
            remaining = parse_number(fields[0])
            if remaining is None:
                continue

            attempt.remaining = remaining
            attempt.executor_enabled = fields[1].lower() == "true"
            self._publish("burning", remaining=attempt.remaining, executor_enabled=attempt.executor_enabled)

            if attempt.remaining < opts.complete_threshold:
                await run_checked(self.runner, REMOVE_NODE)
                return "complete"
            if not attempt.executor_enabled:
                return "stalled"

    async def _cleanup(self) -> None:
        """Release every actuator; runs on all failure paths."""
        for step in (self._disarm_staging, self._disable_executor, self._unlock):
            try:
                await step()
            except KosError as e:
                logger.warning("maneuver_cleanup_failed", step=step.__name__, error=str(e))

    async def _disarm_staging(self) -> None:
        if self._staging_armed:
            await run_checked(self.runner, DISARM_STAGING)
            self._staging_armed = False

    async def _disable_executor(self) -> None:
        await run_checked(self.runner, DISABLE_EXECUTOR)

    async def _unlock(self) -> None:
        await unlock_controls(self.runner)

    def _result(
        self,
        *,
        success: bool,
        nodes_executed: int = 0,
        error: str | None = None,
        error_type: str | None = None,
    ) -> ExecuteNodeResult:
        delta_v = None
        if self._plan is not None:
            last = self.attempts[-1] if self.attempts else None
            delta_v = DeltaVSummary(
                required=self._plan.required,
                available=self._plan.available,
                remaining=last.remaining if last else None,
            )
        return ExecuteNodeResult(
            success=success,
            nodes_executed=nodes_executed,
            error=error,
            error_type=error_type,
            delta_v=delta_v,
            attempts=len(self.attempts),
            final_state=self.state,
        )


async def execute_node(
    runner: CommandRunner,
    options: ExecuteNodeOptions | None = None,
    progress: ProgressChannel | None = None,
) -> ExecuteNodeResult:
    """Execute the next maneuver node.

    Args:
        runner: Session (or engine) attached to the vessel's CPU
        options: Timing and threshold overrides
        progress: Optional channel receiving state transitions and polls

    Returns:
        Result with delta-v figures and attempt count; failures are reported,
        not raised
    """
    return await ManeuverExecutor(runner, options, progress).run()


async def get_node_progress(runner: CommandRunner) -> tuple[float, float] | None:
    """Remaining delta-v and ETA of the next node."""
    return await query_node_info(runner)


async def is_node_executor_enabled(runner: CommandRunner) -> bool:
    return await query_bool(runner, "ADDONS:MJ:NODE:ENABLED")


async def disable_node_executor(runner: CommandRunner) -> None:
    await run_checked(runner, DISABLE_EXECUTOR)
