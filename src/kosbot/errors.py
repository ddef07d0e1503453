# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Exception hierarchy for console sessions and autopilot procedures."""


class KosError(Exception):
    """Base exception for kosbot operations."""

    pass


class TransportError(KosError, ConnectionError):
    """Channel closed or unreachable; the session must reconnect."""

    pass


class ProtocolTimeout(KosError, TimeoutError):
    """Command sentinel was not observed before the deadline."""

    def __init__(self, message: str, partial_output: str = "") -> None:
        super().__init__(message)
        self.partial_output = partial_output


class SessionStale(TransportError):
    """Health check failed on an apparently open session."""

    pass


class NoSuchCpu(KosError):
    """CPU selection matched no row of the menu."""

    pass


class InsufficientDeltaV(KosError):
    """Vessel cannot afford the planned maneuver."""

    def __init__(self, required: float, available: float) -> None:
        self.required = required
        self.available = available
        self.deficit = required - available
        super().__init__(
            f"Insufficient delta-v: need {required:.1f} m/s, have {available:.1f} m/s "
            f"(deficit: {self.deficit:.1f} m/s)"
        )


class AlignmentFailure(KosError):
    """Vessel could not point at the burn vector."""

    def __init__(self, angle: float | None, elapsed_s: float) -> None:
        self.angle = angle
        self.elapsed_s = elapsed_s
        angle_text = f"{angle:.1f}°" if angle is not None else "unknown"
        super().__init__(f"Alignment failed after {elapsed_s:.0f}s (angle: {angle_text})")


class BurnIncomplete(KosError):
    """Executor stopped with delta-v remaining after every attempt."""

    def __init__(self, attempts: int, remaining: float) -> None:
        self.attempts = attempts
        self.remaining = remaining
        super().__init__(f"Burn incomplete after {attempts} attempts. {remaining:.1f} m/s remaining.")


class UnsafeTimeout(KosError):
    """Crash avoidance ran out of time before reaching a safe trajectory."""

    def __init__(self, periapsis: float, target: float) -> None:
        self.periapsis = periapsis
        self.target = target
        super().__init__(f"Timeout: periapsis at {periapsis:.0f}m (target: {target:.0f}m)")


class ManeuverTimeout(KosError, TimeoutError):
    """Node execution did not finish within its time budget."""

    def __init__(self, timeout_s: float, remaining: float | None) -> None:
        self.timeout_s = timeout_s
        self.remaining = remaining
        remaining_text = f" ({remaining:.1f} m/s remaining)" if remaining is not None else ""
        super().__init__(f"Node execution timed out after {timeout_s:.0f}s{remaining_text}")


class ErrorLoopDetected(KosError):
    """The console keeps printing the same error; the procedure is stuck."""

    def __init__(self, pattern: str, last_error: str | None = None) -> None:
        self.pattern = pattern
        self.last_error = last_error
        super().__init__(f"Error loop detected: {pattern}")
