# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""The live attachment to one kOS CPU."""

from __future__ import annotations

import contextlib
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from kosbot.constants import DEFAULT_COMMAND_TIMEOUT_MS
from kosbot.core.error_detection import OutputMonitor
from kosbot.core.protocol import CommandEngine, CommandResult
from kosbot.errors import KosError
from kosbot.logging import get_logger
from kosbot.transport.base import ConnectionTransport

logger = get_logger(__name__)


class SessionState(BaseModel):
    """Read-only snapshot of a session."""

    model_config = ConfigDict(frozen=True)

    connected: bool
    cpu_id: int | None = None
    cpu_label: str | None = None
    vessel_name: str | None = None
    last_activity: float | None = None


class Session(BaseModel):
    """Represents a single CPU attachment with its own command engine."""

    transport: ConnectionTransport
    cpu_id: int
    cpu_label: str | None = None
    vessel_name: str | None = None
    connected: bool = True
    last_activity: float = Field(default_factory=time.time)
    command_timeout_ms: int = DEFAULT_COMMAND_TIMEOUT_MS
    monitor: OutputMonitor = Field(default_factory=OutputMonitor)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    _engine: CommandEngine | None = PrivateAttr(default=None)

    def model_post_init(self, __context: Any) -> None:
        """Bind the command engine to the transport after fields are set."""
        self._engine = CommandEngine(
            self.transport,
            monitor=self.monitor,
            default_timeout_ms=self.command_timeout_ms,
        )

    @property
    def engine(self) -> CommandEngine:
        assert self._engine is not None
        return self._engine

    async def execute(
        self,
        command: str,
        timeout_ms: int | None = None,
        *,
        detach: bool = False,
    ) -> CommandResult:
        """Execute a command on the attached CPU.

        A transport failure marks the session disconnected and closes the
        transport so the owner reconnects before the next command.
        """
        if not self.is_connected():
            return CommandResult(success=False, error="Not connected", error_type="TransportError")
        result = await self.engine.execute(command, timeout_ms, detach=detach)
        self.last_activity = time.time()
        if result.error_type == "TransportError":
            logger.warning("session_transport_lost", cpu_id=self.cpu_id, error=result.error)
            self.connected = False
            with contextlib.suppress(KosError, OSError):
                await self.transport.close()
        return result

    def is_connected(self) -> bool:
        """Check if session is connected.

        Returns:
            True if attached and the transport is open, False otherwise
        """
        return self.connected and self.transport.is_open()

    def state(self) -> SessionState:
        return SessionState(
            connected=self.is_connected(),
            cpu_id=self.cpu_id,
            cpu_label=self.cpu_label,
            vessel_name=self.vessel_name,
            last_activity=self.last_activity,
        )

    async def disconnect(self) -> None:
        """Detach and close the transport."""
        self.connected = False
        await self.transport.close()

    def get_status(self) -> dict[str, Any]:
        """Get session status.

        Returns:
            Status dictionary with attachment and monitor info
        """
        return {
            **self.state().model_dump(),
            "busy": self.engine.is_busy(),
            "monitor": self.monitor.get_status().model_dump(exclude={"recent_lines"}),
        }
