# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Structured progress events for long-running autopilot procedures."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import AsyncIterator, Callable
from typing import Any

from pydantic import BaseModel, Field

from kosbot.logging import get_logger

logger = get_logger(__name__)


class ProgressEvent(BaseModel):
    """One progress report from a procedure."""

    stage: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


class ProgressChannel:
    """Fan-out of progress events to queue subscribers and listeners.

    Publishing never blocks the procedure: queues are bounded and drop their
    oldest event when full, and listeners must stay non-blocking.
    """

    def __init__(self, max_queue: int = 256) -> None:
        self._max_queue = max_queue
        self._queues: list[asyncio.Queue[ProgressEvent | None]] = []
        self._listeners: list[Callable[[ProgressEvent], None]] = []
        self._closed = False

    def subscribe(self) -> asyncio.Queue[ProgressEvent | None]:
        """Return a queue receiving every later event; ``None`` marks the end."""
        queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue(maxsize=self._max_queue)
        if self._closed:
            queue.put_nowait(None)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[ProgressEvent | None]) -> None:
        with contextlib.suppress(ValueError):
            self._queues.remove(queue)

    def add_listener(self, callback: Callable[[ProgressEvent], None]) -> None:
        self._listeners.append(callback)

    async def events(self) -> AsyncIterator[ProgressEvent]:
        """Iterate events until the channel is closed."""
        queue = self.subscribe()
        try:
            while (event := await queue.get()) is not None:
                yield event
        finally:
            self.unsubscribe(queue)

    def publish(self, stage: str, message: str, **data: Any) -> ProgressEvent:
        event = ProgressEvent(stage=stage, message=message, data=data)
        logger.debug("progress", stage=stage, message=message)
        for queue in list(self._queues):
            self._offer(queue, event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                logger.warning("progress_listener_failed", error=str(exc))
        return event

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for queue in list(self._queues):
            self._offer(queue, None)

    @staticmethod
    def _offer(queue: asyncio.Queue[ProgressEvent | None], item: ProgressEvent | None) -> None:
        if queue.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                queue.get_nowait()
        queue.put_nowait(item)
