# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Tests for progress event fan-out."""

from __future__ import annotations

import asyncio

import pytest

from kosbot.core.progress import ProgressChannel, ProgressEvent


def test_listener_receives_events() -> None:
    channel = ProgressChannel()
    seen: list[ProgressEvent] = []
    channel.add_listener(seen.append)

    event = channel.publish("burning", "burn progress", remaining=12.5)

    assert seen == [event]
    assert event.data == {"remaining": 12.5}


def test_failing_listener_does_not_break_publish() -> None:
    channel = ProgressChannel()
    seen: list[ProgressEvent] = []

    def broken(event: ProgressEvent) -> None:
        raise ValueError("boom")

    channel.add_listener(broken)
    channel.add_listener(seen.append)
    channel.publish("aligning", "aligning")

    assert len(seen) == 1


@pytest.mark.asyncio
async def test_events_iterator_ends_on_close() -> None:
    channel = ProgressChannel()

    async def collect() -> list[str]:
        return [event.stage async for event in channel.events()]

    task = asyncio.create_task(collect())
    await asyncio.sleep(0)
    channel.publish("validating", "start")
    channel.publish("completed", "done")
    channel.close()

    assert await asyncio.wait_for(task, timeout=1) == ["validating", "completed"]


def test_full_queue_drops_oldest() -> None:
    channel = ProgressChannel(max_queue=2)
    queue = channel.subscribe()

    for n in range(3):
        channel.publish("burning", f"poll {n}")

    messages = [queue.get_nowait().message for _ in range(2)]  # type: ignore[union-attr]
    assert messages == ["poll 1", "poll 2"]


def test_subscribe_after_close_is_finished() -> None:
    channel = ProgressChannel()
    channel.close()

    assert channel.subscribe().get_nowait() is None
