# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Tests for Session."""

from __future__ import annotations

import pytest

from kosbot.core.session import Session

from .fake_kos import FakeKos


@pytest.mark.asyncio
async def test_session_execute_and_status(fake_kos: FakeKos) -> None:
    await fake_kos.open()
    session = Session(transport=fake_kos, cpu_id=1, cpu_label="guidance", vessel_name="stick 1")

    result = await session.execute("PRINT ALTITUDE.")
    status = session.get_status()

    assert result.success
    assert result.output == "ALTITUDE"
    assert status["connected"] is True
    assert status["cpu_label"] == "guidance"
    assert status["busy"] is False
    assert status["monitor"]["error_count"] == 0
    assert "recent_lines" not in status["monitor"]


@pytest.mark.asyncio
async def test_session_disconnect(fake_kos: FakeKos) -> None:
    await fake_kos.open()
    session = Session(transport=fake_kos, cpu_id=1)

    await session.disconnect()
    result = await session.execute("PRINT 1.")

    assert not session.is_connected()
    assert not session.state().connected
    assert result.error == "Not connected"
