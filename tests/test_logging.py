# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from kosbot.logging import configure_logging, get_logger
from kosbot.paths import daemon_log_path
from kosbot.settings import Settings


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()


def test_file_logging_writes_json_lines(tmp_path: Path) -> None:
    settings = Settings(runtime_dir=tmp_path, log_level="INFO")
    path = daemon_log_path(settings.runtime_dir)

    configure_logging(settings, log_file=path)
    get_logger(__name__).info("daemon_listening", socket="kosbot.sock")
    get_logger(__name__).debug("filtered_out")

    records = [json.loads(line) for line in path.read_text().splitlines()]
    assert len(records) == 1
    assert records[0]["event"] == "daemon_listening"
    assert records[0]["socket"] == "kosbot.sock"
    assert records[0]["level"] == "info"
    assert "timestamp" in records[0]


def test_console_logging_goes_to_stderr(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(Settings(log_level="WARNING"))
    get_logger(__name__).warning("signal_lost", cpu_id=1)

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "signal_lost" in captured.err
