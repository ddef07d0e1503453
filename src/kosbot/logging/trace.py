# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""JSONL wire trace logger for transports."""

from __future__ import annotations

import hashlib
import json
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from io import TextIOWrapper


class TraceLogger:
    """Append-only JSONL record of every byte sent to and received from the console.

    Each record carries the text, its sha1 and a hex dump so garbled control
    sequences can be inspected after the fact.
    """

    def __init__(self, log_path: str | Path, label: str = "transport") -> None:
        """Initialize trace logger.

        Args:
            log_path: Path to JSONL trace file
            label: Transport label stored on every record
        """
        self._log_path = Path(log_path)
        self._label = label
        self._file: TextIOWrapper | None = None

    @property
    def path(self) -> Path:
        return self._log_path

    def start(self) -> None:
        """Open trace file and write header."""
        if self._file:
            return
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._log_path.open("a", encoding="utf-8")
        self._write("INFO", {"message": "trace_start", "path": str(self._log_path)})

    def stop(self) -> None:
        """Close trace file."""
        if self._file:
            self._write("INFO", {"message": "trace_stop"})
            self._file.close()
            self._file = None

    def log_send(self, text: str) -> None:
        self._write("SEND", self._payload(text))

    def log_recv(self, text: str) -> None:
        if text:
            self._write("RECV", self._payload(text))

    def log_info(self, message: str, **data: Any) -> None:
        self._write("INFO", {"message": message, **data})

    def log_error(self, message: str, **data: Any) -> None:
        self._write("ERROR", {"message": message, **data})

    @staticmethod
    def _payload(text: str) -> dict[str, Any]:
        raw = text.encode("utf-8", errors="replace")
        return {
            "text": text,
            "len": len(raw),
            "sha1": hashlib.sha1(raw).hexdigest(),
            "hex": raw.hex(),
        }

    def _write(self, direction: str, data: dict[str, Any]) -> None:
        if not self._file:
            return
        record = {"ts": time.time(), "dir": direction, "transport": self._label, "data": data}
        self._file.write(json.dumps(record, ensure_ascii=True) + "\n")
        self._file.flush()
