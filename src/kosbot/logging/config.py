# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""structlog setup for the CLI and the daemon.

Interactive commands render to stderr so stdout carries only kOS output.
The daemon runs detached from any terminal and writes JSON lines to a file
in the runtime directory instead.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

    from kosbot.settings import Settings

__all__ = ["get_logger", "configure_logging"]

_log_file = None


def _shared_processors() -> list[structlog.typing.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def configure_logging(settings: Settings | None = None, log_file: Path | None = None) -> None:
    """Configure structlog for kosbot.

    Call once at startup. The level comes from ``KOSBOT_LOG_LEVEL`` via
    Settings (default WARNING).

    Args:
        settings: Settings instance (created from the environment if None)
        log_file: Append JSON records here instead of rendering to stderr
    """
    global _log_file

    if settings is None:
        from kosbot.settings import Settings

        settings = Settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.WARNING)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        if _log_file is not None:
            _log_file.close()
        _log_file = log_file.open("a", encoding="utf-8")
        processors = [*_shared_processors(), structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
        factory = structlog.WriteLoggerFactory(file=_log_file)
    else:
        processors = [*_shared_processors(), structlog.dev.ConsoleRenderer()]
        factory = structlog.PrintLoggerFactory(file=sys.stderr)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=factory,
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a structlog logger instance.

    Args:
        name: Logger name (typically __name__ of calling module)
    """
    return structlog.get_logger(name)
