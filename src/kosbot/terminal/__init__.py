# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Console text normalization."""

from __future__ import annotations

from kosbot.terminal.screen_utils import clean_output, normalize_terminal_text, split_lines, strip_kos_control

__all__ = ["clean_output", "normalize_terminal_text", "split_lines", "strip_kos_control"]
