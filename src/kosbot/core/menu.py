# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""CPU selection menu parsing.

On connect the kOS telnet server prints a fixed-width table::

    Choose a CPU to attach to by typing a selection number and pressing
    return/enter. Or enter [Q] to quit terminal server.

                        Vessel Name (CPU tagname)
                        -------------------------
       [#] Gui  Telnets Vessel Name (CPU tagname)
       [1]   no    1     stick 1 (RC-L01(guidance))
       [2]   yes   0     stick 1 (KAL9000())
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict

from kosbot.errors import NoSuchCpu
from kosbot.terminal.screen_utils import normalize_terminal_text

_MENU_ROW_RE = re.compile(
    r"^\s*\[\s*(\d+)\s*\]\s+(\w+)\s+(\d+)\s+(.+?)\s+\(([^()]+?)(?:\(([^()]*)\))?\)\s*$"
)


class MenuEntry(BaseModel):
    """One row of the CPU menu."""

    model_config = ConfigDict(frozen=True)

    id: int
    gui_open: bool
    telnet_count: int
    vessel: str
    part: str
    label: str | None = None


class CpuSelector(BaseModel):
    """Which CPU to attach to: numeric id wins over label; neither means first row."""

    cpu_id: int | None = None
    label: str | None = None


def parse_cpu_menu(text: str) -> list[MenuEntry]:
    """Parse CPU menu rows out of console text.

    Lines that do not look like menu rows (headers, malformed rows) are skipped.

    Args:
        text: Raw or normalized console text

    Returns:
        Menu entries in display order
    """
    entries: list[MenuEntry] = []
    for line in normalize_terminal_text(text).split("\n"):
        match = _MENU_ROW_RE.match(line)
        if not match:
            continue
        cpu_id, gui, telnets, vessel, part, label = match.groups()
        entries.append(
            MenuEntry(
                id=int(cpu_id),
                gui_open=gui.lower() == "yes",
                telnet_count=int(telnets),
                vessel=vessel.strip(),
                part=part.strip(),
                label=(label or "").strip() or None,
            )
        )
    return entries


def select_entry(entries: list[MenuEntry], selector: CpuSelector | None = None) -> MenuEntry:
    """Pick the menu entry matching the selector.

    Args:
        entries: Parsed menu entries
        selector: Id or case-insensitive label substring

    Returns:
        Selected entry

    Raises:
        NoSuchCpu: If the menu is empty or nothing matches
    """
    if not entries:
        raise NoSuchCpu("No CPUs listed in menu")
    selector = selector or CpuSelector()

    if selector.cpu_id is not None:
        for entry in entries:
            if entry.id == selector.cpu_id:
                return entry
        raise NoSuchCpu(f"CPU {selector.cpu_id} not found. Available: {describe_entries(entries)}")

    if selector.label:
        needle = selector.label.lower()
        for entry in entries:
            if entry.label and needle in entry.label.lower():
                return entry
        raise NoSuchCpu(f"CPU with label '{selector.label}' not found. Available: {describe_entries(entries)}")

    return entries[0]


def describe_entries(entries: list[MenuEntry]) -> str:
    return ", ".join(f"[{e.id}] {e.label or e.part} on {e.vessel}" for e in entries)
