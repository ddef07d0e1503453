# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Parsers for kOS command output.

Each parser handles one output shape and falls back to a neutral value
instead of raising, so callers can keep the raw output for diagnostics.

Batched queries print one ``LABEL:value`` line per value::

    PRINT "ALT:" + ALTITUDE. PRINT "APO:" + APOAPSIS.
    ALT:85000
    APO:100000
"""

from __future__ import annotations

import re

_LABELED_RE = re.compile(r"^(\w+):(.*)$")
_NUMBER = r"-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?"
_NUMBER_RE = re.compile(_NUMBER)
_SPEED_RE = re.compile(rf"({_NUMBER})\s*m/s", re.IGNORECASE)
_PLAIN_SECONDS_RE = re.compile(rf"^\s*({_NUMBER})\s*$")
_TIME_PART_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([dhms])\b", re.IGNORECASE)
_DISTANCE_RE = re.compile(rf"({_NUMBER})\s*(Gm|Mm|km|m)\b")
_VELOCITY_RE = re.compile(rf"({_NUMBER})\s*(km/s|m/s)", re.IGNORECASE)
_NODE_RE = re.compile(rf"NODE\|({_NUMBER})\|({_NUMBER})")

_TIME_UNITS = {"d": 21600.0, "h": 3600.0, "m": 60.0, "s": 1.0}  # Kerbin day is 6h
_DISTANCE_UNITS = {"m": 1.0, "km": 1e3, "Mm": 1e6, "Gm": 1e9}


def parse_labeled(output: str) -> dict[str, str]:
    """Parse ``LABEL:value`` lines into a dict; other lines are ignored."""
    result: dict[str, str] = {}
    for line in output.splitlines():
        match = _LABELED_RE.match(line.strip())
        if match:
            result[match.group(1)] = match.group(2).strip()
    return result


def _to_float(value: str | None) -> float | None:
    if not value:
        return None
    match = _NUMBER_RE.search(value)
    if not match:
        return None
    try:
        return float(match.group(0))
    except ValueError:
        return None


def parse_labeled_number(output: str, label: str) -> float:
    """Labeled value as a float; 0.0 when missing or unparseable."""
    value = _to_float(parse_labeled(output).get(label))
    return value if value is not None else 0.0


def parse_labeled_bool(output: str, label: str) -> bool:
    """Labeled value as a bool; only ``true`` (any case) is True."""
    return parse_labeled(output).get(label, "").lower() == "true"


def parse_labeled_numbers(output: str, labels: list[str]) -> dict[str, float]:
    """Several labeled floats at once; 0.0 for each missing label."""
    parsed = parse_labeled(output)
    numbers: dict[str, float] = {}
    for label in labels:
        value = _to_float(parsed.get(label))
        numbers[label] = value if value is not None else 0.0
    return numbers


def parse_delimited(output: str, separator: str = "|") -> list[str] | None:
    """Split the first line containing ``separator`` into stripped fields."""
    for line in output.splitlines():
        if separator in line:
            return [field.strip() for field in line.strip().split(separator)]
    return None


def parse_number(output: str) -> float | None:
    """Extract the value from single-number output.

    A number followed by ``m/s`` wins; otherwise the last number in the text
    is taken, since kOS prints the value after any label.
    """
    speed = _SPEED_RE.search(output)
    if speed:
        return float(speed.group(1))
    numbers = _NUMBER_RE.findall(output)
    if not numbers:
        return None
    return float(numbers[-1])


def parse_time_string(output: str) -> float:
    """Seconds from ``1d 2h 3m 4s`` (any subset) or a plain number."""
    plain = _PLAIN_SECONDS_RE.match(output)
    if plain:
        return float(plain.group(1))
    return sum(float(amount) * _TIME_UNITS[unit.lower()] for amount, unit in _TIME_PART_RE.findall(output))


def parse_distance(output: str) -> float | None:
    """Meters from ``12.5 km`` style text; None for ``N/A`` or no match."""
    if "N/A" in output:
        return None
    match = _DISTANCE_RE.search(output)
    if not match:
        return None
    return float(match.group(1)) * _DISTANCE_UNITS[match.group(2)]


def parse_velocity(output: str) -> float | None:
    """Meters per second from ``m/s`` or ``km/s`` text; None for ``N/A``."""
    if "N/A" in output:
        return None
    match = _VELOCITY_RE.search(output)
    if not match:
        return None
    factor = 1000.0 if match.group(2).lower() == "km/s" else 1.0
    return float(match.group(1)) * factor


def parse_node_info(output: str) -> tuple[float, float] | None:
    """``NODE|<delta-v>|<eta>`` as (delta-v, eta); None for ``NONODE``."""
    match = _NODE_RE.search(output)
    if not match:
        return None
    return float(match.group(1)), float(match.group(2))
