# Copyright (c) 2025-2026 provide.io llc
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Tests for kOS output parsers."""

from __future__ import annotations

import pytest

from kosbot.parsing import (
    parse_delimited,
    parse_distance,
    parse_labeled,
    parse_labeled_bool,
    parse_labeled_number,
    parse_labeled_numbers,
    parse_node_info,
    parse_number,
    parse_time_string,
    parse_velocity,
)

BATCH = "ALT:85000\nAPO:100000.5\nSAS:True\nNAME:stick 1\nnoise line"


def test_parse_labeled() -> None:
    assert parse_labeled(BATCH) == {"ALT": "85000", "APO": "100000.5", "SAS": "True", "NAME": "stick 1"}


def test_parse_labeled_number_defaults_to_zero() -> None:
    assert parse_labeled_number(BATCH, "APO") == 100000.5
    assert parse_labeled_number(BATCH, "MISSING") == 0.0
    assert parse_labeled_number(BATCH, "NAME") == 1.0
    assert parse_labeled_number("X:abc", "X") == 0.0


def test_parse_labeled_bool() -> None:
    assert parse_labeled_bool(BATCH, "SAS") is True
    assert parse_labeled_bool("SAS:False", "SAS") is False
    assert parse_labeled_bool(BATCH, "MISSING") is False


def test_parse_labeled_numbers() -> None:
    assert parse_labeled_numbers(BATCH, ["ALT", "PE"]) == {"ALT": 85000.0, "PE": 0.0}


def test_parse_delimited() -> None:
    assert parse_delimited("header\n 12.5 | True |x") == ["12.5", "True", "x"]
    assert parse_delimited("no separators") is None


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("85000", 85000.0),
        ("-1.5e3", -1500.0),
        ("Apoapsis 2 is 120.5", 120.5),
        ("123.4 m/s at 5", 123.4),
        ("nothing here", None),
    ],
)
def test_parse_number(output: str, expected: float | None) -> None:
    assert parse_number(output) == expected


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("42.5", 42.5),
        ("1h 30m", 5400.0),
        ("2m 5s", 125.0),
        ("1d 1s", 21601.0),
        ("soon", 0.0),
    ],
)
def test_parse_time_string(output: str, expected: float) -> None:
    assert parse_time_string(output) == expected


def test_parse_distance() -> None:
    assert parse_distance("12.5 km") == 12500.0
    assert parse_distance("3 Mm") == 3_000_000.0
    assert parse_distance("700 m") == 700.0
    assert parse_distance("N/A") is None
    assert parse_distance("far") is None


def test_parse_velocity() -> None:
    assert parse_velocity("2.5 km/s") == 2500.0
    assert parse_velocity("85 m/s") == 85.0
    assert parse_velocity("N/A") is None


def test_parse_node_info() -> None:
    assert parse_node_info("NODE|512.3|120.0") == (512.3, 120.0)
    assert parse_node_info("NONODE") is None
