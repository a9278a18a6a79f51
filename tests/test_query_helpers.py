from datetime import datetime, timezone

import pytest

from agentpulse.core.query_helpers import (
    Window,
    compute_trend,
    downsample,
    format_cursor,
    normalize_range,
    parse_cursor,
    range_to_interval,
    range_to_previous_interval,
    round_half_up,
    to_number,
)


def test_ranges():
    assert range_to_interval("6h") == "6 hours"
    assert range_to_previous_interval("7d") == "14 days"
    assert normalize_range("90d") == "24h"
    assert range_to_interval(None) == "24 hours"


def test_window_boundaries():
    now = datetime(2024, 1, 2, 0, 0, tzinfo=timezone.utc)
    window = Window.for_range("24h", now)

    assert window.cutoff == "2024-01-01T00:00:00.000"
    assert window.prev_cutoff == "2023-12-31T00:00:00.000"


@pytest.mark.parametrize(
    "current, previous, expected",
    [
        (150, 100, 50),
        (50, 100, -50),
        (0, 0, 0),
        (10, 0, 0),
        (100000, 1, 999),
        (1, 3, -67),
    ],
)
def test_compute_trend(current, previous, expected):
    assert compute_trend(current, previous) == expected


def test_downsample():
    assert downsample([1, 2, 3, 4, 5, 6], 3) == [3, 7, 11]
    assert downsample([1, 2], 24) == [1, 2]
    assert downsample([], 24) == []


def test_downsample_preserves_total():
    series = list(range(1, 169))
    buckets = downsample(series, 24)

    assert len(buckets) == 24
    assert sum(buckets) == sum(series)


def test_cursor_round_trip_and_malformed():
    cursor = format_cursor("2024-01-01T00:00:00.000", "abc")

    assert parse_cursor(cursor) == ("2024-01-01T00:00:00.000", "abc")
    assert parse_cursor("a|b|c") == ("a", "b|c")
    assert parse_cursor("garbage") is None
    assert parse_cursor(None) is None


def test_to_number():
    assert to_number(None) == 0
    assert to_number("12") == 12
    assert to_number("1.5") == 1.5


def test_trend_rounds_halves_up():
    # 9 vs 8 is +12.5%
    assert compute_trend(9, 8) == 13
    # 7 vs 8 is -12.5%
    assert compute_trend(7, 8) == -12


def test_round_half_up():
    assert round_half_up(12.5) == 13
    assert round_half_up(-12.5) == -12
    assert round_half_up(6.25, 1) == 6.3
    assert round_half_up(0.125, 2) == 0.13
