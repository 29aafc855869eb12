"""
Tests for date parsing, arithmetic and date windows.

Usage: pytest test_date_utils.py
"""

from datetime import date, datetime, timezone

import pytest

from dealer_portal.date_utils import (
    DateWindow,
    days_from_today,
    days_since,
    filter_by_date_field,
    format_date_only,
    format_days_escaped,
    is_within_range,
    parse_dd_mm_yyyy,
    parse_flexible_date,
    parse_iso_datetime,
    start_of_week_monday,
    weeks_until,
)

TODAY = date(2024, 3, 15)  # a Friday


# =============================================================================
# PARSING
# =============================================================================

@pytest.mark.parametrize("raw,expected", [
    ("05/01/2024", datetime(2024, 1, 5)),
    ("5/1/24", datetime(2024, 1, 5)),
    ("2024-01-05", datetime(2024, 1, 5)),
    ("2024-1-5", datetime(2024, 1, 5)),
    ("2024-01-05T10:30:00", datetime(2024, 1, 5, 10, 30)),
    ("5 Jan 2024", datetime(2024, 1, 5)),
    (date(2024, 1, 5), datetime(2024, 1, 5)),
])
def test_parse_flexible_date_formats(raw, expected):
    assert parse_flexible_date(raw) == expected


@pytest.mark.parametrize("raw", ["31/02/2024", "", None, "not a date", "13/13/2024"])
def test_parse_flexible_date_invalid_returns_none(raw):
    assert parse_flexible_date(raw) is None


def test_parse_iso_datetime_converts_aware_to_local_naive():
    parsed = parse_iso_datetime("2024-01-05T00:00:00Z")
    expected = datetime(2024, 1, 5, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
    assert parsed == expected
    assert parsed.tzinfo is None


def test_parse_iso_datetime_epoch_seconds_and_millis_agree():
    assert parse_iso_datetime(1704412800) == parse_iso_datetime(1704412800000)


def test_parse_iso_datetime_rejects_garbage():
    assert parse_iso_datetime("05/01/2024") is None
    assert parse_iso_datetime(True) is None


def test_parse_dd_mm_yyyy_only_accepts_day_first():
    assert parse_dd_mm_yyyy("01/02/2024") == datetime(2024, 2, 1)
    assert parse_dd_mm_yyyy("2024-02-01") is None


# =============================================================================
# ARITHMETIC
# =============================================================================

def test_days_from_today_is_signed():
    assert days_from_today("25/03/2024", TODAY) == 10
    assert days_from_today("05/03/2024", TODAY) == -10
    assert days_from_today("garbage", TODAY) is None


def test_weeks_until():
    assert weeks_until("29/03/2024", TODAY) == 2.0
    assert weeks_until(None, TODAY) is None


def test_days_since_clamps_and_defaults():
    now = datetime(2024, 3, 15, 12, 0)
    assert days_since("2024-03-10T12:00:00", now) == 5
    assert days_since("2024-03-20T12:00:00", now) == 0
    assert days_since(None, now) == 0


def test_days_since_received_today_is_zero():
    now = datetime.now()
    assert days_since(now.isoformat(), now) == 0


def test_formatting_helpers():
    now = datetime(2024, 3, 15)
    assert format_date_only("2024-03-01") == "01/03/2024"
    assert format_date_only("nope") == "-"
    assert format_days_escaped("01/03/2024", now) == "14"
    assert format_days_escaped("", now) == "-"


def test_start_of_week_monday():
    assert start_of_week_monday(TODAY) == datetime(2024, 3, 11)
    assert start_of_week_monday(datetime(2024, 3, 11, 18, 0)) == datetime(2024, 3, 11)


def test_is_within_range_open_bounds():
    value = datetime(2024, 1, 5)
    assert is_within_range(value, None, None)
    assert is_within_range(value, datetime(2024, 1, 5), datetime(2024, 1, 5))
    assert not is_within_range(None, None, None)
    assert not is_within_range(value, datetime(2024, 1, 6), None)


# =============================================================================
# WINDOWS
# =============================================================================

def test_preset_window_covers_whole_days():
    window = DateWindow.preset("7d", TODAY)
    assert window.start == datetime(2024, 3, 9)
    assert window.contains(datetime(2024, 3, 15, 23, 59, 59))
    assert not window.contains(datetime(2024, 3, 8, 23, 59))


def test_default_window_is_seven_days():
    assert DateWindow.default(TODAY).label == "7d"


def test_unknown_preset_raises():
    with pytest.raises(ValueError):
        DateWindow.preset("1y", TODAY)


def test_custom_window_end_is_inclusive():
    window = DateWindow.custom("2024-01-01", "2024-02-28")
    assert window.contains(datetime(2024, 2, 28, 22, 0))
    assert not window.contains(datetime(2024, 2, 29))


def test_filter_by_date_field_drops_unreadable_dates():
    records = [
        {"id": 1, "when": "2024-01-10"},
        {"id": 2, "when": "2023-12-31"},
        {"id": 3, "when": ""},
    ]
    window = DateWindow.custom("2024-01-01", "2024-01-31")
    assert [r["id"] for r in filter_by_date_field(records, "when", window)] == [1]
