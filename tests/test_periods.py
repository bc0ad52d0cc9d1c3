from datetime import date, datetime

import pytest

from periods import quarter_start, resolve_date_value
from widget_config import DatePreset

THURSDAY = date(2025, 5, 15)


@pytest.mark.parametrize(
    ("preset", "expected"),
    [
        (DatePreset.today, THURSDAY),
        (DatePreset.first_day_of_week, date(2025, 5, 12)),
        (DatePreset.first_day_of_month, date(2025, 5, 1)),
        (DatePreset.first_day_of_quarter, date(2025, 4, 1)),
        (DatePreset.first_day_of_year, date(2025, 1, 1)),
    ],
)
def test_presets(preset, expected):
    assert resolve_date_value(preset, today=THURSDAY) == expected


@pytest.mark.parametrize(
    ("day", "expected"),
    [
        (date(2025, 1, 1), date(2025, 1, 1)),
        (date(2025, 3, 31), date(2025, 1, 1)),
        (date(2025, 6, 30), date(2025, 4, 1)),
        (date(2025, 8, 2), date(2025, 7, 1)),
        (date(2025, 12, 31), date(2025, 10, 1)),
    ],
)
def test_quarter_start(day, expected):
    assert quarter_start(day) == expected


def test_week_starts_on_monday_even_on_monday():
    monday = date(2025, 5, 12)
    assert resolve_date_value(DatePreset.first_day_of_week, today=monday) == monday


def test_day_offset_counts_back_from_today():
    assert resolve_date_value(3, today=THURSDAY) == date(2025, 5, 12)
    assert resolve_date_value(0, today=THURSDAY) == THURSDAY


def test_literal_values():
    assert resolve_date_value(date(2024, 2, 29), today=THURSDAY) == date(2024, 2, 29)
    assert resolve_date_value(datetime(2024, 2, 29, 23, 59), today=THURSDAY) == date(
        2024, 2, 29
    )
    assert resolve_date_value("Today", today=THURSDAY) == THURSDAY
    assert resolve_date_value("2024-07-01", today=THURSDAY) == date(2024, 7, 1)


@pytest.mark.parametrize("value", [True, "next week", 1.5])
def test_invalid_values(value):
    with pytest.raises(ValueError):
        resolve_date_value(value, today=THURSDAY)
