from datetime import date, datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings
from widget_config import DatePreset


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def quarter_start(day: date) -> date:
    first_month = ((day.month - 1) // 3) * 3 + 1
    return date(day.year, first_month, 1)


def preset_date(preset: DatePreset, today: date) -> date:
    if preset == DatePreset.today:
        return today
    if preset == DatePreset.first_day_of_week:
        # Monday is day 0
        return today - timedelta(days=today.weekday())
    if preset == DatePreset.first_day_of_month:
        return today.replace(day=1)
    if preset == DatePreset.first_day_of_quarter:
        return quarter_start(today)
    if preset == DatePreset.first_day_of_year:
        return date(today.year, 1, 1)
    raise ValueError(f"Unknown date preset: {preset}")


def resolve_date_value(
    value: Union[DatePreset, int, date, datetime],
    *,
    today: Optional[date] = None,
) -> date:
    """Turn a date filter value into the calendar day it compares against.

    Presets and day offsets are relative to midnight today; a literal date is
    used as given.
    """
    today = today or local_today()
    if isinstance(value, DatePreset):
        return preset_date(value, today)
    if isinstance(value, bool):
        raise ValueError("Invalid date filter value")
    if isinstance(value, int):
        return today - timedelta(days=value)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return preset_date(DatePreset(value), today)
        except ValueError:
            return date.fromisoformat(value)
    raise ValueError("Invalid date filter value")
