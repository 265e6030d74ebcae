import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

MONTH_KEY_RE = re.compile(r"^\d{4}-\d{2}$")


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def today_local() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    if not key or not MONTH_KEY_RE.match(key):
        raise ValueError("Month must be in YYYY-MM format")
    year_str, month_str = key.split("-", 1)
    year = int(year_str)
    month = int(month_str)
    if not 1 <= month <= 12:
        raise ValueError("Month must be in YYYY-MM format")
    return year, month


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def month_period(key: str) -> Period:
    year, month = parse_month_key(key)
    return Period(key, date(year, month, 1), month_end(year, month))


def year_period(year: int) -> Period:
    return Period(str(year), date(year, 1, 1), date(year, 12, 31))


def month_label(key: str) -> str:
    year, month = parse_month_key(key)
    return f"{calendar.month_name[month]} {year}"


def short_month_label(key: str) -> str:
    year, month = parse_month_key(key)
    return f"{calendar.month_abbr[month]} {year}"


def trailing_months(count: int, *, today: Optional[date] = None) -> list[str]:
    """Month keys for the ``count`` months ending with the current one, oldest first."""
    today = today or today_local()
    first = today.replace(day=1)
    return [month_key(add_months(first, -offset)) for offset in range(count - 1, -1, -1)]


def week_period(d: date) -> Period:
    # Weeks start on Sunday; date.weekday() counts Monday as 0.
    start = d - timedelta(days=(d.weekday() + 1) % 7)
    end = start + timedelta(days=6)
    label = (
        f"{calendar.month_abbr[start.month]} {start.day} - "
        f"{calendar.month_abbr[end.month]} {end.day}"
    )
    return Period(label, start, end)
