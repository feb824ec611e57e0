from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


class DateRangePreset(str, Enum):
    all_time = "all"
    today = "today"
    last_7_days = "week"
    last_30_days = "month"
    custom = "custom"


PRESET_WINDOW_DAYS = {
    DateRangePreset.last_7_days: 7,
    DateRangePreset.last_30_days: 30,
}


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end

    @property
    def is_unbounded(self) -> bool:
        return self.start == date.min and self.end == date.max


ALL_TIME = Period("all", date.min, date.max)


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def resolve_date_range(
    preset: Optional[DateRangePreset | str],
    start: Optional[date] = None,
    end: Optional[date] = None,
    *,
    today: Optional[date] = None,
) -> Period:
    """Turn a date range preset into an inclusive ``Period``.

    ``week`` and ``month`` cover the last 7 and 30 whole days up to and
    including ``today``. A custom range missing either bound covers all time.
    A reversed custom range is returned as-is and therefore matches nothing.
    """
    if not preset:
        return ALL_TIME
    preset = DateRangePreset(preset)
    if preset == DateRangePreset.all_time:
        return ALL_TIME
    if preset == DateRangePreset.custom:
        if start is None or end is None:
            return ALL_TIME
        return Period("custom", start, end)

    today = today or local_today()
    if preset == DateRangePreset.today:
        return Period("today", today, today)
    days = PRESET_WINDOW_DAYS[preset]
    return Period(preset.value, today - timedelta(days=days), today)


def parse_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    return date.fromisoformat(value[:10])
