"""
Dubai civil calendar and shift windows.

All attendance is reckoned on the Asia/Dubai calendar (fixed UTC+04:00, no
DST) regardless of the timezone the timestamps were stored in. This module
converts instants to civil days and maps each civil day to the shift window
in which work time is counted.
"""

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import datetime, date, time, timedelta
from typing import Dict, Iterable, Optional, Tuple

import pytz

logger = logging.getLogger(__name__)

DUBAI_TZ = pytz.timezone('Asia/Dubai')

# Attendance data is only trusted from this date onwards
DATA_START_DATE = date(2025, 2, 4)

PERIODS = ('day', 'week', 'month')

_FRACTION_RE = re.compile(r'\.(\d+)')


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse a timestamp as returned by Supabase into an aware datetime.

    Accepts ISO-8601 strings (with 'Z' or an explicit offset, any number of
    fractional digits) and datetime objects. Naive values are taken as UTC.
    Returns None for empty or unparseable input.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace(' ', 'T', 1)
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        # fromisoformat only accepts 3 or 6 fractional digits on older Pythons
        text = _FRACTION_RE.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.warning(f"⚠️ Unparseable timestamp: {value!r}")
            return None
    if parsed.tzinfo is None:
        parsed = pytz.utc.localize(parsed)
    return parsed


def to_dubai(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        instant = pytz.utc.localize(instant)
    return instant.astimezone(DUBAI_TZ)


def civil_date(instant: datetime) -> date:
    """Calendar date of an instant in the Dubai civil calendar"""
    return to_dubai(instant).date()


def civil_date_key(instant: datetime) -> str:
    """YYYY-MM-DD key of an instant in the Dubai civil calendar"""
    return civil_date(instant).isoformat()


def dubai_datetime(day: date, at: time) -> datetime:
    return DUBAI_TZ.localize(datetime.combine(day, at))


def civil_day_bounds(day: date) -> Tuple[datetime, datetime]:
    """First and last second of a Dubai civil day, as aware datetimes"""
    return dubai_datetime(day, time(0, 0, 0)), dubai_datetime(day, time(23, 59, 59))


def parse_day(value) -> date:
    """Parse a YYYY-MM-DD string (or pass a date through); raises ValueError"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value), '%Y-%m-%d').date()


@dataclass(frozen=True)
class ShiftWindow:
    """The instants between which work time is counted on one civil day"""
    day: date
    start: datetime
    end: datetime

    @property
    def length_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end

    def clamp(self, start: datetime, end: datetime) -> Optional[Tuple[datetime, datetime]]:
        """Intersect [start, end] with the window; None if nothing is left"""
        clamped_start = max(start, self.start)
        clamped_end = min(end, self.end)
        if clamped_end <= clamped_start:
            return None
        return clamped_start, clamped_end


class ShiftCalendar:
    """
    Maps a Dubai civil date to its shift window.

    Sunday is a day off, Saturday is a shortened day and Monday to Friday run
    the full shift. Holidays have no window.
    """

    def __init__(self, shift_start: time = time(10, 0), weekday_end: time = time(19, 0),
                 saturday_end: time = time(14, 0), holidays: Iterable[date] = ()):
        self.shift_start = shift_start
        self.weekday_end = weekday_end
        self.saturday_end = saturday_end
        self.holidays = frozenset(holidays)
        self._windows: Dict[date, Optional[ShiftWindow]] = {}

    def window_for(self, day: date) -> Optional[ShiftWindow]:
        if day in self._windows:
            return self._windows[day]

        weekday = day.weekday()  # Monday == 0, Sunday == 6
        if weekday == 6 or day in self.holidays:
            window = None
        else:
            end = self.saturday_end if weekday == 5 else self.weekday_end
            window = ShiftWindow(
                day=day,
                start=dubai_datetime(day, self.shift_start),
                end=dubai_datetime(day, end),
            )

        self._windows[day] = window
        return window

    def is_work_day(self, day: date) -> bool:
        return self.window_for(day) is not None


def period_range(period: str, selected_day: date, data_start: Optional[date] = DATA_START_DATE,
                 today: Optional[date] = None) -> Tuple[date, date]:
    """
    Inclusive (start, end) civil dates of a report period around selected_day.

    Weeks run Sunday to Saturday. The start never precedes data_start and,
    when today is given, the end never passes it. The returned start may be
    after the end when the whole period lies outside those limits.
    """
    if period == 'day':
        start, end = selected_day, selected_day
    elif period == 'week':
        start = selected_day - timedelta(days=(selected_day.weekday() + 1) % 7)
        end = start + timedelta(days=6)
    elif period == 'month':
        last_day = calendar.monthrange(selected_day.year, selected_day.month)[1]
        start = selected_day.replace(day=1)
        end = selected_day.replace(day=last_day)
    else:
        raise ValueError(f"Invalid period: {period!r} (expected one of {', '.join(PERIODS)})")

    if data_start is not None and start < data_start:
        start = data_start
    if today is not None and end > today:
        end = today
    return start, end
