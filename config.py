"""
Runtime settings loaded from the environment (.env supported)
"""

import os
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import FrozenSet, Optional

from dotenv import load_dotenv

from work_calendar import DATA_START_DATE, ShiftCalendar, parse_day
from work_interval_reconciler import ReconcilerConfig

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ {name}={raw!r} is not an integer, using {default}")
        return default


def _holidays_env(raw: Optional[str]) -> FrozenSet[date]:
    holidays = set()
    for part in (raw or '').split(','):
        part = part.strip()
        if not part:
            continue
        try:
            holidays.add(parse_day(part))
        except ValueError:
            logger.warning(f"⚠️ Ignoring invalid holiday date in SHIFT_HOLIDAYS: {part!r}")
    return frozenset(holidays)


@dataclass
class Settings:
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    redis_url: Optional[str] = None
    report_cache_ttl: int = 30
    ongoing_freshness_minutes: int = 30
    ongoing_cap_minutes: int = 15
    data_start_date: date = DATA_START_DATE
    holidays: FrozenSet[date] = field(default_factory=frozenset)

    @classmethod
    def from_env(cls) -> 'Settings':
        data_start = DATA_START_DATE
        raw_start = os.environ.get('DATA_START_DATE')
        if raw_start:
            try:
                data_start = parse_day(raw_start)
            except ValueError:
                logger.warning(f"⚠️ Invalid DATA_START_DATE {raw_start!r}, using {DATA_START_DATE}")

        return cls(
            supabase_url=os.environ.get('SUPABASE_URL'),
            supabase_key=os.environ.get('SUPABASE_ANON_KEY'),
            redis_url=os.environ.get('REDIS_URL'),
            report_cache_ttl=_int_env('REPORT_CACHE_TTL', 30),
            ongoing_freshness_minutes=_int_env('ONGOING_FRESHNESS_MINUTES', 30),
            ongoing_cap_minutes=_int_env('ONGOING_CAP_MINUTES', 15),
            data_start_date=data_start,
            holidays=_holidays_env(os.environ.get('SHIFT_HOLIDAYS')),
        )

    def reconciler_config(self) -> ReconcilerConfig:
        return ReconcilerConfig(
            freshness_minutes=self.ongoing_freshness_minutes,
            ongoing_cap_minutes=self.ongoing_cap_minutes,
        )

    def shift_calendar(self) -> ShiftCalendar:
        return ShiftCalendar(holidays=self.holidays)
