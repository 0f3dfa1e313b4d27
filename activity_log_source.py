"""
Supabase data source for attendance reports.

Reads agent profiles, stored attendance records and activity logs. Rows are
returned as plain dicts except activity logs, which become ActivitySpan
objects with parsed timestamps.
"""

import time
import logging
from datetime import date, timedelta
from functools import wraps
from typing import Any, Dict, Iterable, List, Optional, Sequence

from activity_types import ActivityType
from work_calendar import civil_day_bounds, parse_timestamp
from work_interval_reconciler import ActivitySpan

logger = logging.getLogger(__name__)


class DataSourceError(Exception):
    """A Supabase query failed"""


def performance_monitor(func):
    """Decorator to time queries and wrap Supabase failures"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        try:
            result = func(*args, **kwargs)
            execution_time = time.time() - start_time
            logger.info(f"{func.__name__} executed in {execution_time:.3f} seconds")
            return result
        except DataSourceError:
            raise
        except Exception as e:
            execution_time = time.time() - start_time
            logger.error(f"{func.__name__} failed after {execution_time:.3f} seconds: {str(e)}")
            raise DataSourceError(f"{func.__name__} failed: {e}") from e
    return wrapper


def _activity_codes(activity_types: Optional[Iterable]) -> Optional[List[str]]:
    if activity_types is None:
        return None
    codes = []
    for value in activity_types:
        parsed = ActivityType.parse(value)
        codes.append(parsed.code if parsed else str(value))
    return codes


class ActivityLogSource:
    """Supabase-backed reads for the attendance tables"""

    def __init__(self, supabase_client):
        self.supabase = supabase_client

    @performance_monitor
    def fetch_profiles(self, team_id: Optional[str] = None, agent_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Active agent profiles, optionally limited to a team or one agent"""
        # profiles_public avoids the RLS policies on profiles
        query = self.supabase.table('profiles_public').select('id, full_name, username').eq('is_active', True)
        if team_id:
            query = query.eq('team_id', team_id)
        if agent_id:
            query = query.eq('id', agent_id)
        result = query.execute()
        return result.data or []

    @performance_monitor
    def fetch_attendance_records(self, user_ids: Sequence[str], start_day: date, end_day: date) -> List[Dict[str, Any]]:
        """Stored attendance_records rows; dates are Dubai civil dates"""
        if not user_ids:
            return []
        result = (
            self.supabase.table('attendance_records')
            .select('*')
            .in_('user_id', list(user_ids))
            .gte('date', start_day.isoformat())
            .lte('date', end_day.isoformat())
            .order('date')
            .execute()
        )
        return result.data or []

    @performance_monitor
    def fetch_activity_spans(self, user_ids: Sequence[str], start_day: date, end_day: date,
                             activity_types: Optional[Iterable] = None) -> List[ActivitySpan]:
        """
        Activity logs whose start falls within the Dubai civil days
        start_day..end_day, ordered by start. activity_types limits the
        result to those types when given.
        """
        if not user_ids:
            return []

        range_start, _ = civil_day_bounds(start_day)
        _, range_end = civil_day_bounds(end_day)

        query = (
            self.supabase.table('activity_logs')
            .select('id, user_id, activity_type, started_at, ended_at, duration_minutes')
            .in_('user_id', list(user_ids))
            .gte('started_at', range_start.isoformat())
            .lte('started_at', range_end.isoformat())
        )
        codes = _activity_codes(activity_types)
        if codes is not None:
            query = query.in_('activity_type', codes)
        result = query.order('started_at').execute()

        spans = []
        skipped = 0
        for row in result.data or []:
            span = span_from_row(row)
            if span is None:
                skipped += 1
                continue
            spans.append(span)

        if skipped:
            logger.warning(f"⚠️ Skipped {skipped} activity_logs rows without a valid started_at")
        return spans

    def fetch_activity_spans_around(self, user_ids: Sequence[str], start_day: date, end_day: date,
                                    activity_types: Optional[Iterable] = None) -> List[ActivitySpan]:
        """Same as fetch_activity_spans with one extra day on each side of the range"""
        return self.fetch_activity_spans(
            user_ids,
            start_day - timedelta(days=1),
            end_day + timedelta(days=1),
            activity_types=activity_types,
        )


def span_from_row(row: Dict[str, Any]) -> Optional[ActivitySpan]:
    """Build an ActivitySpan from an activity_logs row; None if started_at is unusable"""
    start = parse_timestamp(row.get('started_at'))
    if start is None:
        return None
    return ActivitySpan(
        user_id=str(row.get('user_id')),
        activity_type=row.get('activity_type') or '',
        start=start,
        end=parse_timestamp(row.get('ended_at')),
        id=row.get('id'),
        duration_minutes=row.get('duration_minutes'),
    )
