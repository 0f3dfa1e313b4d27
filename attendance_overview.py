"""
Attendance reports for supervisors and agents.

Combines stored attendance_records with the raw activity_logs: work time is
always recomputed from the logs through the interval reconciler, and first
login / last logout come from the earliest and latest logged activity.
Stored values are only a fallback when the logs add nothing to the day.
"""

import logging
import math
from collections import OrderedDict, defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytz

from activity_types import WORK_ACTIVITY_TYPES, is_work_activity, label_for
from work_calendar import (
    DATA_START_DATE, DUBAI_TZ, ShiftCalendar, civil_date, parse_timestamp, period_range,
)
from work_interval_reconciler import (
    ActivitySpan, ReconcilerConfig, interval_minutes, reconcile_work_minutes,
)

logger = logging.getLogger(__name__)

# Stored totals above one full day are treated as corrupt
MAX_STORED_WORK_MINUTES = 24 * 60

UserDay = Tuple[str, date]


@dataclass
class AgentAttendanceRecord:
    agent_id: str
    agent_name: str
    date: str
    first_login: Optional[str]
    last_logout: Optional[str]
    status: Optional[str]
    is_late: bool
    total_work_minutes: Optional[int]
    ceiling_exceeded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AgentAttendanceSummary:
    agent_id: str
    agent_name: str
    total_days: int
    late_days: int
    total_work_minutes: int
    avg_first_login: Optional[str]
    avg_last_logout: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AttendanceHistoryEntry:
    date: str
    first_login: Optional[str]
    last_logout: Optional[str]
    status: Optional[str]
    is_late: bool
    total_work_minutes: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ActivityTimelineEntry:
    id: Optional[str]
    activity_type: str
    activity_label: str
    started_at: str
    ended_at: Optional[str]
    duration_minutes: Optional[int]


@dataclass
class AgentDailyTimeline:
    agent_id: str
    agent_name: str
    date: str
    first_login: Optional[str]
    last_logout: Optional[str]
    is_late: bool
    total_work_minutes: int
    activities: List[ActivityTimelineEntry] = field(default_factory=list)
    activity_summary: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class _ActivityTimes:
    first_start: datetime
    last_end: Optional[datetime]
    last_started: datetime
    has_ongoing: bool


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _agent_name(profile: Optional[Dict[str, Any]]) -> str:
    if not profile:
        return 'Unknown'
    return profile.get('full_name') or profile.get('username') or 'Unknown'


def _record_day(record: Dict[str, Any]) -> Optional[date]:
    try:
        return datetime.strptime(str(record.get('date'))[:10], '%Y-%m-%d').date()
    except ValueError:
        logger.warning(f"⚠️ attendance_records row with invalid date: {record.get('date')!r}")
        return None


def safe_stored_minutes(value) -> Optional[int]:
    """Stored total_work_minutes if it is a plausible single-day value"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value < 0 or value > MAX_STORED_WORK_MINUTES:
        return None
    return int(value)


def group_spans_by_user_day(spans: List[ActivitySpan]) -> Dict[UserDay, List[ActivitySpan]]:
    """Group spans by user and the Dubai civil day their start falls on"""
    grouped: Dict[UserDay, List[ActivitySpan]] = defaultdict(list)
    for span in spans:
        grouped[(span.user_id, civil_date(span.start))].append(span)
    return grouped


def activity_times(spans: List[ActivitySpan]) -> Optional[_ActivityTimes]:
    """Earliest start, latest end and latest start of a user-day's spans"""
    if not spans:
        return None
    ends = [span.end for span in spans if span.end is not None]
    return _ActivityTimes(
        first_start=min(span.start for span in spans),
        last_end=max(ends) if ends else None,
        last_started=max(span.start for span in spans),
        has_ongoing=any(span.is_open for span in spans),
    )


def span_duration_minutes(span: ActivitySpan) -> Optional[int]:
    """Stored duration_minutes, or the rounded length of a closed span"""
    if span.duration_minutes:
        return int(math.floor(span.duration_minutes + 0.5))
    if span.end is not None:
        return interval_minutes(span.start, span.end)
    return None


def _average_instant(values: List[Optional[str]]) -> Optional[str]:
    instants = [parse_timestamp(value) for value in values if value]
    instants = [instant for instant in instants if instant is not None]
    if not instants:
        return None
    mean = sum(instant.timestamp() for instant in instants) / len(instants)
    return datetime.fromtimestamp(mean, tz=pytz.utc).astimezone(DUBAI_TZ).isoformat()


def summarize_by_agent(records: List[AgentAttendanceRecord]) -> List[AgentAttendanceSummary]:
    """Per-agent totals for the week and month views, in record order"""
    grouped: 'OrderedDict[str, List[AgentAttendanceRecord]]' = OrderedDict()
    for record in records:
        grouped.setdefault(record.agent_id, []).append(record)

    summaries = []
    for agent_id, agent_records in grouped.items():
        summaries.append(AgentAttendanceSummary(
            agent_id=agent_id,
            agent_name=agent_records[0].agent_name or 'Unknown',
            total_days=len(agent_records),
            late_days=sum(1 for r in agent_records if r.is_late),
            total_work_minutes=sum(r.total_work_minutes or 0 for r in agent_records),
            avg_first_login=_average_instant([r.first_login for r in agent_records]),
            avg_last_logout=_average_instant([r.last_logout for r in agent_records]),
        ))
    return summaries


class AttendanceReportService:
    """
    Builds attendance reports from an activity-log data source.

    source must provide fetch_profiles, fetch_attendance_records,
    fetch_activity_spans and fetch_activity_spans_around (see
    activity_log_source.ActivityLogSource). cache is an optional
    redis_cache.ReportCache; clock returns the current aware datetime.
    """

    def __init__(self, source, calendar: Optional[ShiftCalendar] = None, cache=None,
                 config: Optional[ReconcilerConfig] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 data_start: Optional[date] = DATA_START_DATE):
        self.source = source
        self.calendar = calendar or ShiftCalendar()
        self.cache = cache
        self.config = config or ReconcilerConfig()
        self.clock = clock or (lambda: datetime.now(pytz.utc))
        self.data_start = data_start

    def _cached(self, report: str, scope: Dict[str, Any], compute: Callable[[], Any],
                user_ids=()) -> Any:
        if self.cache is None:
            return compute()
        return self.cache.get_or_compute(report, scope, compute, user_ids=user_ids)

    def invalidate(self, user_id: Optional[str] = None, report: Optional[str] = None) -> int:
        """Drop cached reports for one agent, one report, or everything"""
        if self.cache is None:
            return 0
        if user_id:
            return self.cache.invalidate_user(user_id)
        return self.cache.invalidate_report(report)

    # ------------------------------------------------------------------ #
    # Supervisor overview
    # ------------------------------------------------------------------ #

    def agent_attendance_overview(self, period: str, selected_day: date,
                                  team_id: Optional[str] = None) -> List[AgentAttendanceRecord]:
        """Attendance rows per agent and day, sorted by agent name then date"""
        start_day, end_day = period_range(period, selected_day, data_start=self.data_start)
        if start_day > end_day:
            return []

        scope = {'team_id': team_id, 'start': start_day, 'end': end_day, 'period': period}
        return self._cached(
            'overview', scope,
            lambda: self._build_overview(start_day, end_day, team_id),
            user_ids=lambda records: {record.agent_id for record in records},
        )

    def _build_overview(self, start_day: date, end_day: date,
                        team_id: Optional[str]) -> List[AgentAttendanceRecord]:
        profiles = self.source.fetch_profiles(team_id=team_id)
        if not profiles:
            return []

        member_ids = [str(profile['id']) for profile in profiles]
        profile_map = {str(profile['id']): profile for profile in profiles}

        attendance = self.source.fetch_attendance_records(member_ids, start_day, end_day)
        # All activity types for first/last times
        all_spans = self.source.fetch_activity_spans(member_ids, start_day, end_day)
        # Work types only, one day wider so spans near the range edges are seen
        work_spans = self.source.fetch_activity_spans_around(
            member_ids, start_day, end_day, activity_types=WORK_ACTIVITY_TYPES,
        )

        times_by_key = {key: activity_times(spans) for key, spans in group_spans_by_user_day(all_spans).items()}
        work_by_key = group_spans_by_user_day(
            [span for span in work_spans if is_work_activity(span.activity_type)]
        )

        now = self.clock()
        records = []
        for row in attendance:
            user_id = str(row.get('user_id'))
            day = _record_day(row)
            if day is None:
                continue
            key = (user_id, day)
            is_working = bool(row.get('is_working'))

            total_minutes = None
            ceiling_exceeded = False
            included_ongoing = False
            day_spans = work_by_key.get(key) or []
            if not is_working:
                day_spans = [span for span in day_spans if not span.is_open]
            if day_spans:
                window = self.calendar.window_for(day)
                result = reconcile_work_minutes(day_spans, window, now, self.config)
                # Logs that add nothing inside the shift leave the stored figure in place
                if window is None or result.intervals:
                    total_minutes = result.minutes
                    ceiling_exceeded = result.ceiling_exceeded
                    included_ongoing = result.included_ongoing

            if total_minutes is None:
                total_minutes = safe_stored_minutes(row.get('total_work_minutes'))

            times = times_by_key.get(key)
            first_login = _isoformat(times.first_start) if times else row.get('first_login')
            # Latest end is the logout; latest start only while an ongoing span is being counted
            if times and times.last_end is not None:
                last_logout = _isoformat(times.last_end)
            elif times and included_ongoing and times.has_ongoing:
                last_logout = _isoformat(times.last_started)
            else:
                last_logout = row.get('last_logout')

            records.append(AgentAttendanceRecord(
                agent_id=user_id,
                agent_name=_agent_name(profile_map.get(user_id)),
                date=day.isoformat(),
                first_login=first_login,
                last_logout=last_logout,
                status=row.get('status'),
                is_late=bool(row.get('is_late')),
                total_work_minutes=total_minutes,
                ceiling_exceeded=ceiling_exceeded,
            ))

        records.sort(key=lambda r: (r.agent_name.casefold(), r.date))
        logger.info(f"📊 Built attendance overview: {len(records)} rows for {start_day} → {end_day}")
        return records

    def agent_attendance_summary(self, period: str, selected_day: date,
                                 team_id: Optional[str] = None) -> List[AgentAttendanceSummary]:
        return summarize_by_agent(self.agent_attendance_overview(period, selected_day, team_id=team_id))

    # ------------------------------------------------------------------ #
    # Agent's own history
    # ------------------------------------------------------------------ #

    def my_attendance_history(self, user_id: str, period: str,
                              selected_day: date) -> List[AttendanceHistoryEntry]:
        """Stored attendance records of a single agent"""
        if not user_id:
            return []
        start_day, end_day = period_range(period, selected_day, data_start=self.data_start)
        if start_day > end_day:
            return []

        def build():
            rows = self.source.fetch_attendance_records([user_id], start_day, end_day)
            return [
                AttendanceHistoryEntry(
                    date=str(row.get('date')),
                    first_login=row.get('first_login'),
                    last_logout=row.get('last_logout'),
                    status=row.get('status'),
                    is_late=bool(row.get('is_late')),
                    total_work_minutes=row.get('total_work_minutes'),
                )
                for row in rows
            ]

        scope = {'user_id': user_id, 'start': start_day, 'end': end_day}
        return self._cached('history', scope, build, user_ids=[user_id])

    # ------------------------------------------------------------------ #
    # Activity timeline
    # ------------------------------------------------------------------ #

    def agent_activity_timeline(self, period: str, selected_day: date, team_id: Optional[str] = None,
                                agent_id: Optional[str] = None) -> List[AgentDailyTimeline]:
        """Every logged activity per agent-day, with per-type minutes and reconciled work time"""
        if agent_id == 'all':
            agent_id = None
        now = self.clock()
        start_day, end_day = period_range(
            period, selected_day, data_start=self.data_start, today=civil_date(now),
        )
        if start_day > end_day:
            return []

        scope = {'team_id': team_id, 'agent_id': agent_id, 'start': start_day, 'end': end_day}
        return self._cached(
            'timeline', scope,
            lambda: self._build_timeline(start_day, end_day, team_id, agent_id, now),
            user_ids=lambda timelines: {timeline.agent_id for timeline in timelines},
        )

    def _build_timeline(self, start_day: date, end_day: date, team_id: Optional[str],
                        agent_id: Optional[str], now: datetime) -> List[AgentDailyTimeline]:
        profiles = self.source.fetch_profiles(team_id=team_id, agent_id=agent_id)
        if not profiles:
            return []

        member_ids = [str(profile['id']) for profile in profiles]
        profile_map = {str(profile['id']): profile for profile in profiles}

        attendance = self.source.fetch_attendance_records(member_ids, start_day, end_day)
        spans_by_key = group_spans_by_user_day(
            self.source.fetch_activity_spans(member_ids, start_day, end_day)
        )

        timelines = []
        for row in attendance:
            user_id = str(row.get('user_id'))
            day = _record_day(row)
            if day is None:
                continue
            day_spans = spans_by_key.get((user_id, day), [])

            activities = []
            summary: Dict[str, int] = {}
            for span in day_spans:
                duration = span_duration_minutes(span)
                activities.append(ActivityTimelineEntry(
                    id=span.id,
                    activity_type=span.activity_type,
                    activity_label=label_for(span.activity_type),
                    started_at=span.start.isoformat(),
                    ended_at=_isoformat(span.end),
                    duration_minutes=duration,
                ))
                if duration and duration > 0:
                    summary[span.activity_type] = summary.get(span.activity_type, 0) + duration

            work_spans = [
                span for span in day_spans
                if is_work_activity(span.activity_type) and (row.get('is_working') or not span.is_open)
            ]
            result = reconcile_work_minutes(work_spans, self.calendar.window_for(day), now, self.config)

            times = activity_times(day_spans)
            timelines.append(AgentDailyTimeline(
                agent_id=user_id,
                agent_name=_agent_name(profile_map.get(user_id)),
                date=day.isoformat(),
                first_login=_isoformat(times.first_start) if times else row.get('first_login'),
                last_logout=_isoformat(times.last_end) if times and times.last_end else row.get('last_logout'),
                is_late=bool(row.get('is_late')),
                total_work_minutes=result.minutes,
                activities=activities,
                activity_summary=summary,
            ))

        timelines.sort(key=lambda t: (t.agent_name.casefold(), t.date))
        return timelines
