"""
Tests for the attendance report service, with an in-memory activity-log source
"""

from datetime import date, time, timedelta

from activity_types import ActivityType
from attendance_overview import (
    AgentAttendanceRecord, AttendanceReportService, safe_stored_minutes, span_duration_minutes,
    summarize_by_agent,
)
from redis_cache import ReportCache
from test_redis_cache import FakeRedis
from work_calendar import civil_date, dubai_datetime
from work_interval_reconciler import ActivitySpan

MONDAY = date(2026, 2, 2)
TUESDAY = date(2026, 2, 3)
SUNDAY = date(2026, 2, 1)


def at(hour, minute, day=MONDAY):
    return dubai_datetime(day, time(hour, minute))


class FakeSource:
    def __init__(self, profiles=(), attendance=(), spans=()):
        self.profiles = list(profiles)
        self.attendance = list(attendance)
        self.spans = list(spans)
        self.calls = []

    def fetch_profiles(self, team_id=None, agent_id=None):
        self.calls.append(('profiles', team_id, agent_id))
        return [p for p in self.profiles if agent_id is None or p['id'] == agent_id]

    def fetch_attendance_records(self, user_ids, start_day, end_day):
        self.calls.append(('attendance', start_day, end_day))
        return [
            row for row in self.attendance
            if row['user_id'] in user_ids and start_day.isoformat() <= row['date'] <= end_day.isoformat()
        ]

    def fetch_activity_spans(self, user_ids, start_day, end_day, activity_types=None):
        self.calls.append(('spans', start_day, end_day))
        codes = None if activity_types is None else {ActivityType.parse(t).code for t in activity_types}
        return [
            s for s in self.spans
            if s.user_id in user_ids and start_day <= civil_date(s.start) <= end_day
            and (codes is None or s.activity_type in codes)
        ]

    def fetch_activity_spans_around(self, user_ids, start_day, end_day, activity_types=None):
        return self.fetch_activity_spans(
            user_ids, start_day - timedelta(days=1), end_day + timedelta(days=1), activity_types,
        )


def span(user_id, start, end, activity_type='calling_telecalling', span_id=None):
    return ActivitySpan(user_id=user_id, activity_type=activity_type, start=start, end=end, id=span_id)


def attendance(user_id, day=MONDAY, **extra):
    row = {
        'user_id': user_id, 'date': day.isoformat(), 'status': 'present', 'is_late': False,
        'is_working': False, 'first_login': None, 'last_logout': None, 'total_work_minutes': None,
    }
    row.update(extra)
    return row


def make_service(source, now=None, cache=None):
    now = now or at(12, 0)
    return AttendanceReportService(source, cache=cache, clock=lambda: now)


PROFILES = [
    {'id': 'u-zara', 'full_name': 'Zara Khan', 'username': 'zara'},
    {'id': 'u-adam', 'full_name': None, 'username': 'adam'},
]


def test_overview_reconciles_work_time_from_logs():
    source = FakeSource(
        profiles=PROFILES,
        attendance=[attendance('u-zara', is_late=True), attendance('u-adam', total_work_minutes=300)],
        spans=[
            span('u-zara', at(10, 5), at(11, 0)),
            span('u-zara', at(10, 50), at(12, 0), 'customer_followup'),
            span('u-zara', at(14, 0), at(15, 30), 'data_collection'),
            span('u-zara', at(15, 30), at(16, 0), 'break_lunch'),
        ],
    )
    records = make_service(source, now=at(18, 0)).agent_attendance_overview('day', MONDAY)

    assert [r.agent_name for r in records] == ['adam', 'Zara Khan']
    adam, zara = records
    assert zara.total_work_minutes == 205
    assert zara.is_late
    assert zara.first_login == at(10, 5).isoformat()
    assert zara.last_logout == at(16, 0).isoformat()
    # no logs at all, so the stored figure is used
    assert adam.total_work_minutes == 300
    assert adam.first_login is None


def test_overview_discards_implausible_stored_minutes():
    source = FakeSource(profiles=PROFILES[:1], attendance=[attendance('u-zara', total_work_minutes=5000)])
    [record] = make_service(source).agent_attendance_overview('day', MONDAY)
    assert record.total_work_minutes is None


def test_overview_counts_fresh_open_span_only_while_working():
    spans = [span('u-zara', at(10, 0), at(11, 0)), span('u-zara', at(11, 50), None)]

    working = FakeSource(PROFILES[:1], [attendance('u-zara', is_working=True)], spans)
    [record] = make_service(working).agent_attendance_overview('day', MONDAY)
    assert record.total_work_minutes == 70

    idle = FakeSource(PROFILES[:1], [attendance('u-zara', is_working=False)], spans)
    [record] = make_service(idle).agent_attendance_overview('day', MONDAY)
    assert record.total_work_minutes == 60


def test_last_logout_shows_latest_start_for_ongoing_session():
    source = FakeSource(
        PROFILES[:1],
        [attendance('u-zara', is_working=True, last_logout='stored')],
        [span('u-zara', at(11, 50), None)],
    )
    [record] = make_service(source).agent_attendance_overview('day', MONDAY)
    assert record.total_work_minutes == 10
    assert record.last_logout == at(11, 50).isoformat()


def test_sunday_work_time_is_zero():
    source = FakeSource(
        PROFILES[:1],
        [attendance('u-zara', day=SUNDAY, total_work_minutes=120)],
        [span('u-zara', at(10, 0, day=SUNDAY), at(12, 0, day=SUNDAY))],
    )
    [record] = make_service(source).agent_attendance_overview('day', SUNDAY)
    assert record.total_work_minutes == 0


def test_past_day_with_only_an_open_span_keeps_stored_minutes():
    source = FakeSource(
        PROFILES[:1],
        [attendance('u-zara', is_working=False, total_work_minutes=240)],
        [span('u-zara', at(10, 0), None)],
    )
    [record] = make_service(source, now=at(12, 0, day=TUESDAY)).agent_attendance_overview('day', MONDAY)
    assert record.total_work_minutes == 240
    assert record.first_login == at(10, 0).isoformat()


def test_logs_outside_the_shift_keep_stored_minutes():
    source = FakeSource(
        PROFILES[:1],
        [attendance('u-zara', total_work_minutes=180)],
        [span('u-zara', at(7, 0), at(9, 0)), span('u-zara', at(20, 0), at(21, 0))],
    )
    [record] = make_service(source, now=at(22, 0)).agent_attendance_overview('day', MONDAY)
    assert record.total_work_minutes == 180
    assert not record.ceiling_exceeded


def test_open_spans_on_a_past_day_keep_stored_minutes():
    source = FakeSource(
        PROFILES[:1],
        [attendance('u-zara', is_working=True, total_work_minutes=200)],
        [span('u-zara', at(11, 40), None), span('u-zara', at(11, 50), None)],
    )
    [record] = make_service(source, now=at(12, 0, day=TUESDAY)).agent_attendance_overview('day', MONDAY)
    assert record.total_work_minutes == 200


def test_week_overview_and_summary():
    source = FakeSource(
        PROFILES[:1],
        [
            attendance('u-zara', MONDAY, is_late=True),
            attendance('u-zara', TUESDAY),
        ],
        [
            span('u-zara', at(10, 0), at(12, 0)),
            span('u-zara', at(10, 0, TUESDAY), at(11, 0, TUESDAY)),
        ],
    )
    service = make_service(source, now=at(12, 0, TUESDAY))
    [summary] = service.agent_attendance_summary('week', MONDAY)

    assert summary.total_days == 2
    assert summary.late_days == 1
    assert summary.total_work_minutes == 180
    assert summary.avg_first_login is not None


def test_summarize_by_agent_averages_times():
    records = [
        AgentAttendanceRecord('a', 'A', '2026-02-02', at(10, 0).isoformat(), at(18, 0).isoformat(),
                              'present', False, 100),
        AgentAttendanceRecord('a', 'A', '2026-02-03', at(10, 20, TUESDAY).isoformat(), None,
                              'present', True, None),
    ]
    [summary] = summarize_by_agent(records)
    assert summary.total_work_minutes == 100
    assert summary.avg_last_logout == at(18, 0).isoformat()
    assert summary.avg_first_login.endswith('+04:00')


def test_period_before_data_start_skips_queries():
    source = FakeSource(PROFILES)
    assert make_service(source).agent_attendance_overview('day', date(2024, 12, 1)) == []
    assert source.calls == []


def test_no_profiles_returns_empty():
    assert make_service(FakeSource()).agent_attendance_overview('week', MONDAY) == []


def test_my_attendance_history_returns_stored_values():
    source = FakeSource(attendance=[attendance('u-zara', total_work_minutes=250, first_login='t1')])
    [entry] = make_service(source).my_attendance_history('u-zara', 'month', MONDAY)
    assert entry.total_work_minutes == 250
    assert entry.first_login == 't1'
    assert make_service(source).my_attendance_history('', 'day', MONDAY) == []


def test_timeline_lists_activities_and_clamps_to_today():
    source = FakeSource(
        PROFILES,
        [attendance('u-zara'), attendance('u-adam')],
        [
            span('u-zara', at(10, 0), at(10, 30), span_id='1'),
            span('u-zara', at(10, 15), at(10, 45), 'data_collection', span_id='2'),
            span('u-zara', at(10, 45), at(11, 0), 'break_short', span_id='3'),
        ],
    )
    timelines = make_service(source).agent_activity_timeline('week', MONDAY, agent_id='u-zara')

    assert ('spans', SUNDAY, MONDAY) in source.calls
    [timeline] = timelines
    assert [a.activity_label for a in timeline.activities] == ['Telecalling', 'Data Collection', 'Short Break']
    assert timeline.activity_summary == {'calling_telecalling': 30, 'data_collection': 30, 'break_short': 15}
    assert timeline.total_work_minutes == 45
    assert timeline.last_logout == at(11, 0).isoformat()


def test_reports_are_served_from_the_cache():
    source = FakeSource(PROFILES[:1], [attendance('u-zara')], [span('u-zara', at(10, 0), at(11, 0))])
    cache = ReportCache(client=FakeRedis())
    service = make_service(source, cache=cache)

    first = service.agent_attendance_overview('day', MONDAY)
    calls = len(source.calls)
    second = service.agent_attendance_overview('day', MONDAY)
    assert len(source.calls) == calls
    assert [r.to_dict() for r in first] == [r.to_dict() for r in second]

    assert service.invalidate(user_id='u-zara') == 1
    service.agent_attendance_overview('day', MONDAY)
    assert len(source.calls) > calls


def test_safe_stored_minutes():
    assert safe_stored_minutes(0) == 0
    assert safe_stored_minutes(1440) == 1440
    assert safe_stored_minutes(1441) is None
    assert safe_stored_minutes(-1) is None
    assert safe_stored_minutes(True) is None
    assert safe_stored_minutes('90') is None


def test_span_duration_rounds_half_minutes_up():
    def logged(duration, end=None):
        return ActivitySpan('u-zara', 'calling_telecalling', at(10, 0), end, duration_minutes=duration)

    assert span_duration_minutes(logged(2.5)) == 3
    assert span_duration_minutes(logged(3.5)) == 4
    assert span_duration_minutes(logged(2.4)) == 2
    assert span_duration_minutes(logged(None, at(10, 2) + timedelta(seconds=30))) == 3
    assert span_duration_minutes(logged(None)) is None
