"""
Attendance reporting API.

JSON endpoints over AttendanceReportService. Authentication is handled in
front of this service and is not part of it.
"""

import logging
from datetime import datetime

import pytz
from flask import Flask, jsonify, request

from activity_log_source import ActivityLogSource, DataSourceError
from attendance_overview import AttendanceReportService
from config import Settings
from redis_cache import ReportCache
from supabase_pool import get_supabase_client
from work_calendar import PERIODS, civil_date, parse_day

logger = logging.getLogger(__name__)

# Reduce Flask log noise
logging.getLogger('werkzeug').setLevel(logging.WARNING)


def build_report_service(settings: Settings) -> AttendanceReportService:
    source = ActivityLogSource(get_supabase_client(settings))
    cache = ReportCache(redis_url=settings.redis_url, default_ttl=settings.report_cache_ttl)
    return AttendanceReportService(
        source,
        calendar=settings.shift_calendar(),
        cache=cache,
        config=settings.reconciler_config(),
        data_start=settings.data_start_date,
    )


class InvalidReportRequest(ValueError):
    pass


def _report_args():
    """period and date query arguments; date defaults to today in Dubai"""
    period = request.args.get('period', 'day')
    if period not in PERIODS:
        raise InvalidReportRequest(f"Invalid period '{period}'. Use one of: {', '.join(PERIODS)}")

    raw_date = request.args.get('date')
    if not raw_date:
        return period, civil_date(datetime.now(pytz.utc))
    try:
        return period, parse_day(raw_date)
    except ValueError:
        raise InvalidReportRequest(f"Invalid date '{raw_date}'. Expected YYYY-MM-DD")


def create_app(settings: Settings = None, service: AttendanceReportService = None) -> Flask:
    settings = settings or Settings.from_env()
    app = Flask(__name__)

    if service is None:
        service = build_report_service(settings)
    app.config['REPORT_SERVICE'] = service

    @app.errorhandler(InvalidReportRequest)
    def handle_bad_request(e):
        return jsonify({'success': False, 'message': str(e)}), 400

    @app.errorhandler(DataSourceError)
    def handle_data_source_error(e):
        logger.error(f"❌ Attendance data unavailable: {e}")
        return jsonify({'success': False, 'message': str(e)}), 502

    @app.route('/health')
    def health():
        cache = service.cache
        return jsonify({
            'success': True,
            'cache': cache.get_stats() if cache is not None else {'available': False},
        })

    @app.route('/api/attendance/overview')
    def attendance_overview():
        period, selected_day = _report_args()
        records = service.agent_attendance_overview(
            period, selected_day, team_id=request.args.get('team_id') or None,
        )
        return jsonify({
            'success': True,
            'period': period,
            'date': selected_day.isoformat(),
            'records': [record.to_dict() for record in records],
        })

    @app.route('/api/attendance/summary')
    def attendance_summary():
        period, selected_day = _report_args()
        summaries = service.agent_attendance_summary(
            period, selected_day, team_id=request.args.get('team_id') or None,
        )
        return jsonify({
            'success': True,
            'period': period,
            'date': selected_day.isoformat(),
            'agents': [summary.to_dict() for summary in summaries],
        })

    @app.route('/api/attendance/history/<user_id>')
    def attendance_history(user_id):
        period, selected_day = _report_args()
        entries = service.my_attendance_history(user_id, period, selected_day)
        return jsonify({
            'success': True,
            'user_id': user_id,
            'records': [entry.to_dict() for entry in entries],
        })

    @app.route('/api/attendance/timeline')
    def activity_timeline():
        period, selected_day = _report_args()
        timelines = service.agent_activity_timeline(
            period, selected_day,
            team_id=request.args.get('team_id') or None,
            agent_id=request.args.get('agent_id') or None,
        )
        return jsonify({
            'success': True,
            'period': period,
            'date': selected_day.isoformat(),
            'timelines': [timeline.to_dict() for timeline in timelines],
        })

    @app.route('/api/attendance/cache/invalidate', methods=['POST'])
    def invalidate_cache():
        data = request.get_json(silent=True) or {}
        removed = service.invalidate(user_id=data.get('user_id'), report=data.get('report'))
        return jsonify({'success': True, 'removed': removed})

    return app


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    app = create_app()
    app.run(host='0.0.0.0', port=5000)
