"""
Work Interval Reconciler
========================

Turns the activity spans one agent logged on one civil day into a single
worked-minutes figure:

1. closed spans are clamped to the day's shift window (empty ones dropped)
2. overlapping or touching intervals are merged so nothing is counted twice
3. each merged interval is rounded to whole minutes (half a minute rounds up)
4. on the current day, the latest open span may add a short capped interval
5. the total never exceeds the window length

Everything here is a pure function of its inputs. Malformed spans contribute
nothing instead of raising, because the result feeds a human-facing report.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

import pytz

from work_calendar import ShiftWindow, civil_date

logger = logging.getLogger(__name__)

Interval = Tuple[datetime, datetime]

_MINUTE = timedelta(minutes=1)
_HALF_MINUTE = timedelta(seconds=30)


@dataclass(frozen=True)
class ActivitySpan:
    """One logged period of an activity; end is None while it is still open"""
    user_id: str
    activity_type: str
    start: datetime
    end: Optional[datetime] = None
    id: Optional[str] = None
    duration_minutes: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.end is None


@dataclass(frozen=True)
class ReconcilerConfig:
    """
    Tunables for counting an open span.

    freshness_minutes: the latest open span only counts if it started less
        than this many minutes before now.
    ongoing_cap_minutes: an open span never adds more than this many minutes.
    """
    freshness_minutes: int = 30
    ongoing_cap_minutes: int = 15


@dataclass(frozen=True)
class ReconciledWorkMinutes:
    minutes: int
    ceiling_exceeded: bool = False
    included_ongoing: bool = False
    intervals: Tuple[Interval, ...] = field(default=(), compare=False)

    def __int__(self):
        return self.minutes


DEFAULT_CONFIG = ReconcilerConfig()


def interval_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between start and end, half a minute rounding up"""
    if end <= start:
        return 0
    return (end - start + _HALF_MINUTE) // _MINUTE


def as_aware(instant: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken as UTC, like parse_timestamp does"""
    if instant is not None and instant.tzinfo is None:
        return pytz.utc.localize(instant)
    return instant


def clamp_spans(spans: Iterable[ActivitySpan], window: ShiftWindow) -> List[Interval]:
    """Clamp closed spans to the window, dropping those left empty or inverted"""
    clamped = []
    for span in spans:
        if span.end is None or span.start is None:
            continue
        interval = window.clamp(as_aware(span.start), as_aware(span.end))
        if interval is not None:
            clamped.append(interval)
    return clamped


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """Union of the intervals; overlapping or touching ones are combined"""
    merged: List[List[datetime]] = []
    for start, end in sorted(intervals, key=lambda interval: interval[0]):
        if end <= start:
            continue
        if merged and start <= merged[-1][1]:
            if end > merged[-1][1]:
                merged[-1][1] = end
        else:
            merged.append([start, end])
    return [(start, end) for start, end in merged]


def _ongoing_interval(open_spans: List[ActivitySpan], window: ShiftWindow, now: datetime,
                      config: ReconcilerConfig) -> Optional[Interval]:
    """Synthetic interval for the latest open span, or None if it must be ignored"""
    starts = [as_aware(span.start) for span in open_spans if span.start is not None]
    if not starts:
        return None
    now = as_aware(now)

    if civil_date(now) != window.day:
        return None
    if not window.contains(now):
        return None

    latest_start = max(starts)
    age = now - latest_start
    if age < timedelta(0) or age >= timedelta(minutes=config.freshness_minutes):
        return None

    end = min(latest_start + timedelta(minutes=config.ongoing_cap_minutes), now)
    return window.clamp(latest_start, end)


def reconcile_work_minutes(spans: Iterable[ActivitySpan], shift_window: Optional[ShiftWindow],
                           now: datetime, config: Optional[ReconcilerConfig] = None) -> ReconciledWorkMinutes:
    """
    Total non-overlapping work minutes for one user-day.

    spans must already be limited to work activity types, one user and one
    civil day. A missing shift_window (day off) yields 0 without looking at
    the spans.
    """
    if shift_window is None:
        return ReconciledWorkMinutes(minutes=0)

    config = config or DEFAULT_CONFIG
    spans = list(spans)
    closed = [span for span in spans if span.end is not None]
    open_spans = [span for span in spans if span.end is None]

    candidates = clamp_spans(closed, shift_window)

    ongoing = _ongoing_interval(open_spans, shift_window, now, config) if open_spans else None
    if ongoing is not None:
        candidates.append(ongoing)

    merged = merge_intervals(candidates)
    total = sum(interval_minutes(start, end) for start, end in merged)

    ceiling = shift_window.length_minutes
    ceiling_exceeded = total > ceiling
    if ceiling_exceeded:
        logger.warning(
            f"⚠️ Reconciled {total} work minutes on {shift_window.day.isoformat()} exceeds "
            f"the {ceiling} minute shift window; clamping"
        )
        total = ceiling

    return ReconciledWorkMinutes(
        minutes=max(total, 0),
        ceiling_exceeded=ceiling_exceeded,
        included_ongoing=ongoing is not None,
        intervals=tuple(merged),
    )
