"""
Activity types logged by agents.

Every activity_type stored in activity_logs maps to exactly one member here,
together with its display label and whether it counts as work time.
"""

from enum import Enum
from typing import Optional, Tuple


class ActivityType(Enum):
    """Closed set of activity types with label and work classification"""

    DATA_COLLECTION = ('data_collection', 'Data Collection', True)
    CUSTOMER_FOLLOWUP = ('customer_followup', 'Customer Followup', True)
    CALLING_TELECALLING = ('calling_telecalling', 'Telecalling', True)
    CALLING_COLDCALLING = ('calling_coldcalling', 'Cold Calling', True)
    CALLING_CALLLIST_MOVEMENT = ('calling_calllist_movement', 'Call List Movement', True)
    CLIENT_MEETING = ('client_meeting', 'Client Meeting', True)
    ADMIN_DOCUMENTATION = ('admin_documentation', 'Admin/Documentation', True)
    TRAINING = ('training', 'Training', True)
    SYSTEM_BANK_PORTAL = ('system_bank_portal', 'Bank Portal', True)
    BREAK_LUNCH = ('break_lunch', 'Lunch Break', False)
    BREAK_SHORT = ('break_short', 'Short Break', False)
    BREAK_PRAYER = ('break_prayer', 'Prayer Break', False)
    IDLE = ('idle', 'Idle', False)
    OTHERS = ('others', 'Others', False)

    def __init__(self, code: str, label: str, is_work: bool):
        self.code = code
        self.label = label
        self.is_work = is_work

    @property
    def is_break(self) -> bool:
        return self.code.startswith('break_')

    @classmethod
    def parse(cls, value) -> Optional['ActivityType']:
        """Return the member for a stored activity_type string, or None if unknown"""
        if isinstance(value, cls):
            return value
        if not value:
            return None
        return _BY_CODE.get(str(value).strip().lower())


_BY_CODE = {member.code: member for member in ActivityType}

WORK_ACTIVITY_TYPES: Tuple[ActivityType, ...] = tuple(t for t in ActivityType if t.is_work)
WORK_ACTIVITY_CODES: Tuple[str, ...] = tuple(t.code for t in WORK_ACTIVITY_TYPES)


def label_for(value) -> str:
    """Display label for an activity type, falling back to the raw value"""
    activity_type = ActivityType.parse(value)
    if activity_type is None:
        return str(value) if value is not None else ''
    return activity_type.label


def is_work_activity(value) -> bool:
    activity_type = ActivityType.parse(value)
    return activity_type is not None and activity_type.is_work
