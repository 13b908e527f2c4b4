"""
Trip, attendance and stop event enumerations.
"""

import enum


class TripState(str, enum.Enum):
    """Trip state machine: idle -> in_progress -> completed -> idle."""
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AttendanceStatus(str, enum.Enum):
    """Per-student boarding status for one service date."""
    WAITING = "waiting"
    PRESENT_AT_STOP = "present_at_stop"
    BOARDED = "boarded"
    ABSENT = "absent"


# Forward-only transitions. boarded and absent are terminal for the date.
ATTENDANCE_TRANSITIONS = {
    AttendanceStatus.WAITING: {AttendanceStatus.PRESENT_AT_STOP, AttendanceStatus.BOARDED, AttendanceStatus.ABSENT},
    AttendanceStatus.PRESENT_AT_STOP: {AttendanceStatus.BOARDED},
    AttendanceStatus.BOARDED: set(),
    AttendanceStatus.ABSENT: set(),
}


def can_advance(current: AttendanceStatus, target: AttendanceStatus) -> bool:
    return target in ATTENDANCE_TRANSITIONS[current]


class StopEventStatus(str, enum.Enum):
    ARRIVED = "arrived"
    DEPARTED = "departed"
