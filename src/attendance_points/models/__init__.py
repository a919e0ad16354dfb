"""SQLAlchemy models for the attendance point ledger."""

from .attendance import Attendance
from .attendance_point import AttendancePoint, ExpirationType, ViolationPolicy, ViolationType
from .user import User

__all__ = [
    "Attendance",
    "AttendancePoint",
    "ExpirationType",
    "User",
    "ViolationPolicy",
    "ViolationType",
]
