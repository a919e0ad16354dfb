"""Point derivation and the commands that mutate a user's ledger.

Every mutation runs inside the user's ledger scope and finishes with a full
GBRO cascade recompute for that user.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..models import Attendance, AttendancePoint, ExpirationType, User, ViolationType
from .cascade_service import cascade_recalculate
from .locking import user_ledger_scope
from .notification_service import PointCreatedEvent, notify_point_created

logger = logging.getLogger(__name__)

UNDERTIME_EXTENDED_THRESHOLD_MINUTES = 60


class PointRuleViolation(Exception):
    """Raised when a ledger command violates business rules."""

    def __init__(self, detail: str, status_code: int = 400) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


def coerce_violation_type(value) -> ViolationType:
    try:
        return ViolationType(value)
    except ValueError as exc:
        raise PointRuleViolation(f"Unknown violation type {value!r}.", status_code=422) from exc


def derived_fields(point_type: ViolationType, shift_date: date, is_advised: bool) -> dict:
    """Fields fully determined by type, date and notice; never set directly."""

    unadvised_absence = point_type.is_unadvised_absence(is_advised)
    return {
        "points": point_type.point_value,
        "expires_at": point_type.fixed_expiration_date(shift_date, is_advised),
        "expiration_type": ExpirationType.NONE if unadvised_absence else ExpirationType.SRO,
        "eligible_for_gbro": not unadvised_absence,
    }


def classify_attendance(attendance: Attendance) -> Optional[ViolationType]:
    """Map a finalized attendance record to at most one violation type."""

    if attendance.leave_approved:
        return None
    if attendance.is_absent:
        return ViolationType.HALF_DAY_ABSENCE if attendance.is_half_day else ViolationType.WHOLE_DAY_ABSENCE
    if attendance.is_tardy and (attendance.tardy_minutes or 0) > 0:
        return ViolationType.TARDY
    if attendance.is_undertime and (attendance.undertime_minutes or 0) > 0:
        if attendance.undertime_minutes > UNDERTIME_EXTENDED_THRESHOLD_MINUTES:
            return ViolationType.UNDERTIME_MORE_THAN_HOUR
        return ViolationType.UNDERTIME
    return None


def describe_manual_violation(
    point_type: ViolationType,
    is_advised: bool,
    tardy_minutes: Optional[int] = None,
    undertime_minutes: Optional[int] = None,
) -> str:
    if point_type == ViolationType.WHOLE_DAY_ABSENCE:
        if is_advised:
            return "Manual Entry: Advised absence (Failed to Notify - FTN)"
        return "Manual Entry: No Call, No Show (NCNS) - Did not report for work without prior notice"
    if point_type == ViolationType.HALF_DAY_ABSENCE:
        return "Manual Entry: Half-day absence recorded"
    if point_type == ViolationType.TARDY:
        return f"Manual Entry: Late arrival by {tardy_minutes or 0} minutes"
    if point_type == ViolationType.UNDERTIME:
        return f"Manual Entry: Early departure by {undertime_minutes or 0} minutes (up to 1 hour)"
    return f"Manual Entry: Early departure by {undertime_minutes or 0} minutes (more than 1 hour)"


def describe_attendance_violation(attendance: Attendance, point_type: ViolationType) -> str:
    if point_type == ViolationType.WHOLE_DAY_ABSENCE:
        if attendance.is_advised:
            return "Failed to Notify (FTN): Employee did not report for work despite being advised."
        return "No Call, No Show (NCNS): Employee did not report for work and did not provide prior notice."
    if point_type == ViolationType.HALF_DAY_ABSENCE:
        return "Half-Day Absence: Employee was absent for half of the scheduled shift."
    if point_type == ViolationType.TARDY:
        return f"Tardy: Arrived {attendance.tardy_minutes or 0} minutes late."
    if point_type == ViolationType.UNDERTIME:
        return f"Undertime: Left {attendance.undertime_minutes or 0} minutes early (up to 1 hour before scheduled end)."
    return (
        f"Undertime (>1 Hour): Left {attendance.undertime_minutes or 0} minutes early "
        "(more than 1 hour before scheduled end)."
    )


def get_point(session: Session, point_id: int) -> AttendancePoint:
    point = session.get(AttendancePoint, point_id)
    if point is None:
        raise PointRuleViolation(f"Attendance point {point_id} not found", status_code=404)
    return point


def _reload_point(session: Session, point_id: int) -> AttendancePoint:
    # Re-read under the ledger scope so checks see changes committed by other sessions
    point = session.execute(
        select(AttendancePoint)
        .where(AttendancePoint.id == point_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if point is None:
        raise PointRuleViolation(f"Attendance point {point_id} not found", status_code=404)
    return point


def _require_user(user: Optional[User], user_id: int) -> User:
    if user is None:
        raise PointRuleViolation(f"User {user_id} not found", status_code=404)
    return user


def _notify_created(point: AttendancePoint) -> None:
    notify_point_created(
        PointCreatedEvent(
            user_id=point.user_id,
            point_type=point.point_type,
            shift_date=point.shift_date,
            points=point.points,
            is_manual=point.is_manual,
        )
    )


def create_point_from_attendance(
    session: Session,
    attendance: Attendance,
    *,
    today: Optional[date] = None,
    recompute: bool = True,
) -> Optional[AttendancePoint]:
    """Derive the point for a finalized attendance record.

    Returns ``None`` when the record carries no violation. Re-deriving a record
    that already has a point returns the existing point unchanged.
    """

    with user_ledger_scope(session, attendance.user_id) as user:
        _require_user(user, attendance.user_id)

        existing = session.execute(
            select(AttendancePoint).where(AttendancePoint.attendance_id == attendance.id).limit(1)
        ).scalar_one_or_none()
        if existing is not None:
            return existing

        point_type = classify_attendance(attendance)
        if point_type is None:
            logger.debug("attendance %s has no violation; no point derived", attendance.id)
            return None

        duplicate = session.execute(
            select(AttendancePoint)
            .where(
                AttendancePoint.user_id == attendance.user_id,
                AttendancePoint.shift_date == attendance.shift_date,
                AttendancePoint.point_type == point_type,
            )
            .limit(1)
        ).scalar_one_or_none()
        if duplicate is not None:
            return duplicate

        is_advised = bool(attendance.is_advised)
        point = AttendancePoint(
            user_id=attendance.user_id,
            attendance_id=attendance.id,
            shift_date=attendance.shift_date,
            point_type=point_type,
            is_advised=is_advised,
            is_manual=False,
            violation_details=describe_attendance_violation(attendance, point_type),
            tardy_minutes=attendance.tardy_minutes if point_type == ViolationType.TARDY else None,
            undertime_minutes=(
                attendance.undertime_minutes
                if point_type in (ViolationType.UNDERTIME, ViolationType.UNDERTIME_MORE_THAN_HOUR)
                else None
            ),
            **derived_fields(point_type, attendance.shift_date, is_advised),
        )
        session.add(point)
        session.flush()

        _notify_created(point)
        if recompute:
            cascade_recalculate(session, attendance.user_id, today=today)

    return point


def derive_point_for_attendance(
    session: Session,
    attendance_id: int,
    *,
    today: Optional[date] = None,
) -> Optional[AttendancePoint]:
    attendance = session.get(Attendance, attendance_id)
    if attendance is None:
        raise PointRuleViolation(f"Attendance {attendance_id} not found", status_code=404)
    return create_point_from_attendance(session, attendance, today=today)


def create_manual_point(
    session: Session,
    *,
    user_id: int,
    shift_date: date,
    point_type,
    is_advised: bool = False,
    notes: Optional[str] = None,
    violation_details: Optional[str] = None,
    tardy_minutes: Optional[int] = None,
    undertime_minutes: Optional[int] = None,
    created_by: Optional[int] = None,
    today: Optional[date] = None,
) -> AttendancePoint:
    """Record an operator-entered point, replacing any point on the same date."""

    point_type = coerce_violation_type(point_type)

    with user_ledger_scope(session, user_id) as user:
        _require_user(user, user_id)

        session.execute(
            delete(AttendancePoint)
            .where(AttendancePoint.user_id == user_id, AttendancePoint.shift_date == shift_date)
            .execution_options(synchronize_session="fetch")
        )

        point = AttendancePoint(
            user_id=user_id,
            attendance_id=None,
            shift_date=shift_date,
            point_type=point_type,
            is_advised=is_advised,
            is_manual=True,
            created_by=created_by,
            notes=notes,
            violation_details=violation_details
            or describe_manual_violation(point_type, is_advised, tardy_minutes, undertime_minutes),
            tardy_minutes=tardy_minutes,
            undertime_minutes=undertime_minutes,
            **derived_fields(point_type, shift_date, is_advised),
        )
        session.add(point)
        session.flush()

        _notify_created(point)
        cascade_recalculate(session, user_id, today=today)

    return point


def update_manual_point(
    session: Session,
    point_id: int,
    *,
    shift_date: date,
    point_type,
    is_advised: bool = False,
    notes: Optional[str] = None,
    violation_details: Optional[str] = None,
    tardy_minutes: Optional[int] = None,
    undertime_minutes: Optional[int] = None,
    today: Optional[date] = None,
) -> AttendancePoint:
    """Replace a manual point's content and every field derived from it."""

    point_type = coerce_violation_type(point_type)
    user_id = get_point(session, point_id).user_id

    with user_ledger_scope(session, user_id):
        point = _reload_point(session, point_id)
        if not point.is_manual:
            raise PointRuleViolation("Only manually entered points can be edited.")

        point.shift_date = shift_date
        point.point_type = point_type
        point.is_advised = is_advised
        point.notes = notes
        point.violation_details = violation_details or describe_manual_violation(
            point_type, is_advised, tardy_minutes, undertime_minutes
        )
        point.tardy_minutes = tardy_minutes
        point.undertime_minutes = undertime_minutes
        point.is_expired = False
        point.expired_at = None
        point.gbro_applied_at = None
        point.gbro_batch_id = None
        point.gbro_expires_at = None
        for name, value in derived_fields(point_type, shift_date, is_advised).items():
            setattr(point, name, value)
        session.flush()

        cascade_recalculate(session, point.user_id, today=today)

    return point


def delete_manual_point(session: Session, point_id: int, *, today: Optional[date] = None) -> None:
    user_id = get_point(session, point_id).user_id

    with user_ledger_scope(session, user_id):
        point = _reload_point(session, point_id)
        if not point.is_manual:
            raise PointRuleViolation("Only manually entered points can be deleted.")

        session.delete(point)
        session.flush()
        cascade_recalculate(session, user_id, today=today)


def excuse_point(
    session: Session,
    point_id: int,
    *,
    reason: str,
    excused_by: Optional[int] = None,
    today: Optional[date] = None,
) -> AttendancePoint:
    """Excuse a point; it stops counting but its date still resets the GBRO clock."""

    if not reason or not reason.strip():
        raise PointRuleViolation("An excuse reason is required.", status_code=422)

    user_id = get_point(session, point_id).user_id

    with user_ledger_scope(session, user_id):
        point = _reload_point(session, point_id)
        if point.is_excused:
            raise PointRuleViolation("Attendance point is already excused.")

        point.is_excused = True
        point.excused_by = excused_by
        point.excused_at = datetime.utcnow()
        point.excuse_reason = reason.strip()
        session.flush()
        cascade_recalculate(session, point.user_id, today=today)

    return point


def unexcuse_point(session: Session, point_id: int, *, today: Optional[date] = None) -> AttendancePoint:
    user_id = get_point(session, point_id).user_id

    with user_ledger_scope(session, user_id):
        point = _reload_point(session, point_id)
        if not point.is_excused:
            raise PointRuleViolation("Attendance point is not excused.")

        point.is_excused = False
        point.excused_by = None
        point.excused_at = None
        point.excuse_reason = None
        session.flush()
        cascade_recalculate(session, point.user_id, today=today)

    return point


def recalculate_user(session: Session, user_id: int, *, today: Optional[date] = None):
    """Explicitly trigger a cascade recompute; returns the schedule or ``None`` on fault."""

    with user_ledger_scope(session, user_id) as user:
        _require_user(user, user_id)
        return cascade_recalculate(session, user_id, today=today)
