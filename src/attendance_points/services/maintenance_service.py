"""Ledger maintenance: duplicate removal, expiration sweeps, reset and regeneration."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.orm import Session

from ..models import Attendance, AttendancePoint, ExpirationType, User
from .cascade_service import cascade_recalculate
from .expiration_service import expire_fixed_points, pending_fixed_expirations_stmt
from .locking import user_ledger_scope
from .point_service import PointRuleViolation, create_point_from_attendance

logger = logging.getLogger(__name__)

EXPIRATION_KINDS = ("sro", "gbro", "both")


def _duplicate_groups_stmt():
    return (
        select(
            AttendancePoint.user_id,
            AttendancePoint.shift_date,
            AttendancePoint.point_type,
            func.count(AttendancePoint.id).label("count"),
        )
        .group_by(AttendancePoint.user_id, AttendancePoint.shift_date, AttendancePoint.point_type)
        .having(func.count(AttendancePoint.id) > 1)
    )


def _missing_points_stmt():
    """Verified records that classify to a violation and have no point for their date."""

    has_violation = or_(
        Attendance.is_absent.is_(True),
        and_(Attendance.is_tardy.is_(True), Attendance.tardy_minutes > 0),
        and_(Attendance.is_undertime.is_(True), Attendance.undertime_minutes > 0),
    )
    has_point = exists().where(
        or_(
            AttendancePoint.attendance_id == Attendance.id,
            and_(
                AttendancePoint.user_id == Attendance.user_id,
                AttendancePoint.shift_date == Attendance.shift_date,
            ),
        )
    )
    return select(Attendance).where(
        Attendance.admin_verified.is_(True),
        Attendance.leave_approved.is_(False),
        has_violation,
        ~has_point,
    )


def management_stats(session: Session, *, today: date) -> dict[str, int]:
    """Counts of the conditions each maintenance operation repairs."""

    duplicate_rows = session.execute(_duplicate_groups_stmt()).all()
    pending_expirations = session.execute(
        select(func.count()).select_from(pending_fixed_expirations_stmt(today).subquery())
    ).scalar_one()
    expired = session.execute(
        select(func.count(AttendancePoint.id)).where(
            AttendancePoint.is_expired.is_(True), AttendancePoint.is_excused.is_(False)
        )
    ).scalar_one()
    missing = session.execute(
        select(func.count()).select_from(_missing_points_stmt().subquery())
    ).scalar_one()
    pending_recompute = session.execute(
        select(func.count(User.id)).where(User.points_recompute_pending.is_(True))
    ).scalar_one()

    return {
        "duplicates_count": sum(row.count - 1 for row in duplicate_rows),
        "pending_expirations_count": pending_expirations,
        "expired_count": expired,
        "missing_points_count": missing,
        "pending_recompute_users": pending_recompute,
    }


def remove_duplicates(session: Session, *, today: date) -> dict[str, int]:
    """Keep one point per (user, date, type): excused first, then lowest id."""

    groups_by_user: dict[int, list] = defaultdict(list)
    for row in session.execute(_duplicate_groups_stmt()).all():
        groups_by_user[row.user_id].append(row)

    removed = 0
    for user_id, groups in groups_by_user.items():
        with user_ledger_scope(session, user_id):
            for group in groups:
                points = session.execute(
                    select(AttendancePoint)
                    .where(
                        AttendancePoint.user_id == user_id,
                        AttendancePoint.shift_date == group.shift_date,
                        AttendancePoint.point_type == group.point_type,
                    )
                    .order_by(AttendancePoint.is_excused.desc(), AttendancePoint.id.asc())
                ).scalars().all()
                for duplicate in points[1:]:
                    session.delete(duplicate)
                    removed += 1
            session.flush()
            cascade_recalculate(session, user_id, today=today)

    if removed:
        logger.info("removed %d duplicate attendance points for %d users", removed, len(groups_by_user))
    return {"removed": removed, "users_affected": len(groups_by_user)}


def _sweep_user_ids(session: Session) -> list[int]:
    with_open_points = select(AttendancePoint.user_id).where(AttendancePoint.is_expired.is_(False))
    pending = select(User.id).where(User.points_recompute_pending.is_(True))
    user_ids = set(session.execute(with_open_points).scalars()) | set(session.execute(pending).scalars())
    return sorted(user_ids)


def _gbro_expired_ids(session: Session, user_id: int) -> set[int]:
    stmt = select(AttendancePoint.id).where(
        AttendancePoint.user_id == user_id,
        AttendancePoint.is_expired.is_(True),
        AttendancePoint.expiration_type == ExpirationType.GBRO,
    )
    return set(session.execute(stmt).scalars())


def run_expiration_sweep(
    session: Session,
    *,
    today: date,
    kind: str = "both",
    user_ids: Optional[Iterable[int]] = None,
) -> dict[str, int]:
    """Apply fixed decay and a full GBRO cascade, one user at a time.

    Each user is its own unit of consistency: the user's changes are
    committed before moving on, and a failing user is rolled back and skipped
    without undoing users already processed.
    """

    if kind not in EXPIRATION_KINDS:
        raise PointRuleViolation(f"Unknown expiration kind {kind!r}.", status_code=422)

    summary = {
        "users_processed": 0,
        "users_failed": 0,
        "sro_expired": 0,
        "gbro_expired": 0,
    }

    targets = sorted(set(user_ids)) if user_ids is not None else _sweep_user_ids(session)

    for user_id in targets:
        try:
            with user_ledger_scope(session, user_id) as user:
                if user is None:
                    continue

                sro_expired = 0
                if kind in ("sro", "both"):
                    sro_expired = len(expire_fixed_points(session, today=today, user_id=user_id))

                # Fixed decay changes the active set, so GBRO is replayed whenever it fired
                gbro_expired = 0
                recomputed = True
                if kind in ("gbro", "both") or sro_expired:
                    before = _gbro_expired_ids(session, user_id)
                    schedule = cascade_recalculate(session, user_id, today=today)
                    recomputed = schedule is not None
                    if recomputed:
                        gbro_expired = len(schedule.forgiven_ids - before)

            session.commit()
        except Exception:
            session.rollback()
            summary["users_failed"] += 1
            logger.exception("expiration sweep failed for user %s; continuing", user_id)
            continue

        if recomputed:
            summary["users_processed"] += 1
        else:
            logger.warning("user %s left pending GBRO recompute after sweep", user_id)
            summary["users_failed"] += 1
        summary["sro_expired"] += sro_expired
        summary["gbro_expired"] += gbro_expired

    logger.info("expiration sweep (%s) completed: %s", kind, summary)
    return summary


def reset_expired(
    session: Session,
    *,
    today: date,
    user_ids: Optional[Iterable[int]] = None,
) -> dict[str, int]:
    """Return expired, non-excused points to active and replay GBRO.

    Fixed expiration dates are recomputed from each point's own fields; the
    next sweep re-applies any fixed decay that is still due.
    """

    stmt = select(AttendancePoint).where(
        AttendancePoint.is_expired.is_(True), AttendancePoint.is_excused.is_(False)
    )
    if user_ids:
        stmt = stmt.where(AttendancePoint.user_id.in_(list(user_ids)))

    points_by_user: dict[int, list[AttendancePoint]] = defaultdict(list)
    for point in session.execute(stmt.order_by(AttendancePoint.id)).scalars():
        points_by_user[point.user_id].append(point)

    reset = 0
    for user_id, points in points_by_user.items():
        with user_ledger_scope(session, user_id):
            for point in points:
                unadvised_absence = point.is_unadvised_absence
                point.is_expired = False
                point.expired_at = None
                point.expiration_type = ExpirationType.NONE if unadvised_absence else ExpirationType.SRO
                point.expires_at = point.point_type.fixed_expiration_date(point.shift_date, point.is_advised)
                point.gbro_applied_at = None
                point.gbro_batch_id = None
                reset += 1
            session.flush()
            cascade_recalculate(session, user_id, today=today)

    return {"reset": reset, "users_affected": len(points_by_user)}


def regenerate_points(
    session: Session,
    *,
    today: date,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    user_id: Optional[int] = None,
) -> dict[str, int]:
    """Re-derive points for verified attendance records that have none."""

    stmt = _missing_points_stmt()
    if date_from is not None:
        stmt = stmt.where(Attendance.shift_date >= date_from)
    if date_to is not None:
        stmt = stmt.where(Attendance.shift_date <= date_to)
    if user_id is not None:
        stmt = stmt.where(Attendance.user_id == user_id)

    attendances = session.execute(
        stmt.order_by(Attendance.user_id.asc(), Attendance.shift_date.asc())
    ).scalars().all()

    by_user: dict[int, list[Attendance]] = defaultdict(list)
    for attendance in attendances:
        by_user[attendance.user_id].append(attendance)

    regenerated = 0
    for owner_id, records in by_user.items():
        with user_ledger_scope(session, owner_id):
            for attendance in records:
                point = create_point_from_attendance(session, attendance, today=today, recompute=False)
                if point is not None and point.attendance_id == attendance.id:
                    regenerated += 1
            cascade_recalculate(session, owner_id, today=today)

    return {"regenerated": regenerated, "records_processed": len(attendances)}


def expire_all_pending(session: Session, *, today: date, kind: str = "both") -> dict[str, int]:
    summary = run_expiration_sweep(session, today=today, kind=kind)
    summary["expired"] = summary["sro_expired"] + summary["gbro_expired"]
    return summary


def cleanup(session: Session, *, today: date) -> dict[str, int]:
    """Remove duplicates, then run the full SRO + GBRO sweep."""

    duplicates = remove_duplicates(session, today=today)
    session.commit()
    sweep = run_expiration_sweep(session, today=today, kind="both")
    return {
        "duplicates_removed": duplicates["removed"],
        "sro_expired": sweep["sro_expired"],
        "gbro_expired": sweep["gbro_expired"],
        "points_expired": sweep["sro_expired"] + sweep["gbro_expired"],
        "users_failed": sweep["users_failed"],
    }
