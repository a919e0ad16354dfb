"""Cascade recompute of good-behavior roll-off state for one user."""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from ..models import AttendancePoint, ExpirationType, User
from ..utils.datetime import today_utc
from .behavioral_decay import BehavioralSchedule, PointSnapshot, simulate_behavioral_decay

logger = logging.getLogger(__name__)


def gbro_batch_id(user_id: int, decay_date: date) -> str:
    return f"gbro-{user_id}-{decay_date:%Y%m%d}"


def _linkage_is_consistent(point: AttendancePoint) -> bool:
    if point.attendance_id is None:
        return True
    attendance = point.attendance
    return (
        attendance is not None
        and attendance.user_id == point.user_id
        and attendance.shift_date == point.shift_date
    )


def _reset_gbro_state(points: Sequence[AttendancePoint]) -> int:
    reset = 0
    for point in points:
        if point.is_expired and point.expiration_type == ExpirationType.GBRO:
            point.is_expired = False
            point.expiration_type = ExpirationType.SRO
            point.expired_at = None
            point.gbro_applied_at = None
            point.gbro_batch_id = None
            reset += 1
        point.gbro_expires_at = None
    return reset


def _apply_schedule(user_id: int, points: Sequence[AttendancePoint], schedule: BehavioralSchedule) -> None:
    by_id = {point.id: point for point in points}

    for roll_off in schedule.roll_offs:
        batch_id = gbro_batch_id(user_id, roll_off.decay_date)
        for point_id in roll_off.point_ids:
            point = by_id[point_id]
            point.is_expired = True
            point.expiration_type = ExpirationType.GBRO
            point.expired_at = roll_off.decay_date
            point.gbro_applied_at = roll_off.decay_date
            point.gbro_batch_id = batch_id

    for point_id, projected in schedule.projections.items():
        by_id[point_id].gbro_expires_at = projected


def _reset_and_replay(session: Session, user_id: int, today: date) -> BehavioralSchedule:
    stmt = (
        select(AttendancePoint)
        .options(selectinload(AttendancePoint.attendance))
        .where(AttendancePoint.user_id == user_id)
        .order_by(AttendancePoint.shift_date.asc(), AttendancePoint.id.asc())
    )
    points = session.execute(stmt).scalars().all()

    _reset_gbro_state(points)

    snapshots = [
        PointSnapshot(
            id=point.id,
            shift_date=point.shift_date,
            is_excused=point.is_excused,
            affects_reference=_linkage_is_consistent(point),
        )
        for point in points
        if point.eligible_for_gbro and not point.is_expired
    ]
    schedule = simulate_behavioral_decay(snapshots, today)
    _apply_schedule(user_id, points, schedule)

    session.flush()
    return schedule


def _mark_pending(session: Session, user_id: int, pending: bool) -> None:
    session.execute(
        update(User).where(User.id == user_id).values(points_recompute_pending=pending)
    )


def cascade_recalculate(
    session: Session,
    user_id: int,
    *,
    today: Optional[date] = None,
) -> Optional[BehavioralSchedule]:
    """Reset every GBRO roll-off for the user and replay the full history.

    Runs inside a savepoint: on any failure the user's points are left exactly
    as they were before the reset, the user is flagged for a retry, and
    ``None`` is returned. Failures are logged, never raised.
    """

    horizon = today or today_utc()
    try:
        with session.begin_nested():
            schedule = _reset_and_replay(session, user_id, horizon)
            _mark_pending(session, user_id, False)
    except Exception:
        logger.exception("GBRO cascade recompute failed for user %s; flagged for retry", user_id)
        _mark_pending(session, user_id, True)
        return None

    logger.debug(
        "GBRO cascade for user %s: %d roll-offs, reference %s",
        user_id,
        len(schedule.roll_offs),
        schedule.reference_date,
    )
    return schedule


def ensure_recomputed(session: Session, user_id: int, *, today: Optional[date] = None) -> bool:
    """Retry a previously failed recompute before the ledger is read.

    Returns ``True`` when the user's behavioral state is authoritative.
    """

    pending = session.execute(
        select(User.points_recompute_pending).where(User.id == user_id)
    ).scalar_one_or_none()
    if not pending:
        return True

    logger.warning("user %s has a pending GBRO recompute; retrying", user_id)
    return cascade_recalculate(session, user_id, today=today) is not None
