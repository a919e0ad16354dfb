"""Standard roll-off (SRO): fixed-duration expiration."""

from __future__ import annotations

from datetime import date
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import AttendancePoint, ExpirationType


def pending_fixed_expirations_stmt(today: date, user_id: Optional[int] = None):
    stmt = select(AttendancePoint).where(
        AttendancePoint.is_expired.is_(False),
        AttendancePoint.is_excused.is_(False),
        AttendancePoint.expires_at.is_not(None),
        AttendancePoint.expires_at <= today,
    )
    if user_id is not None:
        stmt = stmt.where(AttendancePoint.user_id == user_id)
    return stmt.order_by(AttendancePoint.user_id.asc(), AttendancePoint.id.asc())


def expire_fixed_points(
    session: Session,
    *,
    today: date,
    user_id: Optional[int] = None,
) -> Sequence[AttendancePoint]:
    """Mark every active point whose fixed expiration date has passed.

    Each point is judged on its own dates only; already expired and excused
    points are untouched, so repeated runs are no-ops.
    """

    points = session.execute(pending_fixed_expirations_stmt(today, user_id)).scalars().all()
    for point in points:
        point.is_expired = True
        point.expiration_type = ExpirationType.SRO
        point.expired_at = today
        point.gbro_expires_at = None
    session.flush()
    return points
