"""Read-only ledger statistics and the high-points report."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models import AttendancePoint, User, ViolationType
from .behavioral_decay import GBRO_WINDOW_DAYS, POINTS_PER_ROLL_OFF
from .cascade_service import ensure_recomputed
from .point_service import PointRuleViolation

ZERO = Decimal("0.00")


def _sum(points: Iterable[AttendancePoint]) -> Decimal:
    return sum((Decimal(point.points) for point in points), ZERO)


def calculate_totals(points: Sequence[AttendancePoint]) -> dict:
    """Totals over a collection of points; only active points count toward ``total_points``."""

    active = [p for p in points if p.is_active]
    return {
        "total_points": _sum(active),
        "excused_points": _sum(p for p in points if p.is_excused),
        "expired_points": _sum(p for p in points if p.is_expired),
        "active_count": len(active),
        "by_type": {t.value: _sum(p for p in active if p.point_type == t) for t in ViolationType},
        "count_by_type": {t.value: sum(1 for p in active if p.point_type == t) for t in ViolationType},
    }


def user_ledger(session: Session, user_id: int, *, today: date) -> dict:
    """A user's points partitioned into active, excused and expired, with totals.

    A pending recompute is retried first; ``authoritative`` is false only if
    that retry failed too.
    """

    user = session.get(User, user_id)
    if user is None:
        raise PointRuleViolation(f"User {user_id} not found", status_code=404)

    authoritative = ensure_recomputed(session, user_id, today=today)

    points = session.execute(
        select(AttendancePoint)
        .where(AttendancePoint.user_id == user_id)
        .order_by(AttendancePoint.shift_date.desc(), AttendancePoint.id.desc())
    ).scalars().all()

    return {
        "user_id": user_id,
        "authoritative": authoritative,
        "active": [p for p in points if p.is_active],
        "excused": [p for p in points if p.is_excused],
        "expired": [p for p in points if p.is_expired and not p.is_excused],
        "totals": calculate_totals(points),
    }


def high_points_employees(session: Session, *, threshold: float) -> list[dict]:
    """Users whose active point total reaches the disciplinary threshold."""

    total_points = func.sum(AttendancePoint.points).label("total_points")
    violations = func.count(AttendancePoint.id).label("violations_count")

    stmt = (
        select(User, total_points, violations)
        .join(AttendancePoint, AttendancePoint.user_id == User.id)
        .where(AttendancePoint.is_excused.is_(False), AttendancePoint.is_expired.is_(False))
        .group_by(User.id)
        .having(func.sum(AttendancePoint.points) >= threshold)
        .order_by(total_points.desc(), User.id.asc())
    )

    report = []
    for user, total, count in session.execute(stmt).all():
        points = session.execute(
            select(AttendancePoint)
            .where(
                AttendancePoint.user_id == user.id,
                AttendancePoint.is_excused.is_(False),
                AttendancePoint.is_expired.is_(False),
            )
            .order_by(AttendancePoint.shift_date.desc())
        ).scalars().all()
        report.append(
            {
                "user_id": user.id,
                "user_name": user.display_name,
                "total_points": Decimal(total).quantize(Decimal("0.01")),
                "violations_count": int(count),
                "points": points,
            }
        )
    return report


def behavioral_stats(session: Session, user_id: int, *, today: date) -> dict:
    """How close a user is to the next good-behavior roll-off."""

    if session.get(User, user_id) is None:
        raise PointRuleViolation(f"User {user_id} not found", status_code=404)

    ensure_recomputed(session, user_id, today=today)

    last_violation: Optional[date] = session.execute(
        select(func.max(AttendancePoint.shift_date)).where(
            AttendancePoint.user_id == user_id,
            AttendancePoint.is_expired.is_(False),
            AttendancePoint.eligible_for_gbro.is_(True),
        )
    ).scalar_one_or_none()
    last_gbro: Optional[date] = session.execute(
        select(func.max(AttendancePoint.gbro_applied_at)).where(AttendancePoint.user_id == user_id)
    ).scalar_one_or_none()

    stats = {
        "days_clean": 0,
        "days_until_gbro": GBRO_WINDOW_DAYS,
        "eligible_points_count": 0,
        "eligible_points_sum": ZERO,
        "last_violation_date": last_violation,
        "last_gbro_date": last_gbro,
        "gbro_reference_date": None,
        "gbro_reference_type": None,
        "is_gbro_ready": False,
    }
    if last_violation is None:
        return stats

    reference, reference_type = last_violation, "violation"
    if last_gbro is not None and last_gbro > last_violation:
        reference, reference_type = last_gbro, "gbro"

    eligible = session.execute(
        select(AttendancePoint)
        .where(
            AttendancePoint.user_id == user_id,
            AttendancePoint.is_excused.is_(False),
            AttendancePoint.is_expired.is_(False),
            AttendancePoint.eligible_for_gbro.is_(True),
        )
        .order_by(AttendancePoint.shift_date.desc(), AttendancePoint.id.desc())
        .limit(POINTS_PER_ROLL_OFF)
    ).scalars().all()

    days_clean = max((today - reference).days, 0)
    stats.update(
        days_clean=days_clean,
        days_until_gbro=max(0, GBRO_WINDOW_DAYS - days_clean),
        eligible_points_count=len(eligible),
        eligible_points_sum=_sum(eligible),
        gbro_reference_date=reference,
        gbro_reference_type=reference_type,
        is_gbro_ready=days_clean >= GBRO_WINDOW_DAYS and bool(eligible),
    )
    return stats
