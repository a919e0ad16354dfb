from contextlib import contextmanager
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import delete, select, update

from attendance_points.models import Attendance, AttendancePoint, ExpirationType, ViolationType
from attendance_points.services import point_service
from attendance_points.services.notification_service import set_notification_sink
from attendance_points.services.point_service import (
    PointRuleViolation,
    classify_attendance,
    create_manual_point,
    create_point_from_attendance,
    delete_manual_point,
    derive_point_for_attendance,
    excuse_point,
    unexcuse_point,
    update_manual_point,
)


def _attendance(**flags):
    return Attendance(user_id=1, shift_date=date(2024, 3, 1), **flags)


@pytest.mark.parametrize(
    "flags, expected",
    [
        ({"is_absent": True}, ViolationType.WHOLE_DAY_ABSENCE),
        ({"is_absent": True, "remarks": "Half day, left after lunch"}, ViolationType.HALF_DAY_ABSENCE),
        ({"is_tardy": True, "tardy_minutes": 12}, ViolationType.TARDY),
        ({"is_undertime": True, "undertime_minutes": 60}, ViolationType.UNDERTIME),
        ({"is_undertime": True, "undertime_minutes": 61}, ViolationType.UNDERTIME_MORE_THAN_HOUR),
        ({"is_absent": True, "is_tardy": True, "tardy_minutes": 5}, ViolationType.WHOLE_DAY_ABSENCE),
        ({"is_tardy": True, "tardy_minutes": 5, "is_undertime": True, "undertime_minutes": 90}, ViolationType.TARDY),
    ],
)
def test_classify_attendance(flags, expected):
    assert classify_attendance(_attendance(**flags)) == expected


@pytest.mark.parametrize(
    "flags",
    [
        {},
        {"is_absent": True, "leave_approved": True},
        {"is_tardy": True, "tardy_minutes": 0},
        {"is_undertime": True, "undertime_minutes": None},
    ],
)
def test_classify_attendance_without_violation(flags):
    assert classify_attendance(_attendance(**flags)) is None


def test_tardy_attendance_derives_point(db_session, user, add_attendance, notifications):
    attendance = add_attendance(user, date(2024, 3, 1), is_tardy=True, tardy_minutes=15)

    point = create_point_from_attendance(db_session, attendance, today=date(2024, 3, 2))

    assert point.attendance_id == attendance.id
    assert point.point_type == ViolationType.TARDY
    assert point.points == Decimal("0.25")
    assert point.tardy_minutes == 15
    assert point.expires_at == date(2024, 9, 1)
    assert point.expiration_type == ExpirationType.SRO
    assert point.eligible_for_gbro is True
    assert point.gbro_expires_at == date(2024, 4, 30)
    assert point.is_manual is False
    assert "15 minutes late" in point.violation_details
    assert [event.point_type for event in notifications.events] == [ViolationType.TARDY]


def test_unadvised_absence_uses_long_fixed_decay(db_session, user, add_attendance):
    attendance = add_attendance(user, date(2024, 3, 1), is_absent=True, is_advised=False)

    point = create_point_from_attendance(db_session, attendance, today=date(2024, 3, 2))

    assert point.points == Decimal("1.00")
    assert point.expires_at == date(2025, 3, 1)
    assert point.expiration_type == ExpirationType.NONE
    assert point.eligible_for_gbro is False
    assert point.gbro_expires_at is None
    assert "No Call, No Show" in point.violation_details


def test_advised_absence_keeps_six_month_decay(db_session, user, add_attendance):
    attendance = add_attendance(user, date(2024, 3, 1), is_absent=True, is_advised=True)

    point = create_point_from_attendance(db_session, attendance, today=date(2024, 3, 2))

    assert point.expires_at == date(2024, 9, 1)
    assert point.expiration_type == ExpirationType.SRO
    assert point.eligible_for_gbro is True


def test_fixed_expiration_clamps_to_month_end(db_session, user, add_attendance):
    attendance = add_attendance(user, date(2024, 8, 31), is_tardy=True, tardy_minutes=3)

    point = create_point_from_attendance(db_session, attendance, today=date(2024, 9, 1))

    assert point.expires_at == date(2025, 2, 28)


def test_derivation_is_idempotent(db_session, user, add_attendance, notifications):
    attendance = add_attendance(user, date(2024, 3, 1), is_tardy=True, tardy_minutes=15)

    first = derive_point_for_attendance(db_session, attendance.id, today=date(2024, 3, 2))
    second = derive_point_for_attendance(db_session, attendance.id, today=date(2024, 3, 2))

    assert first.id == second.id
    assert len(db_session.execute(select(AttendancePoint)).scalars().all()) == 1
    assert len(notifications.events) == 1


def test_attendance_without_violation_derives_nothing(db_session, user, add_attendance, notifications):
    attendance = add_attendance(user, date(2024, 3, 1), is_absent=True, leave_approved=True)

    assert create_point_from_attendance(db_session, attendance, today=date(2024, 3, 2)) is None
    assert notifications.events == []


def test_missing_attendance_is_not_found(db_session):
    with pytest.raises(PointRuleViolation) as exc_info:
        derive_point_for_attendance(db_session, 999, today=date(2024, 3, 2))
    assert exc_info.value.status_code == 404


def test_manual_point_replaces_points_on_same_date(db_session, user, add_point, notifications):
    existing_id = add_point(user, date(2024, 3, 1), ViolationType.TARDY).id
    other_day = add_point(user, date(2024, 3, 4), ViolationType.TARDY)

    point = create_manual_point(
        db_session,
        user_id=user.id,
        shift_date=date(2024, 3, 1),
        point_type="half_day_absence",
        created_by=42,
        today=date(2024, 3, 5),
    )

    remaining = db_session.execute(select(AttendancePoint.id)).scalars().all()
    assert sorted(remaining) == sorted([point.id, other_day.id])
    assert existing_id not in remaining
    assert point.is_manual is True
    assert point.points == Decimal("0.50")
    assert point.created_by == 42
    assert point.violation_details == "Manual Entry: Half-day absence recorded"
    assert len(notifications.events) == 1
    assert notifications.events[0].is_manual is True


def test_manual_point_rejects_unknown_type(db_session, user):
    with pytest.raises(PointRuleViolation) as exc_info:
        create_manual_point(db_session, user_id=user.id, shift_date=date(2024, 3, 1), point_type="sleeping")
    assert exc_info.value.status_code == 422


def test_manual_point_for_missing_user(db_session):
    with pytest.raises(PointRuleViolation) as exc_info:
        create_manual_point(db_session, user_id=404, shift_date=date(2024, 3, 1), point_type="tardy")
    assert exc_info.value.status_code == 404


def test_notification_failure_does_not_undo_point(db_session, user):
    class BrokenSink:
        def send(self, event):
            raise RuntimeError("mail server down")

    set_notification_sink(BrokenSink())

    point = create_manual_point(
        db_session,
        user_id=user.id,
        shift_date=date(2024, 3, 1),
        point_type=ViolationType.TARDY,
        tardy_minutes=9,
        today=date(2024, 3, 2),
    )
    db_session.commit()

    assert db_session.get(AttendancePoint, point.id) is not None


def test_update_manual_point_recomputes_derived_fields(db_session, user):
    point = create_manual_point(
        db_session,
        user_id=user.id,
        shift_date=date(2024, 3, 1),
        point_type=ViolationType.TARDY,
        today=date(2024, 3, 2),
    )

    updated = update_manual_point(
        db_session,
        point.id,
        shift_date=date(2024, 3, 2),
        point_type=ViolationType.WHOLE_DAY_ABSENCE,
        is_advised=False,
        today=date(2024, 3, 3),
    )

    assert updated.shift_date == date(2024, 3, 2)
    assert updated.points == Decimal("1.00")
    assert updated.expires_at == date(2025, 3, 2)
    assert updated.expiration_type == ExpirationType.NONE
    assert updated.eligible_for_gbro is False
    assert updated.gbro_expires_at is None


def test_derived_points_cannot_be_edited_or_deleted(db_session, user, add_attendance):
    attendance = add_attendance(user, date(2024, 3, 1), is_tardy=True, tardy_minutes=15)
    point = create_point_from_attendance(db_session, attendance, today=date(2024, 3, 2))

    with pytest.raises(PointRuleViolation) as exc_info:
        update_manual_point(db_session, point.id, shift_date=date(2024, 3, 1), point_type="tardy")
    assert exc_info.value.status_code == 400

    with pytest.raises(PointRuleViolation):
        delete_manual_point(db_session, point.id)


def test_delete_manual_point(db_session, user):
    point = create_manual_point(
        db_session, user_id=user.id, shift_date=date(2024, 3, 1), point_type="tardy", today=date(2024, 3, 2)
    )
    point_id = point.id

    delete_manual_point(db_session, point_id, today=date(2024, 3, 2))

    assert db_session.get(AttendancePoint, point_id) is None


def test_excuse_and_unexcuse(db_session, user, add_point):
    point = add_point(user, date(2024, 3, 1))

    excused = excuse_point(db_session, point.id, reason="  Medical certificate ", excused_by=7, today=date(2024, 3, 2))

    assert excused.is_excused is True
    assert excused.excuse_reason == "Medical certificate"
    assert excused.excused_by == 7
    assert excused.excused_at is not None
    assert excused.points == Decimal("0.25")

    with pytest.raises(PointRuleViolation) as exc_info:
        excuse_point(db_session, point.id, reason="again", today=date(2024, 3, 2))
    assert exc_info.value.status_code == 400

    restored = unexcuse_point(db_session, point.id, today=date(2024, 3, 2))
    assert restored.is_excused is False
    assert restored.excuse_reason is None

    with pytest.raises(PointRuleViolation):
        unexcuse_point(db_session, point.id, today=date(2024, 3, 2))


def test_excuse_requires_reason(db_session, user, add_point):
    point = add_point(user, date(2024, 3, 1))

    with pytest.raises(PointRuleViolation) as exc_info:
        excuse_point(db_session, point.id, reason="   ")
    assert exc_info.value.status_code == 422


def _scope_with_concurrent_change(change):
    """Ledger scope that lets another writer commit just before the lock is granted."""

    original = point_service.user_ledger_scope

    @contextmanager
    def scope(session, user_id):
        with original(session, user_id) as locked_user:
            change(session)
            yield locked_user

    return scope


def test_excuse_rechecks_state_inside_ledger_scope(db_session, user, add_point, monkeypatch):
    point_id = add_point(user, date(2024, 3, 1)).id

    def excused_elsewhere(session):
        session.execute(
            update(AttendancePoint)
            .where(AttendancePoint.id == point_id)
            .values(is_excused=True, excuse_reason="Approved by HR")
            .execution_options(synchronize_session=False)
        )

    monkeypatch.setattr(point_service, "user_ledger_scope", _scope_with_concurrent_change(excused_elsewhere))

    with pytest.raises(PointRuleViolation) as exc_info:
        excuse_point(db_session, point_id, reason="Second request", today=date(2024, 3, 2))

    assert exc_info.value.status_code == 400
    assert db_session.get(AttendancePoint, point_id).excuse_reason == "Approved by HR"


def test_edit_of_concurrently_deleted_point_is_not_found(db_session, user, monkeypatch):
    point_id = create_manual_point(
        db_session, user_id=user.id, shift_date=date(2024, 3, 1), point_type="tardy", today=date(2024, 3, 2)
    ).id

    def deleted_elsewhere(session):
        session.execute(
            delete(AttendancePoint)
            .where(AttendancePoint.id == point_id)
            .execution_options(synchronize_session=False)
        )

    monkeypatch.setattr(point_service, "user_ledger_scope", _scope_with_concurrent_change(deleted_elsewhere))

    with pytest.raises(PointRuleViolation) as exc_info:
        update_manual_point(
            db_session, point_id, shift_date=date(2024, 3, 1), point_type="undertime", today=date(2024, 3, 2)
        )

    assert exc_info.value.status_code == 404
