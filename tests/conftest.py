"""Shared fixtures: an in-memory SQLite ledger and small factories."""

from __future__ import annotations

import itertools
import os
from datetime import date, timedelta

import pytest

os.environ["ATTENDANCE_POINTS_DATABASE_URL"] = "sqlite://"
os.environ["ATTENDANCE_POINTS_SCHEDULER_ENABLED"] = "false"

from attendance_points.core.database import Base, SessionLocal, engine  # noqa: E402
from attendance_points.models import Attendance, AttendancePoint, User, ViolationType  # noqa: E402
from attendance_points.services import notification_service  # noqa: E402
from attendance_points.services.point_service import derived_fields  # noqa: E402

BASE_DATE = date(2024, 1, 1)


class RecordingSink:
    def __init__(self):
        self.events = []

    def send(self, event):
        self.events.append(event)


@pytest.fixture
def day():
    """``day(n)`` is ``n`` days after a fixed base date."""

    def _day(offset: int) -> date:
        return BASE_DATE + timedelta(days=offset)

    return _day


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def notifications():
    sink = RecordingSink()
    previous = notification_service.get_notification_sink()
    notification_service.set_notification_sink(sink)
    yield sink
    notification_service.set_notification_sink(previous)


@pytest.fixture
def make_user(db_session):
    counter = itertools.count(1)

    def _make(**overrides) -> User:
        n = next(counter)
        fields = {
            "employee_code": f"EMP{n:04d}",
            "email": f"employee{n}@example.com",
            "first_name": f"Employee{n}",
            "last_name": "Tester",
        }
        fields.update(overrides)
        user = User(**fields)
        db_session.add(user)
        db_session.flush()
        return user

    return _make


@pytest.fixture
def user(make_user) -> User:
    return make_user()


@pytest.fixture
def add_point(db_session):
    """Insert a point directly, without running a cascade recompute."""

    def _add(
        owner: User,
        shift_date: date,
        point_type: ViolationType = ViolationType.TARDY,
        *,
        is_advised: bool = False,
        is_excused: bool = False,
        attendance: Attendance | None = None,
        **overrides,
    ) -> AttendancePoint:
        fields = derived_fields(point_type, shift_date, is_advised)
        fields.update(overrides)
        point = AttendancePoint(
            user_id=owner.id,
            shift_date=shift_date,
            point_type=point_type,
            is_advised=is_advised,
            is_excused=is_excused,
            is_manual=attendance is None,
            attendance_id=attendance.id if attendance is not None else None,
            **fields,
        )
        db_session.add(point)
        db_session.flush()
        return point

    return _add


@pytest.fixture
def add_attendance(db_session):
    def _add(owner: User, shift_date: date, **flags) -> Attendance:
        flags.setdefault("admin_verified", True)
        attendance = Attendance(user_id=owner.id, shift_date=shift_date, **flags)
        db_session.add(attendance)
        db_session.flush()
        return attendance

    return _add
