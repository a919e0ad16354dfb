from datetime import date

from sqlalchemy import select

from attendance_points.jobs import expiration_sweep, run_sweep_once
from attendance_points.models import AttendancePoint, ExpirationType


def test_sweep_job_is_scheduled_daily():
    job = expiration_sweep._scheduler.get_job("point_expiration_sweep")

    assert job is not None
    assert "hour='0'" in str(job.trigger)


def test_run_sweep_once_commits_expirations(db_session, user, add_point):
    point = add_point(user, date(2023, 1, 1))
    point_id = point.id
    db_session.commit()

    summary = run_sweep_once(today=date(2024, 3, 10))

    assert summary["sro_expired"] == 1
    db_session.expire_all()
    stored = db_session.execute(select(AttendancePoint).where(AttendancePoint.id == point_id)).scalar_one()
    assert stored.is_expired is True
    assert stored.expiration_type == ExpirationType.SRO
