"""Flattened point rows for reporting exports."""

from __future__ import annotations

import csv
import io
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from ..models import AttendancePoint

EXPORT_COLUMNS = (
    "id",
    "user_id",
    "user_name",
    "attendance_id",
    "shift_date",
    "point_type",
    "points",
    "is_advised",
    "is_manual",
    "is_excused",
    "excuse_reason",
    "is_expired",
    "expiration_type",
    "expires_at",
    "expired_at",
    "eligible_for_gbro",
    "gbro_expires_at",
    "gbro_applied_at",
    "gbro_batch_id",
    "violation_details",
    "notes",
)


def _row(point: AttendancePoint) -> dict:
    row = {column: getattr(point, column, None) for column in EXPORT_COLUMNS if column != "user_name"}
    row["user_name"] = point.user.display_name if point.user else None
    row["point_type"] = point.point_type.value
    row["expiration_type"] = point.expiration_type.value
    return row


def export_rows(
    session: Session,
    *,
    user_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> list[dict]:
    stmt = select(AttendancePoint).options(joinedload(AttendancePoint.user))
    if user_id is not None:
        stmt = stmt.where(AttendancePoint.user_id == user_id)
    if date_from is not None:
        stmt = stmt.where(AttendancePoint.shift_date >= date_from)
    if date_to is not None:
        stmt = stmt.where(AttendancePoint.shift_date <= date_to)
    stmt = stmt.order_by(AttendancePoint.user_id.asc(), AttendancePoint.shift_date.asc(), AttendancePoint.id.asc())

    return [_row(point) for point in session.execute(stmt).scalars().all()]


def rows_to_csv(rows: list[dict]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    for row in rows:
        writer.writerow({key: "" if value is None else value for key, value in row.items()})
    return buffer.getvalue()
