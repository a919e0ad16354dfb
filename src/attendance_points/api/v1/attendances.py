"""Point derivation from finalized attendance records."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...schemas import PointRead
from ...services import point_service
from ...services.point_service import PointRuleViolation
from ...utils.datetime import get_today

router = APIRouter(prefix="/attendances", tags=["attendances"])


@router.post(
    "/{attendance_id}/points",
    response_model=Optional[PointRead],
    summary="Derive the point for an attendance record",
    responses={
        200: {"description": "Derived (or already existing) point; null when the record has no violation"},
        404: {"description": "Attendance or user not found"},
    },
)
def derive_point(
    attendance_id: int,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> Optional[PointRead]:
    try:
        point = point_service.derive_point_for_attendance(db, attendance_id, today=today)
        db.commit()
        if point is not None:
            db.refresh(point)
        return point
    except PointRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
