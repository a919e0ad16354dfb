"""Reporting endpoints."""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ...core.config import get_settings
from ...core.database import get_db
from ...schemas import HighPointsEmployee
from ...services import export_service, stats_service

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get(
    "/high-points",
    response_model=List[HighPointsEmployee],
    summary="Employees at or above the point threshold",
)
def get_high_points(
    threshold: Optional[float] = Query(None, ge=0, description="Override the configured threshold"),
    db: Session = Depends(get_db),
) -> List[HighPointsEmployee]:
    """Return employees whose active points reach the disciplinary threshold."""

    limit = threshold if threshold is not None else get_settings().high_points_threshold
    entries = stats_service.high_points_employees(db, threshold=limit)
    return [HighPointsEmployee.model_validate(entry, from_attributes=True) for entry in entries]


@router.get("/points/export", summary="Export points as CSV")
def export_points(
    user_id: Optional[int] = Query(None, description="Restrict to one user"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db),
) -> Response:
    rows = export_service.export_rows(db, user_id=user_id, date_from=date_from, date_to=date_to)
    return Response(
        content=export_service.rows_to_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="attendance_points.csv"'},
    )
