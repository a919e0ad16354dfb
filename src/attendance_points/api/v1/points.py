"""Attendance point ledger endpoints."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...schemas import (
    BehavioralStats,
    ExcuseRequest,
    ManualPointCreate,
    ManualPointUpdate,
    PointRead,
    RecalculateResult,
    UserLedgerRead,
)
from ...services import point_service, stats_service
from ...services.point_service import PointRuleViolation
from ...utils.datetime import get_today

router = APIRouter(tags=["points"])


@router.get(
    "/users/{user_id}/points",
    response_model=UserLedgerRead,
    summary="User point ledger",
    responses={404: {"description": "User not found"}},
)
def get_user_ledger(
    user_id: int,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> UserLedgerRead:
    """Return the user's points split into active, excused and expired, with totals."""

    try:
        ledger = stats_service.user_ledger(db, user_id, today=today)
        response = UserLedgerRead.model_validate(ledger, from_attributes=True)
        db.commit()
        return response
    except PointRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post(
    "/points",
    response_model=PointRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a manual point",
    responses={
        201: {
            "description": "Point recorded",
            "content": {
                "application/json": {
                    "example": {
                        "id": 42,
                        "user_id": 7,
                        "attendance_id": None,
                        "shift_date": "2025-03-03",
                        "point_type": "tardy",
                        "points": "0.25",
                        "is_advised": False,
                        "is_manual": True,
                        "is_excused": False,
                        "is_expired": False,
                        "expiration_type": "sro",
                        "expires_at": "2025-09-03",
                        "eligible_for_gbro": True,
                        "gbro_expires_at": "2025-05-02",
                        "violation_details": "Manual Entry: Late arrival by 12 minutes",
                    }
                }
            },
        },
        404: {"description": "User not found"},
    },
)
def create_manual_point(
    payload: ManualPointCreate,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> PointRead:
    """Record a point entered by an operator.

    Example request body::

        {
            "user_id": 7,
            "shift_date": "2025-03-03",
            "point_type": "tardy",
            "tardy_minutes": 12
        }
    """

    try:
        point = point_service.create_manual_point(db, today=today, **payload.model_dump())
        db.commit()
        db.refresh(point)
        return point
    except PointRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.put(
    "/points/{point_id}",
    response_model=PointRead,
    summary="Edit a manual point",
    responses={400: {"description": "Point is not manual"}, 404: {"description": "Point not found"}},
)
def update_manual_point(
    point_id: int,
    payload: ManualPointUpdate,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> PointRead:
    try:
        point = point_service.update_manual_point(db, point_id, today=today, **payload.model_dump())
        db.commit()
        db.refresh(point)
        return point
    except PointRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.delete(
    "/points/{point_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a manual point",
    responses={400: {"description": "Point is not manual"}, 404: {"description": "Point not found"}},
)
def delete_manual_point(
    point_id: int,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> Response:
    try:
        point_service.delete_manual_point(db, point_id, today=today)
        db.commit()
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except PointRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post(
    "/points/{point_id}/excuse",
    response_model=PointRead,
    summary="Excuse a point",
    responses={400: {"description": "Point already excused"}, 404: {"description": "Point not found"}},
)
def excuse_point(
    point_id: int,
    payload: ExcuseRequest,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> PointRead:
    """Excuse a point and replay good-behavior roll-off for its owner.

    Example request body::

        {
            "reason": "Medical certificate submitted",
            "excused_by": 1
        }
    """

    try:
        point = point_service.excuse_point(
            db,
            point_id,
            reason=payload.reason,
            excused_by=payload.excused_by,
            today=today,
        )
        db.commit()
        db.refresh(point)
        return point
    except PointRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post(
    "/points/{point_id}/unexcuse",
    response_model=PointRead,
    summary="Remove an excuse",
)
def unexcuse_point(
    point_id: int,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> PointRead:
    try:
        point = point_service.unexcuse_point(db, point_id, today=today)
        db.commit()
        db.refresh(point)
        return point
    except PointRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post(
    "/users/{user_id}/points/recalculate",
    response_model=RecalculateResult,
    summary="Recalculate good-behavior roll-off",
)
def recalculate_user(
    user_id: int,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> RecalculateResult:
    try:
        schedule = point_service.recalculate_user(db, user_id, today=today)
        db.commit()
    except PointRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    return RecalculateResult(
        user_id=user_id,
        recomputed=schedule is not None,
        roll_offs=len(schedule.roll_offs) if schedule else 0,
        reference_date=schedule.reference_date if schedule else None,
    )


@router.get(
    "/users/{user_id}/points/statistics",
    response_model=BehavioralStats,
    summary="Good-behavior roll-off progress",
)
def get_behavioral_stats(
    user_id: int,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> BehavioralStats:
    try:
        stats = stats_service.behavioral_stats(db, user_id, today=today)
        db.commit()
        return BehavioralStats(**stats)
    except PointRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
