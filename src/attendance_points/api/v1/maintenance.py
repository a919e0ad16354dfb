"""Ledger maintenance endpoints."""

from __future__ import annotations

from datetime import date
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...schemas import ExpirePendingRequest, RegenerateRequest, ResetExpiredRequest
from ...services import maintenance_service
from ...services.point_service import PointRuleViolation
from ...utils.datetime import get_today

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.get("/stats", response_model=Dict[str, int], summary="Pending maintenance counts")
def management_stats(
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> Dict[str, int]:
    return maintenance_service.management_stats(db, today=today)


@router.post("/remove-duplicates", response_model=Dict[str, int], summary="Remove duplicate points")
def remove_duplicates(
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> Dict[str, int]:
    summary = maintenance_service.remove_duplicates(db, today=today)
    db.commit()
    return summary


@router.post("/expire-pending", response_model=Dict[str, int], summary="Run SRO and/or GBRO expiration")
def expire_pending(
    payload: Optional[ExpirePendingRequest] = None,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> Dict[str, int]:
    kind = payload.kind if payload else "both"
    try:
        return maintenance_service.expire_all_pending(db, today=today, kind=kind)
    except PointRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post("/reset-expired", response_model=Dict[str, int], summary="Reset expired points to active")
def reset_expired(
    payload: Optional[ResetExpiredRequest] = None,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> Dict[str, int]:
    summary = maintenance_service.reset_expired(
        db,
        today=today,
        user_ids=payload.user_ids if payload else None,
    )
    db.commit()
    return summary


@router.post("/regenerate", response_model=Dict[str, int], summary="Regenerate missing points")
def regenerate_points(
    payload: Optional[RegenerateRequest] = None,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> Dict[str, int]:
    filters = payload.model_dump() if payload else {}
    summary = maintenance_service.regenerate_points(db, today=today, **filters)
    db.commit()
    return summary


@router.post("/cleanup", response_model=Dict[str, int], summary="Remove duplicates and expire pending points")
def cleanup(
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
) -> Dict[str, int]:
    return maintenance_service.cleanup(db, today=today)
