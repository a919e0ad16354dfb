"""Pydantic schemas for attendance point endpoints."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models import ExpirationType, ViolationType


class PointRead(BaseModel):
    """Represents one attendance point with its decay state."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    attendance_id: Optional[int]
    shift_date: date
    point_type: ViolationType
    points: Decimal
    is_advised: bool
    is_manual: bool
    is_excused: bool
    excused_by: Optional[int]
    excused_at: Optional[datetime]
    excuse_reason: Optional[str]
    is_expired: bool
    expiration_type: ExpirationType
    expires_at: date
    expired_at: Optional[date]
    eligible_for_gbro: bool
    gbro_expires_at: Optional[date]
    gbro_applied_at: Optional[date]
    gbro_batch_id: Optional[str]
    violation_details: Optional[str]
    notes: Optional[str]
    tardy_minutes: Optional[int]
    undertime_minutes: Optional[int]


class ManualPointCreate(BaseModel):
    """Request body for an operator-entered point."""

    user_id: int
    shift_date: date
    point_type: ViolationType
    is_advised: bool = False
    notes: Optional[str] = Field(None, max_length=1000)
    violation_details: Optional[str] = Field(None, max_length=1000)
    tardy_minutes: Optional[int] = Field(None, ge=0)
    undertime_minutes: Optional[int] = Field(None, ge=0)
    created_by: Optional[int] = None


class ManualPointUpdate(BaseModel):
    """Replacement content for a manual point."""

    shift_date: date
    point_type: ViolationType
    is_advised: bool = False
    notes: Optional[str] = Field(None, max_length=1000)
    violation_details: Optional[str] = Field(None, max_length=1000)
    tardy_minutes: Optional[int] = Field(None, ge=0)
    undertime_minutes: Optional[int] = Field(None, ge=0)


class ExcuseRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    excused_by: Optional[int] = None


class PointTotals(BaseModel):
    total_points: Decimal
    excused_points: Decimal
    expired_points: Decimal
    active_count: int
    by_type: dict[str, Decimal]
    count_by_type: dict[str, int]


class UserLedgerRead(BaseModel):
    """A user's ledger split into active, excused and expired points."""

    user_id: int
    authoritative: bool = Field(..., description="False while a failed GBRO recompute awaits retry.")
    active: List[PointRead]
    excused: List[PointRead]
    expired: List[PointRead]
    totals: PointTotals


class RecalculateResult(BaseModel):
    user_id: int
    recomputed: bool
    roll_offs: int
    reference_date: Optional[date]
