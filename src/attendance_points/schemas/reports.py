"""Reporting and maintenance response schemas."""

from datetime import date
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .points import PointRead


class HighPointsEmployee(BaseModel):
    """Employee at or above the disciplinary threshold."""

    user_id: int
    user_name: str
    total_points: Decimal = Field(..., ge=0)
    violations_count: int = Field(..., ge=0)
    points: List[PointRead]


class BehavioralStats(BaseModel):
    days_clean: int = Field(..., ge=0)
    days_until_gbro: int = Field(..., ge=0)
    eligible_points_count: int = Field(..., ge=0)
    eligible_points_sum: Decimal
    last_violation_date: Optional[date]
    last_gbro_date: Optional[date]
    gbro_reference_date: Optional[date]
    gbro_reference_type: Optional[Literal["violation", "gbro"]]
    is_gbro_ready: bool


class ExpirePendingRequest(BaseModel):
    kind: Literal["sro", "gbro", "both"] = "both"


class ResetExpiredRequest(BaseModel):
    user_ids: Optional[List[int]] = None


class RegenerateRequest(BaseModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    user_id: Optional[int] = None
