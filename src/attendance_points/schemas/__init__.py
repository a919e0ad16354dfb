"""Public schema exports."""

from .points import (
    ExcuseRequest,
    ManualPointCreate,
    ManualPointUpdate,
    PointRead,
    PointTotals,
    RecalculateResult,
    UserLedgerRead,
)
from .reports import (
    BehavioralStats,
    ExpirePendingRequest,
    HighPointsEmployee,
    RegenerateRequest,
    ResetExpiredRequest,
)

__all__ = [
    "BehavioralStats",
    "ExcuseRequest",
    "ExpirePendingRequest",
    "HighPointsEmployee",
    "ManualPointCreate",
    "ManualPointUpdate",
    "PointRead",
    "PointTotals",
    "RecalculateResult",
    "RegenerateRequest",
    "ResetExpiredRequest",
    "UserLedgerRead",
]
