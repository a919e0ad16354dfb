"""Attendance point ledger model and its closed violation taxonomy."""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import NamedTuple, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.datetime import add_months


class ViolationPolicy(NamedTuple):
    points: Decimal
    label: str
    fixed_decay_months: int = 6
    # Months before fixed decay when the employee gave no notice; None when notice is irrelevant
    unadvised_decay_months: Optional[int] = None


class ViolationType(str, enum.Enum):
    """Violation classification; each member carries its point value and decay policy."""

    WHOLE_DAY_ABSENCE = "whole_day_absence"
    HALF_DAY_ABSENCE = "half_day_absence"
    TARDY = "tardy"
    UNDERTIME = "undertime"
    UNDERTIME_MORE_THAN_HOUR = "undertime_more_than_hour"

    @property
    def policy(self) -> ViolationPolicy:
        return VIOLATION_POLICIES[self]

    @property
    def point_value(self) -> Decimal:
        return self.policy.points

    @property
    def label(self) -> str:
        return self.policy.label

    def is_unadvised_absence(self, is_advised: bool) -> bool:
        """True for a no-call-no-show: the severe case that never rolls off on good behavior."""
        return self.policy.unadvised_decay_months is not None and not is_advised

    def fixed_expiration_date(self, shift_date: date, is_advised: bool) -> date:
        months = self.policy.fixed_decay_months
        if self.is_unadvised_absence(is_advised):
            months = self.policy.unadvised_decay_months
        return add_months(shift_date, months)


VIOLATION_POLICIES = {
    ViolationType.WHOLE_DAY_ABSENCE: ViolationPolicy(
        Decimal("1.00"), "Whole Day Absence", fixed_decay_months=6, unadvised_decay_months=12
    ),
    ViolationType.HALF_DAY_ABSENCE: ViolationPolicy(Decimal("0.50"), "Half-Day Absence"),
    ViolationType.TARDY: ViolationPolicy(Decimal("0.25"), "Tardy"),
    ViolationType.UNDERTIME: ViolationPolicy(Decimal("0.25"), "Undertime"),
    ViolationType.UNDERTIME_MORE_THAN_HOUR: ViolationPolicy(Decimal("0.50"), "Undertime (>1 Hour)"),
}


class ExpirationType(str, enum.Enum):
    """Which decay mechanism applies to (or has fired on) a point."""

    NONE = "none"
    SRO = "sro"
    GBRO = "gbro"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class AttendancePoint(Base):
    """One disciplinary unit tied to a user and a violation date."""

    __tablename__ = "attendance_points"
    __table_args__ = (
        CheckConstraint("points > 0", name="attendance_points_points_positive"),
        Index("attendance_points_user_shift_date_idx", "user_id", "shift_date"),
        Index("attendance_points_dedup_idx", "user_id", "shift_date", "point_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    attendance_id = Column(Integer, ForeignKey("attendances.id", ondelete="SET NULL"))
    shift_date = Column(Date, nullable=False)
    point_type = Column(
        SAEnum(ViolationType, name="attendance_point_type", values_callable=_enum_values),
        nullable=False,
    )
    points = Column(Numeric(4, 2), nullable=False)
    is_advised = Column(Boolean, nullable=False, default=False)
    is_manual = Column(Boolean, nullable=False, default=False)
    notes = Column(Text)
    violation_details = Column(Text)
    tardy_minutes = Column(Integer)
    undertime_minutes = Column(Integer)

    is_excused = Column(Boolean, nullable=False, default=False)
    excused_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    excused_at = Column(DateTime)
    excuse_reason = Column(String(500))

    expires_at = Column(Date, nullable=False)
    expiration_type = Column(
        SAEnum(ExpirationType, name="attendance_point_expiration_type", values_callable=_enum_values),
        nullable=False,
        default=ExpirationType.SRO,
    )
    is_expired = Column(Boolean, nullable=False, default=False)
    expired_at = Column(Date)

    eligible_for_gbro = Column(Boolean, nullable=False, default=True)
    gbro_expires_at = Column(Date)
    gbro_applied_at = Column(Date)
    gbro_batch_id = Column(String(64))

    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", foreign_keys=[user_id], back_populates="attendance_points")
    attendance = relationship("Attendance", back_populates="points")

    @property
    def is_active(self) -> bool:
        return not self.is_excused and not self.is_expired

    @property
    def is_unadvised_absence(self) -> bool:
        return self.point_type.is_unadvised_absence(self.is_advised)
