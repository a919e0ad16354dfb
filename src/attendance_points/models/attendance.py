"""Finalized attendance records consumed by point derivation."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from ..core.database import Base


class Attendance(Base):
    """One user's finalized attendance outcome for a shift date."""

    __tablename__ = "attendances"
    __table_args__ = (
        UniqueConstraint("user_id", "shift_date", name="attendances_user_shift_unique"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    shift_date = Column(Date, nullable=False)
    status = Column(String)
    is_absent = Column(Boolean, nullable=False, default=False)
    is_tardy = Column(Boolean, nullable=False, default=False)
    is_undertime = Column(Boolean, nullable=False, default=False)
    tardy_minutes = Column(Integer)
    undertime_minutes = Column(Integer)
    is_advised = Column(Boolean, nullable=False, default=False)
    admin_verified = Column(Boolean, nullable=False, default=False)
    leave_approved = Column(Boolean, nullable=False, default=False)
    remarks = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="attendances")
    points = relationship("AttendancePoint", back_populates="attendance")

    @property
    def is_half_day(self) -> bool:
        return bool(self.remarks) and "half" in self.remarks.lower()
