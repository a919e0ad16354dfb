"""Employee model owning attendance records and points."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from ..core.database import Base


class User(Base):
    """Represents an employee whose attendance is tracked."""

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("employee_code", name="users_employee_code_unique"),
        UniqueConstraint("email", name="users_email_unique"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    employee_code = Column(String, nullable=False)
    email = Column(String, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="ACTIVE")
    # Set when a behavioral recompute failed and must run again before the ledger is trusted
    points_recompute_pending = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    attendances = relationship("Attendance", back_populates="user")
    attendance_points = relationship(
        "AttendancePoint",
        foreign_keys="AttendancePoint.user_id",
        back_populates="user",
    )

    @property
    def display_name(self) -> str:
        return f"{self.last_name}, {self.first_name}"
