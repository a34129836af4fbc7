"""
Confirmed appointments.

Rows are written by the external settlement step once a payment succeeds. The
reservation engine treats them as read-only ground truth: any appointment in a
blocking status permanently blocks an overlapping hold or cart item.
"""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String
from sqlalchemy.sql import func
import ulid

from ..core.enums import AppointmentStatus
from ..database import Base
from .types import UTCDateTime


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_tutor_window", "tutor_id", "start_at", "end_at"),
        CheckConstraint(
            "status IN ('scheduled', 'cancelled', 'completed', 'refunded')",
            name="ck_appointments_status",
        ),
        CheckConstraint("end_at > start_at", name="ck_appointments_window"),
    )

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(64), nullable=True, index=True)
    tutor_id = Column(String(26), ForeignKey("tutors.id"), nullable=False)
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False)

    start_at = Column(UTCDateTime, nullable=False)
    end_at = Column(UTCDateTime, nullable=False)
    duration_min = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=AppointmentStatus.SCHEDULED.value)

    payment_reference = Column(String(255), nullable=True, index=True)
    created_at = Column(UTCDateTime, server_default=func.now())

    def __repr__(self) -> str:
        return f"<Appointment tutor={self.tutor_id} {self.start_at}..{self.end_at} {self.status}>"
