"""
Course and tutor catalog records.

The reservation engine only reads these: a course carries the student-facing
rate, a tutor carries the payout rate (dual-rate pricing).
"""

from sqlalchemy import Boolean, Column, Numeric, String
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .types import UTCDateTime


class Course(Base):
    __tablename__ = "courses"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    slug = Column(String(120), nullable=False, unique=True)
    title = Column(String(200), nullable=False)
    student_rate_cad = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, server_default=func.now())

    def __repr__(self) -> str:
        return f"<Course {self.slug} rate={self.student_rate_cad}>"


class Tutor(Base):
    __tablename__ = "tutors"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    display_name = Column(String(120), nullable=False)
    hourly_base_rate_cad = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, server_default=func.now())

    def __repr__(self) -> str:
        return f"<Tutor {self.display_name} rate={self.hourly_base_rate_cad}>"
