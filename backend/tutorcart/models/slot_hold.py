"""
Slot hold: an ephemeral claim on one (tutor, start) pair.

The ``(tutor_id, start_at)`` unique constraint is what makes acquisition a
conditional write: a second owner's INSERT fails instead of overwriting.
Expired rows are inert; readers ignore them and acquisition reaps them.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.sql import func
import ulid

from ..core.identity import Owner
from ..database import Base
from .types import UTCDateTime, ensure_utc


class SlotHold(Base):
    __tablename__ = "slot_holds"
    __table_args__ = (
        UniqueConstraint("tutor_id", "start_at", name="uq_slot_holds_tutor_start"),
        Index("ix_slot_holds_owner", "owner_type", "owner_id"),
        Index("ix_slot_holds_expires_at", "expires_at"),
        CheckConstraint("duration_min IN (60, 90, 120)", name="ck_slot_holds_duration"),
        CheckConstraint("owner_type IN ('user', 'session')", name="ck_slot_holds_owner_type"),
    )

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    owner_type = Column(String(10), nullable=False)
    owner_id = Column(String(64), nullable=False)
    tutor_id = Column(String(26), ForeignKey("tutors.id"), nullable=False)
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False)

    start_at = Column(UTCDateTime, nullable=False)
    duration_min = Column(Integer, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)

    created_at = Column(UTCDateTime, server_default=func.now())

    @property
    def end_at(self) -> datetime:
        return self.start_at + timedelta(minutes=self.duration_min)

    @property
    def owner(self) -> Owner:
        return Owner(self.owner_type, self.owner_id)

    def is_live(self, now: datetime) -> bool:
        return ensure_utc(self.expires_at) > ensure_utc(now)

    def is_owned_by(self, owner: Owner) -> bool:
        return self.owner_type == owner.kind.value and self.owner_id == owner.id

    def __repr__(self) -> str:
        return (
            f"<SlotHold tutor={self.tutor_id} start={self.start_at} "
            f"owner={self.owner_type}:{self.owner_id} expires={self.expires_at}>"
        )
