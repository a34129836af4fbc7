"""Persisted reservation snapshots, keyed by payment reference."""

from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .types import UTCDateTime


class CheckoutSnapshot(Base):
    """
    Opaque, self-contained copy of a cart handed to the settlement boundary.

    ``payload`` is the serialized snapshot; the settlement step rebuilds
    appointments and orders from it without reading mutable cart state.
    """

    __tablename__ = "checkout_snapshots"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    payment_reference = Column(String(255), nullable=False, unique=True, index=True)
    owner_type = Column(String(10), nullable=False)
    owner_id = Column(String(64), nullable=False)
    total_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    payload = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, server_default=func.now())

    def __repr__(self) -> str:
        return f"<CheckoutSnapshot {self.payment_reference} total={self.total_cents}>"
