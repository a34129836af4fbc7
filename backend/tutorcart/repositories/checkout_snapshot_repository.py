"""Persistence for reservation snapshots keyed by payment reference."""

from typing import Optional

from sqlalchemy.orm import Session

from ..models.checkout import CheckoutSnapshot
from .base_repository import BaseRepository


class CheckoutSnapshotRepository(BaseRepository[CheckoutSnapshot]):
    def __init__(self, db: Session):
        super().__init__(db, CheckoutSnapshot)

    def get_by_reference(self, payment_reference: str) -> Optional[CheckoutSnapshot]:
        return self.find_one_by(payment_reference=payment_reference)
