"""
SlotHold Repository

Data access for ephemeral slot holds. Every statement that changes ownership
is a conditional write; callers never read a hold and then write it back.
"""

from datetime import datetime
import logging
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..core.identity import Owner
from ..models.slot_hold import SlotHold
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

SlotKey = Tuple[str, datetime]


def _owner_clause(owner: Owner):
    return (SlotHold.owner_type == owner.kind.value, SlotHold.owner_id == owner.id)


class SlotHoldRepository(BaseRepository[SlotHold]):
    def __init__(self, db: Session):
        super().__init__(db, SlotHold)

    # Conditional writes

    def reap_expired_slot(self, tutor_id: str, start_at: datetime, now: datetime) -> int:
        """Delete the hold for this slot only if it has already expired."""
        result = self.db.execute(
            delete(SlotHold)
            .where(
                SlotHold.tutor_id == tutor_id,
                SlotHold.start_at == start_at,
                SlotHold.expires_at <= now,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def refresh_owned(
        self,
        owner: Owner,
        tutor_id: str,
        start_at: datetime,
        *,
        course_id: str,
        duration_min: int,
        expires_at: datetime,
    ) -> Optional[SlotHold]:
        """Extend and update the owner's own hold; None when the owner holds nothing here."""
        result = self.db.execute(
            update(SlotHold)
            .where(
                SlotHold.tutor_id == tutor_id,
                SlotHold.start_at == start_at,
                *_owner_clause(owner),
            )
            .values(course_id=course_id, duration_min=duration_min, expires_at=expires_at)
            .execution_options(synchronize_session="fetch")
        )
        if not result.rowcount:
            return None
        return self.get_owned(owner, tutor_id, start_at)

    def try_insert(
        self,
        owner: Owner,
        tutor_id: str,
        start_at: datetime,
        *,
        course_id: str,
        duration_min: int,
        expires_at: datetime,
    ) -> Optional[SlotHold]:
        """
        Insert a new hold guarded by the ``(tutor_id, start_at)`` unique constraint.

        Runs in a SAVEPOINT so a lost race only rolls back this insert.
        Returns None when another row already occupies the slot.
        """
        hold = SlotHold(
            owner_type=owner.kind.value,
            owner_id=owner.id,
            tutor_id=tutor_id,
            course_id=course_id,
            start_at=start_at,
            duration_min=duration_min,
            expires_at=expires_at,
        )
        try:
            with self.db.begin_nested():
                self.db.add(hold)
                self.db.flush()
        except IntegrityError:
            self.logger.info(
                "slot_hold.insert_conflict",
                extra={"tutor_id": tutor_id, "start_at": start_at.isoformat()},
            )
            return None
        return hold

    def delete_owned(self, owner: Owner, tutor_id: str, start_at: datetime) -> int:
        result = self.db.execute(
            delete(SlotHold)
            .where(
                SlotHold.tutor_id == tutor_id,
                SlotHold.start_at == start_at,
                *_owner_clause(owner),
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def extend_owned(
        self, owner: Owner, slots: Iterable[SlotKey], expires_at: datetime, now: datetime
    ) -> int:
        """Push expiry forward for the owner's still-live holds on the given slots."""
        wanted = set(slots)
        if not wanted:
            return 0
        holds = [hold for hold in self._owned_in(owner, wanted) if hold.is_live(now)]
        for hold in holds:
            hold.expires_at = expires_at
        self.db.flush()
        return len(holds)

    def purge_expired(self, before: datetime) -> int:
        result = self.db.execute(
            delete(SlotHold)
            .where(SlotHold.expires_at <= before)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    # Reads

    def get_owned(self, owner: Owner, tutor_id: str, start_at: datetime) -> Optional[SlotHold]:
        return (
            self.db.query(SlotHold)
            .filter(
                SlotHold.tutor_id == tutor_id,
                SlotHold.start_at == start_at,
                *_owner_clause(owner),
            )
            .populate_existing()
            .first()
        )

    def find_for_owner(self, owner: Owner) -> List[SlotHold]:
        return (
            self.db.query(SlotHold)
            .filter(*_owner_clause(owner))
            .order_by(SlotHold.start_at)
            .all()
        )

    def find_live_held_by_others(
        self, owner: Owner, slots: Iterable[SlotKey], now: datetime
    ) -> Set[SlotKey]:
        """
        Set-based conflict lookup: which of ``slots`` carry a live hold of another owner.

        One query over the candidate tutors and start times; exact pairs are
        matched in memory.
        """
        wanted = set(slots)
        if not wanted:
            return set()
        tutor_ids = {tutor_id for tutor_id, _ in wanted}
        starts = {start for _, start in wanted}
        try:
            rows = (
                self.db.query(SlotHold)
                .filter(
                    SlotHold.tutor_id.in_(tutor_ids),
                    SlotHold.start_at.in_(starts),
                    SlotHold.expires_at > now,
                )
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking hold conflicts: {str(e)}")
            raise RepositoryException(f"Failed to check hold conflicts: {str(e)}")
        return {
            (hold.tutor_id, hold.start_at)
            for hold in rows
            if (hold.tutor_id, hold.start_at) in wanted and not hold.is_owned_by(owner)
        }

    def find_live_for_tutor(
        self, tutor_id: str, range_start: datetime, range_end: datetime, now: datetime
    ) -> List[SlotHold]:
        return (
            self.db.query(SlotHold)
            .filter(
                SlotHold.tutor_id == tutor_id,
                SlotHold.start_at >= range_start,
                SlotHold.start_at < range_end,
                SlotHold.expires_at > now,
            )
            .order_by(SlotHold.start_at)
            .all()
        )

    def _owned_in(self, owner: Owner, wanted: Set[SlotKey]) -> List[SlotHold]:
        tutor_ids = {tutor_id for tutor_id, _ in wanted}
        rows = (
            self.db.query(SlotHold)
            .filter(*_owner_clause(owner), SlotHold.tutor_id.in_(tutor_ids))
            .all()
        )
        return [hold for hold in rows if (hold.tutor_id, hold.start_at) in wanted]
