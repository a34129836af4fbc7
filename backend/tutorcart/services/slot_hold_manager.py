# backend/tutorcart/services/slot_hold_manager.py
"""
Slot Hold Manager

Grants, extends and releases time-bounded claims on a tutor's slot. It is the
only gate against double-booking a (tutor, start) pair before payment.

Acquisition never reads a conflict set and then writes on the strength of it.
Within one transaction it:

1. refuses when a blocking appointment overlaps the window,
2. deletes the slot's row only if that row has already expired,
3. updates the row only if the caller already owns it,
4. otherwise inserts, guarded by the ``(tutor_id, start_at)`` unique
   constraint. A losing concurrent insert fails on the constraint instead of
   overwriting the winner.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Iterable, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.config import settings
from ..core.enums import HoldConflictReason
from ..core.exceptions import SlotUnavailableException
from ..core.identity import Owner
from ..models.slot_hold import SlotHold
from ..models.types import ensure_utc
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..repositories.conflict_checker_repository import ConflictCheckerRepository
from ..repositories.slot_hold_repository import SlotHoldRepository
from .base import BaseService
from .pricing_calculator import duration_multiplier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HoldConflict:
    """A denied acquisition. Reported to the caller, never retried here."""

    tutor_id: str
    start_at: datetime
    reason: HoldConflictReason
    appointment_id: Optional[str] = None

    def to_exception(self) -> SlotUnavailableException:
        details = {
            "tutor_id": self.tutor_id,
            "start_at": self.start_at.isoformat(),
            "reason": self.reason.value,
        }
        if self.reason is HoldConflictReason.BOOKED:
            return SlotUnavailableException("This time slot has already been booked", details=details)
        return SlotUnavailableException(details=details)


AcquireResult = Union[SlotHold, HoldConflict]


class SlotHoldManager(BaseService):
    """
    Service owning the ephemeral hold rows.

    ``claim`` runs inside the caller's transaction so the cart can pair a hold
    with its cart item atomically. ``try_acquire``, ``release`` and ``extend``
    are standalone operations with their own transaction.
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        ttl_minutes: Optional[int] = None,
        repository: Optional[SlotHoldRepository] = None,
        conflict_repository: Optional[ConflictCheckerRepository] = None,
    ):
        super().__init__(db, clock)
        self.ttl = timedelta(minutes=ttl_minutes or settings.hold_ttl_minutes)
        self.repository = repository or RepositoryFactory.create_slot_hold_repository(db)
        self.conflict_repository = (
            conflict_repository or RepositoryFactory.create_conflict_checker_repository(db)
        )

    def expiry_from(self, now: datetime) -> datetime:
        return now + self.ttl

    def claim(
        self,
        owner: Owner,
        tutor_id: str,
        course_id: str,
        start_at: datetime,
        duration_min: int,
    ) -> AcquireResult:
        """Acquire or refresh a hold inside the current transaction. Does not commit."""
        duration_multiplier(duration_min)
        start_at = ensure_utc(start_at)
        end_at = start_at + timedelta(minutes=duration_min)

        blocking = self.conflict_repository.find_blocking_appointment(tutor_id, start_at, end_at)
        if blocking is not None:
            prometheus_metrics.record_hold_acquisition("booked")
            self.logger.info(
                "slot_hold.conflict",
                extra={
                    "owner": owner.key,
                    "tutor_id": tutor_id,
                    "start_at": start_at.isoformat(),
                    "reason": HoldConflictReason.BOOKED.value,
                    "appointment_id": blocking.id,
                },
            )
            return HoldConflict(tutor_id, start_at, HoldConflictReason.BOOKED, blocking.id)

        now = self.clock.now()
        expires_at = self.expiry_from(now)

        reaped = self.repository.reap_expired_slot(tutor_id, start_at, now)
        if reaped:
            self.logger.debug(
                "slot_hold.reaped_expired",
                extra={"tutor_id": tutor_id, "start_at": start_at.isoformat()},
            )

        hold = self.repository.refresh_owned(
            owner,
            tutor_id,
            start_at,
            course_id=course_id,
            duration_min=duration_min,
            expires_at=expires_at,
        )
        if hold is not None:
            prometheus_metrics.record_hold_acquisition("refreshed")
            return hold

        hold = self.repository.try_insert(
            owner,
            tutor_id,
            start_at,
            course_id=course_id,
            duration_min=duration_min,
            expires_at=expires_at,
        )
        if hold is None:
            prometheus_metrics.record_hold_acquisition("held_elsewhere")
            self.logger.info(
                "slot_hold.conflict",
                extra={
                    "owner": owner.key,
                    "tutor_id": tutor_id,
                    "start_at": start_at.isoformat(),
                    "reason": HoldConflictReason.HELD_ELSEWHERE.value,
                },
            )
            return HoldConflict(tutor_id, start_at, HoldConflictReason.HELD_ELSEWHERE)

        prometheus_metrics.record_hold_acquisition("created")
        return hold

    @BaseService.measure_operation("try_acquire")
    def try_acquire(
        self,
        owner: Owner,
        tutor_id: str,
        course_id: str,
        start_at: datetime,
        duration_min: int,
    ) -> AcquireResult:
        return self.run_in_transaction(
            "slot_hold.try_acquire",
            lambda: self.claim(owner, tutor_id, course_id, start_at, duration_min),
        )

    def acquire(
        self,
        owner: Owner,
        tutor_id: str,
        course_id: str,
        start_at: datetime,
        duration_min: int,
    ) -> SlotHold:
        """Like ``try_acquire`` but raises ``SlotUnavailableException`` on conflict."""
        result = self.try_acquire(owner, tutor_id, course_id, start_at, duration_min)
        if isinstance(result, HoldConflict):
            raise result.to_exception()
        return result

    @BaseService.measure_operation("release")
    def release(self, owner: Owner, tutor_id: str, start_at: datetime) -> bool:
        """Delete the owner's hold on this slot. Releasing nothing is not an error."""
        start_at = ensure_utc(start_at)
        deleted = self.run_in_transaction(
            "slot_hold.release",
            lambda: self.repository.delete_owned(owner, tutor_id, start_at),
        )
        return bool(deleted)

    @BaseService.measure_operation("extend")
    def extend(self, owner: Owner, tutor_id: str, start_at: datetime) -> bool:
        """
        Push the owner's live hold forward by one TTL from now.

        Returns False when there is nothing live to extend; an expired hold is
        not resurrected because another shopper may already be entitled to it.
        """
        start_at = ensure_utc(start_at)
        extended = self.run_in_transaction(
            "slot_hold.extend",
            lambda: self.extend_many(owner, [(tutor_id, start_at)]),
        )
        return extended > 0

    def extend_many(self, owner: Owner, slots: Iterable[Tuple[str, datetime]]) -> int:
        """Extend several live holds inside the current transaction."""
        now = self.clock.now()
        keys = [(tutor_id, ensure_utc(start_at)) for tutor_id, start_at in slots]
        return self.repository.extend_owned(owner, keys, self.expiry_from(now), now)

    @BaseService.measure_operation("purge_expired")
    def purge_expired(self, before: Optional[datetime] = None) -> int:
        """Physically delete inert holds. Meant for an external periodic job."""
        cutoff = ensure_utc(before) if before is not None else self.clock.now()
        purged = self.run_in_transaction(
            "slot_hold.purge_expired", lambda: self.repository.purge_expired(cutoff)
        )
        if purged:
            self.logger.info("slot_hold.purged", extra={"count": purged, "cutoff": cutoff.isoformat()})
        return purged

    def active_holds_for_tutor(
        self, tutor_id: str, range_start: datetime, range_end: datetime
    ) -> List[SlotHold]:
        """Live holds for a tutor whose start falls in ``[range_start, range_end)``."""
        return self.repository.find_live_for_tutor(
            tutor_id, ensure_utc(range_start), ensure_utc(range_end), self.clock.now()
        )
