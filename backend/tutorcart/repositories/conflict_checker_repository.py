# backend/tutorcart/repositories/conflict_checker_repository.py
"""
ConflictChecker Repository

Queries against confirmed appointments, the ground truth for bookings.
An appointment in a blocking status overlaps a candidate window when
``existing.start < candidate.end AND existing.end > candidate.start``.
"""

from datetime import datetime
import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..core.enums import BLOCKING_APPOINTMENT_STATUSES
from ..core.exceptions import RepositoryException
from ..models.appointment import Appointment
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_BLOCKING = [status.value for status in BLOCKING_APPOINTMENT_STATUSES]


class ConflictCheckerRepository(BaseRepository[Appointment]):
    """Read-only overlap queries against appointments."""

    def __init__(self, db: Session):
        super().__init__(db, Appointment)
        self.logger = logging.getLogger(__name__)

    def find_blocking_appointment(
        self, tutor_id: str, start_at: datetime, end_at: datetime
    ) -> Optional[Appointment]:
        """
        Return one blocking appointment overlapping the tutor's window, if any.

        Args:
            tutor_id: The tutor to check
            start_at: Candidate window start (inclusive)
            end_at: Candidate window end (exclusive)
        """
        try:
            return (
                self.db.query(Appointment)
                .filter(
                    Appointment.tutor_id == tutor_id,
                    Appointment.status.in_(_BLOCKING),
                    Appointment.start_at < end_at,
                    Appointment.end_at > start_at,
                )
                .first()
            )
        except Exception as e:
            self.logger.error(f"Error checking appointment overlap: {str(e)}")
            raise RepositoryException(f"Failed to check appointment overlap: {str(e)}")

    def find_blocking_in_range(
        self, tutor_ids: Iterable[str], range_start: datetime, range_end: datetime
    ) -> List[Appointment]:
        """
        Fetch every blocking appointment for the tutors that touches the range.

        Used by batch paths: one query covering all candidates, with the exact
        per-candidate overlap test done by the caller.
        """
        ids = list({str(tutor_id) for tutor_id in tutor_ids})
        if not ids:
            return []
        try:
            return (
                self.db.query(Appointment)
                .filter(
                    Appointment.tutor_id.in_(ids),
                    Appointment.status.in_(_BLOCKING),
                    Appointment.start_at < range_end,
                    Appointment.end_at > range_start,
                )
                .order_by(Appointment.tutor_id, Appointment.start_at)
                .all()
            )
        except Exception as e:
            self.logger.error(f"Error getting blocking appointments: {str(e)}")
            raise RepositoryException(f"Failed to get blocking appointments: {str(e)}")
