"""
BookingRepository - read-only access to the booking system of record
"""

from datetime import datetime
from typing import List, Optional, Sequence

from repositories.base_repository import BaseRepository
from booking_database import Booking, ELIGIBLE_BOOKING_STATUSES


class BookingRepository(BaseRepository):
    """Single-row reads by id and creation-time range queries by status"""

    def __init__(self, session):
        super().__init__(session, Booking)

    def get_by_id(self, booking_id: str) -> Optional[Booking]:
        return super().get_by_id(str(booking_id))

    def find_eligible_in_range(self, start: datetime, end: datetime,
                               statuses: Sequence[str] = ELIGIBLE_BOOKING_STATUSES) -> List[Booking]:
        """
        Bookings created in [start, end) whose status is a completed purchase.

        Args:
            start: Inclusive lower bound on created_at (UTC)
            end: Exclusive upper bound on created_at (UTC)
            statuses: Statuses treated as a conversion
        """
        return self.session.query(self.model_class)\
            .filter(self.model_class.created_at >= start)\
            .filter(self.model_class.created_at < end)\
            .filter(self.model_class.status.in_(list(statuses)))\
            .order_by(self.model_class.created_at)\
            .all()
