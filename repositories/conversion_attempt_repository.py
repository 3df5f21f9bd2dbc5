"""
ConversionAttemptRepository - the append-only attempt log

Both delivery paths append here; reconciliation and health checks read.
Rows are never updated. Retries produce several rows per booking and type;
readers treat "any success" as the signal.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func

from repositories.base_repository import BaseRepository
from booking_database import ConversionAttempt
from utils.datetime_utils import utc_now
import logging

logger = logging.getLogger(__name__)

# Keep IN (...) lists well under driver parameter limits
_IN_CHUNK_SIZE = 500


class ConversionAttemptRepository(BaseRepository):
    """Repository for conversion_tracking_log rows"""

    def __init__(self, session):
        super().__init__(session, ConversionAttempt)

    def append(self, booking_id: str, conversion_type: str, success: bool,
               details: Optional[Dict[str, Any]] = None, action: Optional[str] = None,
               error_type: Optional[str] = None,
               created_at: Optional[datetime] = None) -> ConversionAttempt:
        """
        Append one attempt row and commit it immediately.

        No write-time dedup: a retried delivery is expected to add a row.
        """
        attempt = self.create(
            booking_id=str(booking_id),
            conversion_type=conversion_type,
            success=bool(success),
            details=details or {},
            action=action,
            error_type=error_type,
            created_at=created_at or utc_now(),
        )
        self.commit()
        logger.debug(
            f"Logged {conversion_type} attempt for booking {booking_id}: "
            f"{'success' if success else 'failure'}"
        )
        return attempt

    def find_by_booking(self, booking_id: str,
                        conversion_type: Optional[str] = None) -> List[ConversionAttempt]:
        query = self.session.query(self.model_class)\
            .filter(self.model_class.booking_id == str(booking_id))
        if conversion_type:
            query = query.filter(self.model_class.conversion_type == conversion_type)
        return query.order_by(self.model_class.created_at, self.model_class.id).all()

    def find_in_range(self, start: datetime, end: datetime,
                      conversion_type: Optional[str] = None) -> List[ConversionAttempt]:
        """Attempts created in [start, end)"""
        query = self.session.query(self.model_class)\
            .filter(self.model_class.created_at >= start)\
            .filter(self.model_class.created_at < end)
        if conversion_type:
            query = query.filter(self.model_class.conversion_type == conversion_type)
        return query.order_by(self.model_class.created_at, self.model_class.id).all()

    def find_for_bookings(self, booking_ids: Iterable[str]) -> List[ConversionAttempt]:
        """Every attempt for the given bookings, whenever it was made"""
        ids = [str(booking_id) for booking_id in booking_ids]
        attempts: List[ConversionAttempt] = []
        for i in range(0, len(ids), _IN_CHUNK_SIZE):
            chunk = ids[i:i + _IN_CHUNK_SIZE]
            attempts.extend(
                self.session.query(self.model_class)
                .filter(self.model_class.booking_id.in_(chunk))
                .order_by(self.model_class.created_at, self.model_class.id)
                .all()
            )
        return attempts

    def get_error_rate(self, since: datetime, conversion_type: Optional[str] = None) -> float:
        """Share of failed attempts since the given time (0.0 when there were none)"""
        stats = self.get_attempt_statistics(since, conversion_type)
        if stats['total'] == 0:
            return 0.0
        return stats['failed'] / stats['total']

    def get_attempt_statistics(self, since: datetime,
                               conversion_type: Optional[str] = None) -> Dict[str, Any]:
        """
        Attempt counts since the given time.

        Returns:
            Dictionary with total, successful, failed and a per-error-type breakdown
        """
        query = self.session.query(
            self.model_class.success,
            self.model_class.error_type,
            func.count(self.model_class.id)
        ).filter(self.model_class.created_at >= since)
        if conversion_type:
            query = query.filter(self.model_class.conversion_type == conversion_type)
        rows = query.group_by(self.model_class.success, self.model_class.error_type).all()

        successful = sum(count for success, _, count in rows if success)
        failed = sum(count for success, _, count in rows if not success)
        by_error_type: Dict[str, int] = {}
        for success, error_type, count in rows:
            if not success:
                key = error_type or 'unknown'
                by_error_type[key] = by_error_type.get(key, 0) + count

        return {
            'total': successful + failed,
            'successful': successful,
            'failed': failed,
            'by_error_type': by_error_type,
        }

    def cleanup_older_than(self, days: int) -> int:
        """
        Retention policy: delete attempts older than the given number of days.

        Returns:
            Number of rows deleted
        """
        cutoff = utc_now() - timedelta(days=days)
        deleted = self.delete_created_before(cutoff)
        logger.info(f"Removed {deleted} conversion attempts older than {days} days")
        return deleted
