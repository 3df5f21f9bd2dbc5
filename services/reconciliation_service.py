"""
ReconciliationService - compares the client and server attempt logs

For every eligible booking created in the window, a path counts as having
tracked the booking if it has at least one successful purchase attempt.
Accuracy is max(client, server) / total: the conversion reached the ad
platform if either path delivered it.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from logging_config import get_logger
from booking_database import ELIGIBLE_BOOKING_STATUSES
from services.enums import ConversionAction, ConversionType
from utils.datetime_utils import day_range

logger = get_logger(__name__)

ISSUE_NOT_TRACKED = 'No conversion tracking found for successful booking'
ISSUE_SERVER_MISSING = 'Client-side tracked but server-side backup missing'
ISSUE_CLIENT_FAILED = 'Server-side backup fired but client-side tracking failed'

DateLike = Union[str, date, datetime]


@dataclass
class Discrepancy:
    booking_id: str
    client_tracked: bool
    server_tracked: bool
    issue: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'booking_id': self.booking_id,
            'client_tracked': self.client_tracked,
            'server_tracked': self.server_tracked,
            'issue': self.issue,
        }


@dataclass
class ReconciliationResult:
    date_range: Tuple[datetime, datetime]
    total_bookings: int = 0
    client_side_conversions: int = 0
    server_side_conversions: int = 0
    matched_conversions: int = 0
    discrepancies: List[Discrepancy] = field(default_factory=list)

    @property
    def accuracy_percentage(self) -> float:
        if self.total_bookings == 0:
            return 0.0
        tracked = max(self.client_side_conversions, self.server_side_conversions)
        return round(tracked / self.total_bookings * 100, 2)

    @property
    def agreement_percentage(self) -> float:
        """Share of bookings both paths reported"""
        if self.total_bookings == 0:
            return 0.0
        return round(self.matched_conversions / self.total_bookings * 100, 2)

    @property
    def untracked_bookings(self) -> List[str]:
        return [d.booking_id for d in self.discrepancies if d.issue == ISSUE_NOT_TRACKED]

    def to_dict(self) -> Dict[str, Any]:
        start, end = self.date_range
        return {
            'date_range': {'start': start.isoformat(), 'end': end.isoformat()},
            'total_bookings': self.total_bookings,
            'client_side_conversions': self.client_side_conversions,
            'server_side_conversions': self.server_side_conversions,
            'matched_conversions': self.matched_conversions,
            'discrepancies': [d.to_dict() for d in self.discrepancies],
            'accuracy_percentage': self.accuracy_percentage,
            'agreement_percentage': self.agreement_percentage,
        }


def classify(booking_id: str, client_tracked: bool, server_tracked: bool) -> Optional[Discrepancy]:
    """Discrepancy for one booking, or None when both paths tracked it"""
    if client_tracked and server_tracked:
        return None
    if not client_tracked and not server_tracked:
        issue = ISSUE_NOT_TRACKED
    elif client_tracked:
        issue = ISSUE_SERVER_MISSING
    else:
        issue = ISSUE_CLIENT_FAILED
    return Discrepancy(booking_id, client_tracked, server_tracked, issue)


class ReconciliationService:
    """Batch comparison of the two delivery logs over a date range"""

    def __init__(self, booking_repository, attempt_repository,
                 eligible_statuses: Iterable[str] = ELIGIBLE_BOOKING_STATUSES):
        self.booking_repository = booking_repository
        self.attempt_repository = attempt_repository
        self.eligible_statuses = tuple(eligible_statuses)

    def reconcile(self, start_date: DateLike, end_date: Optional[DateLike] = None) -> ReconciliationResult:
        """
        Reconcile bookings created between start_date and end_date.

        Plain dates cover whole UTC days, so reconcile('2025-03-01') is one day.

        Raises:
            ValueError: end_date before start_date or unparseable dates
        """
        start, end = day_range(start_date, end_date)
        result = ReconciliationResult(date_range=(start, end))

        bookings = self.booking_repository.find_eligible_in_range(start, end, self.eligible_statuses)
        booking_ids = [str(booking.id) for booking in bookings]
        result.total_bookings = len(booking_ids)
        if not booking_ids:
            logger.info("No eligible bookings to reconcile", start=start.isoformat(), end=end.isoformat())
            return result

        # Attempts are looked up by booking so a backup that ran after the
        # window closed still counts.
        attempts = self.attempt_repository.find_for_bookings(booking_ids)
        client_ok, server_ok = self._successful_bookings(attempts)

        for booking_id in booking_ids:
            client_tracked = booking_id in client_ok
            server_tracked = booking_id in server_ok
            if client_tracked:
                result.client_side_conversions += 1
            if server_tracked:
                result.server_side_conversions += 1
            discrepancy = classify(booking_id, client_tracked, server_tracked)
            if discrepancy is None:
                result.matched_conversions += 1
            else:
                result.discrepancies.append(discrepancy)

        logger.info(
            "Reconciliation completed",
            start=start.isoformat(),
            end=end.isoformat(),
            total_bookings=result.total_bookings,
            client=result.client_side_conversions,
            server=result.server_side_conversions,
            matched=result.matched_conversions,
            accuracy=result.accuracy_percentage,
        )
        return result

    @staticmethod
    def _successful_bookings(attempts) -> Tuple[Set[str], Set[str]]:
        client_ok: Set[str] = set()
        server_ok: Set[str] = set()
        for attempt in attempts:
            if not attempt.success:
                continue
            # Funnel events share the log; only the purchase is a conversion
            if attempt.action not in (None, ConversionAction.PURCHASE.value):
                continue
            if attempt.conversion_type == ConversionType.CLIENT.value:
                client_ok.add(attempt.booking_id)
            elif attempt.conversion_type == ConversionType.SERVER.value:
                server_ok.add(attempt.booking_id)
        return client_ok, server_ok
