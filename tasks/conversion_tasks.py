"""
Celery tasks for the server-side backup conversion path
"""

from celery import shared_task
from flask import current_app

from logging_config import get_logger
from utils.datetime_utils import utc_now

logger = get_logger(__name__)


@shared_task(bind=True, max_retries=3)
def upload_backup_conversion(self, booking_id: str):
    """
    Upload the purchase conversion for a confirmed booking.

    Queued by the booking confirmation flow; never blocks it. Transient
    upload failures are retried with exponential backoff, each retry adding
    its own server attempt row.
    """
    backup_service = current_app.services.get('backup_conversion')
    if not backup_service:
        raise ValueError("Backup conversion service not registered")

    result = backup_service.validate_and_convert(booking_id)

    if result.success:
        logger.info("Backup conversion task completed", booking_id=booking_id)
    elif result.retryable and self.request.retries < self.max_retries:
        logger.warning("Backup conversion failed, retrying",
                       booking_id=booking_id, error=result.error, retries=self.request.retries)
        raise self.retry(countdown=60 * (2 ** self.request.retries))
    else:
        logger.error("Backup conversion task failed", booking_id=booking_id, error=result.error)

    return {
        **result.to_dict(),
        'booking_id': booking_id,
        'retries': self.request.retries,
        'timestamp': utc_now().isoformat()
    }
