"""
Celery tasks for conversion reconciliation

Handles the scheduled daily comparison of the client and server attempt
logs and manual runs over an arbitrary date range.
"""

from datetime import timedelta
from typing import Any, Dict, Optional

from celery import shared_task
from flask import current_app

from logging_config import get_logger
from services.enums import AlertSeverity
from utils.datetime_utils import utc_now

logger = get_logger(__name__)


@shared_task(bind=True, max_retries=3)
def run_daily_reconciliation(self, day: Optional[str] = None) -> Dict[str, Any]:
    """
    Reconcile one UTC day (yesterday by default) and alert on drift.

    Args:
        day: 'YYYY-MM-DD'; defaults to the previous UTC day
    """
    day = day or (utc_now() - timedelta(days=1)).date().isoformat()
    try:
        reconciliation_service = current_app.services.get('reconciliation')
        result = reconciliation_service.reconcile(day, day)
    except Exception as e:
        logger.error("Daily reconciliation failed", day=day, error=str(e))
        if self.request.retries < self.max_retries:
            raise self.retry(exc=e, countdown=60 * (self.request.retries + 1))
        return {
            'success': False,
            'day': day,
            'error': str(e),
            'retries': self.request.retries,
            'executed_at': utc_now().isoformat()
        }

    summary = result.to_dict()
    summary['alert'] = _alert_on_drift(result)
    summary.update({'success': True, 'day': day, 'executed_at': utc_now().isoformat()})
    return summary


@shared_task
def run_manual_reconciliation(start_date: str, end_date: Optional[str] = None) -> Dict[str, Any]:
    """Operator-triggered reconciliation; no alerting"""
    reconciliation_service = current_app.services.get('reconciliation')
    try:
        result = reconciliation_service.reconcile(start_date, end_date)
    except ValueError as e:
        return {'success': False, 'error': str(e)}
    return {**result.to_dict(), 'success': True, 'executed_at': utc_now().isoformat()}


def _alert_on_drift(result) -> Optional[str]:
    """Raise an alert when accuracy is under threshold or a booking went unreported"""
    threshold = float(current_app.config.get('RECONCILIATION_ACCURACY_THRESHOLD', 95))
    untracked = result.untracked_bookings
    if result.total_bookings == 0 or (result.accuracy_percentage >= threshold and not untracked):
        return None

    severity = AlertSeverity.CRITICAL if untracked else AlertSeverity.HIGH
    alert_service = current_app.services.get('alert')
    alert = alert_service.raise_alert(
        alert_type='reconciliation_drift',
        severity=severity,
        message=(
            f"Conversion tracking accuracy {result.accuracy_percentage:.2f}% "
            f"({len(untracked)} bookings with no tracking)"
        ),
        data={
            'date_range': result.to_dict()['date_range'],
            'accuracy_percentage': result.accuracy_percentage,
            'agreement_percentage': result.agreement_percentage,
            'threshold': threshold,
            'untracked_bookings': untracked[:50],
            'discrepancy_count': len(result.discrepancies),
        }
    )
    return alert.id
