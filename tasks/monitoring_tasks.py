"""
Celery tasks for tracking health checks and retention
"""

from celery import shared_task
from flask import current_app

from logging_config import get_logger
from utils.datetime_utils import utc_now

logger = get_logger(__name__)


@shared_task
def run_basic_health_check():
    """Every 5 minutes: transport, configuration and recent error rate"""
    monitor = current_app.services.get('tracking_monitor')
    result = monitor.run_basic_check()
    return {**result.to_dict(), 'timestamp': utc_now().isoformat()}


@shared_task
def run_deep_health_check():
    """Every 30 minutes: script load, label resolution, event queue and timings"""
    monitor = current_app.services.get('tracking_monitor')
    result = monitor.run_deep_check()
    return {**result.to_dict(), 'timestamp': utc_now().isoformat()}


@shared_task
def cleanup_expired_alerts():
    """Drop alerts older than ALERTS_RETENTION_DAYS from memory and storage"""
    alert_service = current_app.services.get('alert')
    removed = alert_service.cleanup_expired()
    logger.info("Expired alerts cleaned up", removed=removed)
    return {'removed': removed, 'timestamp': utc_now().isoformat()}


@shared_task
def cleanup_attempt_log(days: int = None):
    """Attempt-log retention policy"""
    days = days or current_app.config.get('ATTEMPT_LOG_RETENTION_DAYS', 90)
    attempt_repository = current_app.services.get('conversion_attempt_repository')
    deleted = attempt_repository.cleanup_older_than(days)
    return {'deleted': deleted, 'retention_days': days, 'timestamp': utc_now().isoformat()}
