"""
AlertService - typed alerts with retention and webhook forwarding

Alerts live in an in-memory active set keyed by id plus an append-only
history. Both are trimmed by a retention window and mirrored to the
monitoring_alert table so a restarted process picks them back up.
"""

import json
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import requests
from sqlalchemy.exc import SQLAlchemyError

from logging_config import get_logger
from services.enums import AlertSeverity
from utils.clock import Clock, system_clock
from utils.datetime_utils import ensure_utc

logger = get_logger(__name__)


@dataclass
class Alert:
    id: str
    type: str
    severity: AlertSeverity
    message: str
    timestamp: datetime
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type,
            'severity': self.severity.value,
            'message': self.message,
            'timestamp': self.timestamp.isoformat(),
            'data': self.data,
        }

    def to_webhook_payload(self, environment: str, service: str) -> Dict[str, Any]:
        return {
            'alert_type': self.type,
            'severity': self.severity.value,
            'message': self.message,
            'timestamp': self.timestamp.isoformat(),
            'environment': environment,
            'service': service,
            'data': self.data,
        }


class AlertService:
    """Raises, stores, expires and forwards monitoring alerts"""

    def __init__(
        self,
        alert_repository=None,
        webhook_url: Optional[str] = None,
        environment: str = 'production',
        service_name: str = 'google-ads-tracking',
        retention_days: int = 90,
        clock: Clock = system_clock,
        timeout=(5, 10)
    ):
        """
        Args:
            alert_repository: AlertRepository for persistence (None keeps alerts in memory only)
            webhook_url: External channel that receives every alert
            environment: Reported in the webhook payload
            service_name: Reported in the webhook payload
            retention_days: Alerts older than this expire
            clock: Time source
            timeout: requests timeout for the webhook POST
        """
        self.alert_repository = alert_repository
        self.webhook_url = webhook_url
        self.environment = environment
        self.service_name = service_name
        self.retention = timedelta(days=retention_days)
        self.clock = clock
        self.timeout = timeout
        self.active_alerts: Dict[str, Alert] = {}
        self.alert_history: List[Alert] = []
        self._lock = threading.Lock()
        self.load_persisted()

    def raise_alert(self, alert_type: str, severity: AlertSeverity, message: str,
                    data: Optional[Dict[str, Any]] = None) -> Alert:
        """Record an alert, persist it and forward it to the webhook"""
        now = self.clock.now()
        alert = Alert(
            id=f"alert_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}",
            type=alert_type,
            severity=AlertSeverity(severity),
            message=message,
            timestamp=now,
            data=json.loads(json.dumps(data or {}, default=str)),
        )

        with self._lock:
            self.active_alerts[alert.id] = alert
            self.alert_history.append(alert)

        log = logger.error if alert.severity in (AlertSeverity.HIGH, AlertSeverity.CRITICAL) else logger.warning
        log("Monitoring alert raised", alert_id=alert.id, alert_type=alert_type,
            severity=alert.severity.value, message=message)

        self._persist(alert)
        self.send_to_webhook(alert)
        return alert

    def get_active_alerts(self) -> List[Alert]:
        with self._lock:
            return sorted(self.active_alerts.values(), key=lambda a: a.timestamp)

    def get_alert_history(self, limit: Optional[int] = None) -> List[Alert]:
        with self._lock:
            history = list(self.alert_history)
        return history[-limit:] if limit else history

    def get_recent_alerts(self, within: timedelta) -> List[Alert]:
        cutoff = self.clock.now() - within
        return [alert for alert in self.get_alert_history() if alert.timestamp >= cutoff]

    def cleanup_expired(self) -> int:
        """
        Drop alerts older than the retention window from memory and storage.

        Returns:
            Number of in-memory alerts removed from history
        """
        cutoff = self.clock.now() - self.retention
        with self._lock:
            self.active_alerts = {
                alert_id: alert for alert_id, alert in self.active_alerts.items()
                if alert.timestamp >= cutoff
            }
            before = len(self.alert_history)
            self.alert_history = [alert for alert in self.alert_history if alert.timestamp >= cutoff]
            removed = before - len(self.alert_history)

        if self.alert_repository is not None:
            try:
                self.alert_repository.delete_older_than(cutoff)
            except SQLAlchemyError as e:
                logger.error("Failed to delete expired alerts", error=str(e))

        if removed:
            logger.info("Expired monitoring alerts removed", count=removed)
        return removed

    def load_persisted(self) -> int:
        """Reload alerts inside the retention window from storage"""
        if self.alert_repository is None:
            return 0
        cutoff = self.clock.now() - self.retention
        try:
            rows = self.alert_repository.find_since(cutoff)
        except SQLAlchemyError as e:
            logger.error("Failed to load persisted alerts", error=str(e))
            return 0

        loaded = 0
        with self._lock:
            for row in rows:
                if row.id in self.active_alerts:
                    continue
                alert = Alert(
                    id=row.id,
                    type=row.alert_type,
                    severity=AlertSeverity(row.severity),
                    message=row.message,
                    timestamp=ensure_utc(row.created_at),
                    data=row.data or {},
                )
                self.active_alerts[alert.id] = alert
                self.alert_history.append(alert)
                loaded += 1
            self.alert_history.sort(key=lambda a: a.timestamp)
        return loaded

    def send_to_webhook(self, alert: Alert) -> bool:
        """Best-effort POST; failures are logged and never raised"""
        if not self.webhook_url:
            return False
        payload = alert.to_webhook_payload(self.environment, self.service_name)
        try:
            response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.warning("Failed to send alert to webhook", alert_id=alert.id, error=str(e))
            return False

    def _persist(self, alert: Alert) -> None:
        if self.alert_repository is None:
            return
        try:
            self.alert_repository.save(
                alert_id=alert.id,
                alert_type=alert.type,
                severity=alert.severity.value,
                message=alert.message,
                created_at=alert.timestamp,
                data=alert.data,
            )
        except SQLAlchemyError as e:
            logger.error("Failed to persist alert", alert_id=alert.id, error=str(e))
