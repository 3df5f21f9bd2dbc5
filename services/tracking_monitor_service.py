"""
TrackingMonitorService - turns tracking errors, metrics and health checks into alerts
"""

from typing import Any, Dict, Optional

from logging_config import get_logger
from services.alert_service import Alert, AlertService
from services.common.exceptions import TrackingError
from services.enums import AlertSeverity, HealthStatus, TrackingErrorType
from services.health_check_service import HealthCheckResult, HealthCheckService
from services.tracking_metrics import TrackingMetrics
from services.tracking_settings import TrackingSettings

logger = get_logger(__name__)

SEVERITY_BY_ERROR_TYPE = {
    TrackingErrorType.SCRIPT_LOAD_FAILURE: AlertSeverity.CRITICAL,
    TrackingErrorType.CONFIGURATION_ERROR: AlertSeverity.CRITICAL,
    TrackingErrorType.TRACKING_FAILURE: AlertSeverity.HIGH,
    TrackingErrorType.NETWORK_ERROR: AlertSeverity.HIGH,
    TrackingErrorType.VALIDATION_ERROR: AlertSeverity.MEDIUM,
    TrackingErrorType.PRIVACY_ERROR: AlertSeverity.MEDIUM,
}


def severity_for_error(error_type) -> AlertSeverity:
    """Map a tracking error category to its alert severity"""
    try:
        return SEVERITY_BY_ERROR_TYPE.get(TrackingErrorType(error_type), AlertSeverity.LOW)
    except ValueError:
        return AlertSeverity.LOW


class TrackingMonitorService:
    """Single reporting point for both delivery paths"""

    def __init__(
        self,
        alert_service: AlertService,
        health_check_service: HealthCheckService,
        metrics: TrackingMetrics,
        settings: TrackingSettings
    ):
        self.alert_service = alert_service
        self.health_check_service = health_check_service
        self.metrics = metrics
        self.settings = settings
        self.health_status = HealthStatus.HEALTHY
        self.last_health_check: Optional[HealthCheckResult] = None
        self.last_deep_check: Optional[HealthCheckResult] = None

    def report_error(self, error: TrackingError, context: Optional[Dict[str, Any]] = None) -> Alert:
        """Record a final (post-retry) tracking error and raise the matching alert"""
        self.metrics.record_error(error.error_type)
        data = {**error.to_dict(), **(context or {})}
        return self.alert_service.raise_alert(
            alert_type='tracking_error',
            severity=severity_for_error(error.error_type),
            message=f"Tracking error: {error.message or 'Unknown error'}",
            data=data,
        )

    def record_tracking_call(self, duration_seconds: float, success: bool) -> None:
        self.metrics.record_call(duration_seconds, success)
        if duration_seconds > self.settings.tracking_call_time_threshold:
            self.alert_service.raise_alert(
                alert_type='slow_tracking_call',
                severity=AlertSeverity.MEDIUM,
                message=f"Slow tracking call: {duration_seconds * 1000:.0f}ms",
                data={'duration_ms': round(duration_seconds * 1000, 1)},
            )

    def record_script_load(self, duration_seconds: float) -> None:
        self.metrics.record_script_load(duration_seconds)
        if duration_seconds > self.settings.script_load_time_threshold:
            self.alert_service.raise_alert(
                alert_type='slow_script_loading',
                severity=AlertSeverity.MEDIUM,
                message=f"Slow script loading: {duration_seconds * 1000:.0f}ms",
                data={'duration_ms': round(duration_seconds * 1000, 1)},
            )

    def run_basic_check(self) -> HealthCheckResult:
        try:
            result = self.health_check_service.run_basic_check()
        except Exception as e:
            logger.exception("Health check failed with error", error=str(e))
            self.health_status = HealthStatus.CRITICAL
            self.alert_service.raise_alert(
                alert_type='health_check_error',
                severity=AlertSeverity.CRITICAL,
                message=f"Health check failed with error: {e}",
                data={'error': str(e)},
            )
            raise

        self.health_status = result.status
        self.last_health_check = result
        if not result.is_healthy:
            self.alert_service.raise_alert(
                alert_type='health_check_failed',
                severity=AlertSeverity.CRITICAL if result.status == HealthStatus.CRITICAL else AlertSeverity.MEDIUM,
                message=f"Health check failed: {', '.join(result.issues)}",
                data=result.to_dict(),
            )
        return result

    def run_deep_check(self) -> HealthCheckResult:
        result = self.health_check_service.run_deep_check()
        self.last_deep_check = result
        if not result.is_healthy:
            self.alert_service.raise_alert(
                alert_type='deep_health_check_failed',
                severity=AlertSeverity.HIGH if result.status == HealthStatus.CRITICAL else AlertSeverity.MEDIUM,
                message=f"Deep health check failed: {', '.join(result.issues)}",
                data=result.to_dict(),
            )
        return result

    def get_health_status(self) -> Dict[str, Any]:
        return {
            'status': self.health_status.value,
            'last_check': self.last_health_check.to_dict() if self.last_health_check else None,
            'last_deep_check': self.last_deep_check.to_dict() if self.last_deep_check else None,
            'active_alerts': [alert.to_dict() for alert in self.alert_service.get_active_alerts()],
            'recent_alerts': [alert.to_dict() for alert in self.alert_service.get_alert_history(limit=10)],
            'metrics': self.metrics.snapshot(),
        }
