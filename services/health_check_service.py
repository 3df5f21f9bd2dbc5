"""
HealthCheckService - basic and deep checks of the conversion tracking paths

Basic check (every 5 minutes): tag transport usable, core configuration
present and not a placeholder, recent client error rate under threshold.
Deep check (every 30 minutes): tag script loads, every required action has
a conversion label, event queue reachable, average timings under threshold.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from logging_config import get_logger
from services.enums import ConversionType, HealthStatus
from services.tracking_settings import TrackingSettings
from utils.clock import Clock, system_clock

logger = get_logger(__name__)

_SEVERITY_ORDER = [HealthStatus.HEALTHY, HealthStatus.WARNING, HealthStatus.CRITICAL]


@dataclass
class HealthCheckResult:
    """Result of a basic or deep health check"""
    tier: str
    status: HealthStatus
    timestamp: datetime
    checks: Dict[str, Any] = field(default_factory=dict)
    issues: List[str] = field(default_factory=list)
    performance: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    def escalate(self, status: HealthStatus, issue: str) -> None:
        if _SEVERITY_ORDER.index(status) > _SEVERITY_ORDER.index(self.status):
            self.status = status
        self.issues.append(issue)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tier': self.tier,
            'status': self.status.value,
            'timestamp': self.timestamp.isoformat(),
            'checks': self.checks,
            'issues': self.issues,
            'performance': self.performance,
        }


class HealthCheckService:
    """Runs the two check tiers; alerting is left to TrackingMonitorService"""

    def __init__(
        self,
        settings: TrackingSettings,
        tag_transport,
        event_sinks: List,
        metrics,
        attempt_repository=None,
        clock: Clock = system_clock,
        error_rate_window: timedelta = timedelta(minutes=5)
    ):
        self.settings = settings
        self.tag_transport = tag_transport
        self.event_sinks = list(event_sinks)
        self.metrics = metrics
        self.attempt_repository = attempt_repository
        self.clock = clock
        self.error_rate_window = error_rate_window

    def run_basic_check(self) -> HealthCheckResult:
        result = HealthCheckResult(tier='basic', status=HealthStatus.HEALTHY, timestamp=self.clock.now())

        result.checks['tag_transport_available'] = self.tag_transport.is_available()
        if not result.checks['tag_transport_available']:
            result.escalate(HealthStatus.CRITICAL, 'Conversion tag transport not available')

        missing_client = self.settings.missing_client_configuration()
        result.checks['google_ads_configured'] = not missing_client
        if missing_client:
            result.escalate(
                HealthStatus.CRITICAL,
                f"Missing or placeholder configuration: {', '.join(missing_client)}"
            )

        missing_server = self.settings.missing_server_configuration()
        result.checks['backup_path_configured'] = not missing_server
        if missing_server:
            result.escalate(
                HealthStatus.WARNING,
                f"Server-side backup not configured: {', '.join(missing_server)}"
            )

        error_rate = self._recent_error_rate()
        result.checks['error_rate'] = round(error_rate, 4)
        result.checks['error_rate_healthy'] = error_rate < self.settings.error_rate_threshold
        if not result.checks['error_rate_healthy']:
            result.escalate(HealthStatus.CRITICAL, f"High error rate: {error_rate * 100:.2f}%")

        logger.info("Basic health check completed", status=result.status.value, issues=result.issues)
        return result

    def run_deep_check(self) -> HealthCheckResult:
        result = HealthCheckResult(tier='deep', status=HealthStatus.HEALTHY, timestamp=self.clock.now())

        result.checks['scripts_loaded'] = self._safe(self._scripts_loaded)
        result.checks['conversion_tracking'] = not self.settings.unresolved_labels()
        result.checks['data_layer'] = self._safe(self._event_queue_ready)
        result.checks['configuration'] = not (
            self.settings.missing_client_configuration() or self.settings.missing_server_configuration()
        )

        failed = [name for name, passed in result.checks.items() if not passed]
        if failed:
            status = HealthStatus.CRITICAL if len(failed) > 2 else HealthStatus.WARNING
            for name in failed:
                result.escalate(status, f"Failed check: {name}")
        unresolved = self.settings.unresolved_labels()
        if unresolved:
            result.checks['unresolved_labels'] = unresolved

        result.performance = self.metrics.snapshot()
        if self.metrics.average_script_load_time > self.settings.script_load_time_threshold:
            result.escalate(HealthStatus.WARNING, 'Slow script loading detected')
        if self.metrics.average_call_time > self.settings.tracking_call_time_threshold:
            result.escalate(HealthStatus.WARNING, 'Slow tracking calls detected')

        logger.info("Deep health check completed", status=result.status.value, issues=result.issues)
        return result

    def _recent_error_rate(self) -> float:
        if self.attempt_repository is None:
            return self.metrics.error_rate
        since = self.clock.now() - self.error_rate_window
        return self.attempt_repository.get_error_rate(since, ConversionType.CLIENT.value)

    def _scripts_loaded(self) -> bool:
        return self.tag_transport.is_available() and self.tag_transport.load()

    def _event_queue_ready(self) -> bool:
        return bool(self.event_sinks) and all(sink.is_ready() for sink in self.event_sinks)

    def _safe(self, probe) -> bool:
        try:
            return bool(probe())
        except Exception as e:
            logger.error("Health probe raised", probe=probe.__name__, error=str(e))
            return False
