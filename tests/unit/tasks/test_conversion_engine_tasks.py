"""
Tests for the backup conversion, reconciliation and monitoring Celery tasks
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, Mock, patch

import pytest
from celery.exceptions import Retry

from services.backup_conversion_service import BackupConversionResult
from services.enums import AlertSeverity, HealthStatus
from services.health_check_service import HealthCheckResult
from services.reconciliation_service import ReconciliationResult, classify

WINDOW = (datetime(2025, 3, 1, tzinfo=timezone.utc), datetime(2025, 3, 2, tzinfo=timezone.utc))


def mock_app(services, config=None):
    app = MagicMock()
    app.services.get.side_effect = lambda name: services.get(name)
    app.config = config or {}
    return app


class TestUploadBackupConversionTask:

    @patch('tasks.conversion_tasks.current_app')
    def test_success_returns_result_summary(self, mock_current_app):
        from tasks.conversion_tasks import upload_backup_conversion
        backup = Mock()
        backup.validate_and_convert.return_value = BackupConversionResult(
            success=True, booking_data={'id': 'B1'}, conversion_data={'order_id': 'B1'}
        )
        mock_current_app.services.get.return_value = backup

        result = upload_backup_conversion('B1')

        backup.validate_and_convert.assert_called_once_with('B1')
        assert result['success'] is True
        assert result['booking_id'] == 'B1'
        assert result['conversion_data'] == {'order_id': 'B1'}
        assert result['retries'] == 0

    @patch('tasks.conversion_tasks.current_app')
    def test_retryable_failure_schedules_retry(self, mock_current_app):
        from tasks.conversion_tasks import upload_backup_conversion
        backup = Mock()
        backup.validate_and_convert.return_value = BackupConversionResult(
            success=False, error='Google Ads API unavailable: HTTP 503', retryable=True
        )
        mock_current_app.services.get.return_value = backup

        with pytest.raises(Retry):
            upload_backup_conversion('B1')

    @patch('tasks.conversion_tasks.current_app')
    def test_permanent_failure_is_returned(self, mock_current_app):
        from tasks.conversion_tasks import upload_backup_conversion
        backup = Mock()
        backup.validate_and_convert.return_value = BackupConversionResult(success=False, error='Booking not found')
        mock_current_app.services.get.return_value = backup

        result = upload_backup_conversion('missing')

        assert result['success'] is False
        assert result['error'] == 'Booking not found'

    @patch('tasks.conversion_tasks.current_app')
    def test_missing_service_raises(self, mock_current_app):
        from tasks.conversion_tasks import upload_backup_conversion
        mock_current_app.services.get.return_value = None

        with pytest.raises(ValueError):
            upload_backup_conversion('B1')


class TestReconciliationTasks:

    def make_result(self, **kwargs):
        return ReconciliationResult(date_range=WINDOW, **kwargs)

    def test_daily_reconciliation_defaults_to_yesterday(self):
        from tasks.reconciliation_tasks import run_daily_reconciliation
        reconciliation = Mock()
        reconciliation.reconcile.return_value = self.make_result()
        app = mock_app({'reconciliation': reconciliation}, {'RECONCILIATION_ACCURACY_THRESHOLD': 95.0})

        with patch('tasks.reconciliation_tasks.current_app', app), \
                patch('tasks.reconciliation_tasks.utc_now',
                      return_value=datetime(2025, 3, 2, 2, 0, tzinfo=timezone.utc)):
            summary = run_daily_reconciliation()

        reconciliation.reconcile.assert_called_once_with('2025-03-01', '2025-03-01')
        assert summary['success'] is True
        assert summary['day'] == '2025-03-01'
        assert summary['alert'] is None

    def test_healthy_day_raises_no_alert(self):
        from tasks.reconciliation_tasks import run_daily_reconciliation
        reconciliation = Mock()
        reconciliation.reconcile.return_value = self.make_result(
            total_bookings=10, client_side_conversions=10, server_side_conversions=10, matched_conversions=10
        )
        alert = Mock()
        app = mock_app({'reconciliation': reconciliation, 'alert': alert},
                       {'RECONCILIATION_ACCURACY_THRESHOLD': 95.0})

        with patch('tasks.reconciliation_tasks.current_app', app):
            summary = run_daily_reconciliation('2025-03-01')

        assert summary['accuracy_percentage'] == 100.0
        alert.raise_alert.assert_not_called()

    def test_low_accuracy_raises_high_alert(self):
        from tasks.reconciliation_tasks import run_daily_reconciliation
        reconciliation = Mock()
        reconciliation.reconcile.return_value = self.make_result(
            total_bookings=10, client_side_conversions=8, server_side_conversions=9, matched_conversions=8,
            discrepancies=[classify('B9', False, True), classify('B10', True, False)],
        )
        alert = Mock()
        alert.raise_alert.return_value = SimpleNamespace(id='alert_1')
        app = mock_app({'reconciliation': reconciliation, 'alert': alert},
                       {'RECONCILIATION_ACCURACY_THRESHOLD': 95.0})

        with patch('tasks.reconciliation_tasks.current_app', app):
            summary = run_daily_reconciliation('2025-03-01')

        assert summary['alert'] == 'alert_1'
        kwargs = alert.raise_alert.call_args.kwargs
        assert kwargs['alert_type'] == 'reconciliation_drift'
        assert kwargs['severity'] == AlertSeverity.HIGH
        assert kwargs['data']['accuracy_percentage'] == 90.0

    def test_untracked_booking_raises_critical_alert(self):
        from tasks.reconciliation_tasks import run_daily_reconciliation
        reconciliation = Mock()
        reconciliation.reconcile.return_value = self.make_result(
            total_bookings=1, discrepancies=[classify('B1', False, False)],
        )
        alert = Mock()
        alert.raise_alert.return_value = SimpleNamespace(id='alert_2')
        app = mock_app({'reconciliation': reconciliation, 'alert': alert},
                       {'RECONCILIATION_ACCURACY_THRESHOLD': 95.0})

        with patch('tasks.reconciliation_tasks.current_app', app):
            run_daily_reconciliation('2025-03-01')

        kwargs = alert.raise_alert.call_args.kwargs
        assert kwargs['severity'] == AlertSeverity.CRITICAL
        assert kwargs['data']['untracked_bookings'] == ['B1']

    def test_failure_is_retried(self):
        from tasks.reconciliation_tasks import run_daily_reconciliation
        reconciliation = Mock()
        reconciliation.reconcile.side_effect = RuntimeError('database unavailable')
        app = mock_app({'reconciliation': reconciliation})

        # Called directly, Task.retry re-raises the original error
        with patch('tasks.reconciliation_tasks.current_app', app):
            with pytest.raises(RuntimeError, match='database unavailable'):
                run_daily_reconciliation('2025-03-01')

    def test_manual_reconciliation(self):
        from tasks.reconciliation_tasks import run_manual_reconciliation
        reconciliation = Mock()
        reconciliation.reconcile.return_value = self.make_result(total_bookings=2, server_side_conversions=2)
        app = mock_app({'reconciliation': reconciliation})

        with patch('tasks.reconciliation_tasks.current_app', app):
            summary = run_manual_reconciliation('2025-03-01', '2025-03-07')

        reconciliation.reconcile.assert_called_once_with('2025-03-01', '2025-03-07')
        assert summary['success'] is True
        assert summary['server_side_conversions'] == 2

    def test_manual_reconciliation_rejects_bad_range(self):
        from tasks.reconciliation_tasks import run_manual_reconciliation
        reconciliation = Mock()
        reconciliation.reconcile.side_effect = ValueError('end must not be before start')
        app = mock_app({'reconciliation': reconciliation})

        with patch('tasks.reconciliation_tasks.current_app', app):
            summary = run_manual_reconciliation('2025-03-07', '2025-03-01')

        assert summary == {'success': False, 'error': 'end must not be before start'}


class TestMonitoringTasks:

    @pytest.fixture
    def check_result(self):
        return HealthCheckResult(tier='basic', status=HealthStatus.HEALTHY,
                                 timestamp=datetime(2025, 3, 1, tzinfo=timezone.utc))

    def test_basic_health_check(self, check_result):
        from tasks.monitoring_tasks import run_basic_health_check
        monitor = Mock()
        monitor.run_basic_check.return_value = check_result

        with patch('tasks.monitoring_tasks.current_app', mock_app({'tracking_monitor': monitor})):
            result = run_basic_health_check()

        assert result['status'] == 'healthy'
        assert 'timestamp' in result

    def test_deep_health_check(self, check_result):
        from tasks.monitoring_tasks import run_deep_health_check
        monitor = Mock()
        monitor.run_deep_check.return_value = check_result

        with patch('tasks.monitoring_tasks.current_app', mock_app({'tracking_monitor': monitor})):
            run_deep_health_check()

        monitor.run_deep_check.assert_called_once()

    def test_cleanup_expired_alerts(self):
        from tasks.monitoring_tasks import cleanup_expired_alerts
        alert = Mock()
        alert.cleanup_expired.return_value = 3

        with patch('tasks.monitoring_tasks.current_app', mock_app({'alert': alert})):
            result = cleanup_expired_alerts()

        assert result['removed'] == 3

    def test_cleanup_attempt_log_uses_configured_retention(self):
        from tasks.monitoring_tasks import cleanup_attempt_log
        repository = Mock()
        repository.cleanup_older_than.return_value = 12
        app = mock_app({'conversion_attempt_repository': repository}, {'ATTEMPT_LOG_RETENTION_DAYS': 60})

        with patch('tasks.monitoring_tasks.current_app', app):
            result = cleanup_attempt_log()

        repository.cleanup_older_than.assert_called_once_with(60)
        assert result['deleted'] == 12
        assert result['retention_days'] == 60
