"""
Tests for AlertService - alert storage, retention and webhook forwarding
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest
import requests
from sqlalchemy.exc import SQLAlchemyError

from repositories.alert_repository import AlertRepository
from services.alert_service import AlertService
from services.enums import AlertSeverity
from tests.fixtures.clock_fixtures import FakeClock


class TestAlertService:

    @pytest.fixture
    def clock(self):
        return FakeClock(datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))

    @pytest.fixture
    def alert_repository(self):
        repository = Mock(spec=AlertRepository)
        repository.find_since.return_value = []
        return repository

    @pytest.fixture
    def service(self, alert_repository, clock):
        return AlertService(
            alert_repository=alert_repository,
            webhook_url=None,
            environment='testing',
            service_name='google-ads-tracking',
            retention_days=90,
            clock=clock,
        )

    def test_raise_alert_records_active_and_history(self, service, alert_repository):
        alert = service.raise_alert('tracking_error', AlertSeverity.HIGH, 'Tracking error: timeout',
                                    {'booking_id': 'B1'})

        assert alert.id.startswith('alert_')
        assert service.get_active_alerts() == [alert]
        assert service.get_alert_history() == [alert]
        alert_repository.save.assert_called_once()
        saved = alert_repository.save.call_args.kwargs
        assert saved['alert_id'] == alert.id
        assert saved['severity'] == 'high'
        assert saved['data'] == {'booking_id': 'B1'}

    def test_alert_ids_are_unique(self, service):
        first = service.raise_alert('tracking_error', AlertSeverity.LOW, 'one')
        second = service.raise_alert('tracking_error', AlertSeverity.LOW, 'two')

        assert first.id != second.id

    def test_severity_accepts_plain_strings(self, service):
        alert = service.raise_alert('tracking_error', 'critical', 'boom')

        assert alert.severity == AlertSeverity.CRITICAL

    def test_data_is_made_json_safe(self, service):
        alert = service.raise_alert('tracking_error', AlertSeverity.LOW, 'x',
                                    {'when': datetime(2025, 3, 1, tzinfo=timezone.utc)})

        assert alert.data == {'when': '2025-03-01 00:00:00+00:00'}

    def test_cleanup_expired_drops_old_alerts(self, service, alert_repository, clock):
        old = service.raise_alert('tracking_error', AlertSeverity.LOW, 'old')
        clock.advance(timedelta(days=91).total_seconds())
        recent = service.raise_alert('tracking_error', AlertSeverity.LOW, 'recent')

        removed = service.cleanup_expired()

        assert removed == 1
        assert service.get_active_alerts() == [recent]
        assert old not in service.get_alert_history()
        cutoff = alert_repository.delete_older_than.call_args.args[0]
        assert cutoff == clock.now() - timedelta(days=90)

    def test_cleanup_survives_storage_errors(self, service, alert_repository):
        alert_repository.delete_older_than.side_effect = SQLAlchemyError('locked')

        assert service.cleanup_expired() == 0

    def test_get_recent_alerts(self, service, clock):
        service.raise_alert('tracking_error', AlertSeverity.LOW, 'early')
        clock.advance(3600)
        late = service.raise_alert('tracking_error', AlertSeverity.LOW, 'late')

        assert service.get_recent_alerts(timedelta(minutes=30)) == [late]

    def test_history_limit_returns_latest(self, service):
        for i in range(5):
            service.raise_alert('tracking_error', AlertSeverity.LOW, f'alert {i}')

        assert [a.message for a in service.get_alert_history(limit=2)] == ['alert 3', 'alert 4']

    def test_persisted_alerts_are_reloaded_on_start(self, alert_repository, clock):
        alert_repository.find_since.return_value = [SimpleNamespace(
            id='alert_1_abc',
            alert_type='tracking_error',
            severity='critical',
            message='Tracking error: config',
            created_at=datetime(2025, 2, 28, 12, 0),
            data={'path': 'client'},
        )]

        service = AlertService(alert_repository=alert_repository, clock=clock)

        active = service.get_active_alerts()
        assert [a.id for a in active] == ['alert_1_abc']
        assert active[0].timestamp.tzinfo is not None
        assert alert_repository.find_since.call_args.args[0] == clock.now() - timedelta(days=90)

    def test_persistence_failure_keeps_alert_in_memory(self, service, alert_repository):
        alert_repository.save.side_effect = SQLAlchemyError('locked')

        alert = service.raise_alert('tracking_error', AlertSeverity.LOW, 'x')

        assert service.get_active_alerts() == [alert]

    def test_in_memory_only_without_repository(self, clock):
        service = AlertService(alert_repository=None, clock=clock)

        service.raise_alert('tracking_error', AlertSeverity.LOW, 'x')

        assert len(service.get_active_alerts()) == 1
        assert service.cleanup_expired() == 0

    # ===== Webhook =====

    @patch('services.alert_service.requests.post')
    def test_webhook_receives_alert_payload(self, mock_post, alert_repository, clock):
        mock_post.return_value = Mock(status_code=200)
        service = AlertService(alert_repository=alert_repository, webhook_url='https://hooks.example.com/alerts',
                               environment='production', service_name='google-ads-tracking', clock=clock)

        service.raise_alert('tracking_error', AlertSeverity.CRITICAL, 'Tracking error: config', {'path': 'client'})

        url = mock_post.call_args.args[0]
        payload = mock_post.call_args.kwargs['json']
        assert url == 'https://hooks.example.com/alerts'
        assert payload['alert_type'] == 'tracking_error'
        assert payload['severity'] == 'critical'
        assert payload['environment'] == 'production'
        assert payload['service'] == 'google-ads-tracking'
        assert payload['data'] == {'path': 'client'}

    def test_webhook_failure_is_swallowed(self, mocker, alert_repository, clock):
        mocker.patch('services.alert_service.requests.post', side_effect=requests.ConnectionError('refused'))
        service = AlertService(alert_repository=alert_repository, webhook_url='https://hooks.example.com/alerts',
                               clock=clock)

        alert = service.raise_alert('tracking_error', AlertSeverity.HIGH, 'x')

        assert service.get_active_alerts() == [alert]
        assert service.send_to_webhook(alert) is False

    def test_no_webhook_configured(self, mocker, service):
        mock_post = mocker.patch('services.alert_service.requests.post')
        alert = service.raise_alert('tracking_error', AlertSeverity.HIGH, 'x')

        assert service.send_to_webhook(alert) is False
        mock_post.assert_not_called()
